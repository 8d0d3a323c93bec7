from dataclasses import dataclass
from typing import Tuple

from .buffers import DoubleBuffer


@dataclass
class VisibleLayer:
    """
    Runtime state of one input feeding the encoder.

    Attributes
    ----------
    derived_input : DoubleBuffer [vh, vw, 2]
        (running average, rate-of-change) encoding of the latest raw input.
    samples : DoubleBuffer [S, vh, vw]
        FIFO of the S most recent rate-of-change values; slot 0 is newest.
    weights : DoubleBuffer [hh, hw, S * window_area]
        One scalar per hidden unit, sample slot and receptive-window offset.
        Depth index is ``s * area + (dy + r) * diameter + (dx + r)``.
    hidden_to_visible : (float, float)
        visible_size / hidden_size per axis; maps hidden cells to window centres.
    visible_to_hidden : (float, float)
        hidden_size / visible_size per axis.
    chunk_to_visible : (float, float)
        visible_size / chunk_grid per axis.
    reverse_radii : (int, int)
        ceil(visible_to_hidden * radius) + 1 per axis; hidden-space radius
        covering every hidden unit whose window touches a given visible cell.

    Notes
    -----
    The scale factors are derived once at construction and afterwards only
    replaced wholesale when persisted state is loaded.
    """

    derived_input: DoubleBuffer
    samples: DoubleBuffer
    weights: DoubleBuffer
    hidden_to_visible: Tuple[float, float]
    visible_to_hidden: Tuple[float, float]
    chunk_to_visible: Tuple[float, float]
    reverse_radii: Tuple[int, int]

    def buffers(self):
        return {
            "derived_input": self.derived_input,
            "samples": self.samples,
            "weights": self.weights,
        }
