import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

import torch
import yaml

from .const import DEVICE

BACKENDS = ("triton", "torch")


def _pair(value, name: str, cast=int) -> Tuple:
    if isinstance(value, (int, float)):
        return (cast(value), cast(value))
    try:
        x, y = value
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be a pair, got {value!r}") from None
    return (cast(x), cast(y))


@dataclass
class VisibleLayerDesc:
    """
    Configuration of one input ("visible") grid feeding the encoder.

    Attributes
    ----------
    size : (int, int)
        Input grid (width, height).
    radius : int
        Receptive-field radius; the window is (2r+1) x (2r+1) input cells.
    ignore_middle : bool
        Exclude the exact window centre from the stimulus sum.
    weight_alpha : float
        Learning-rate coefficient for this input's weights.
    lambda_ : float
        Temporal-derivative blend in [0, 1]: the step size of the running
        average the input is measured against. 0 passes the raw signal
        through, 1 encodes the pure temporal difference.

    Derived Attributes (computed in __post_init__)
    -----------------------------------------------
    diameter : int
        2 * radius + 1.
    window_area : int
        diameter ** 2, weights per sample slot per hidden unit.
    """

    size: Tuple[int, int] = (16, 16)
    radius: int = 8
    ignore_middle: bool = False
    weight_alpha: float = 0.002
    lambda_: float = 0.5
    diameter: int = field(init=False)
    window_area: int = field(init=False)

    def _validate(self):
        if self.size[0] < 1 or self.size[1] < 1:
            raise ValueError(f"Visible layer size must be positive, got {self.size}.")
        if self.radius < 0:
            raise ValueError(f"radius must be non-negative, got {self.radius}.")
        if not 0.0 <= self.lambda_ <= 1.0:
            raise ValueError(f"lambda_ must lie in [0, 1], got {self.lambda_}.")
        if self.weight_alpha == 0.0:
            print(
                f"Warning: weight_alpha is 0 for visible layer of size {self.size}. Its weights will not learn."
            )

    def __post_init__(self):
        self.size = _pair(self.size, "size")
        self.radius = int(self.radius)
        self.ignore_middle = bool(self.ignore_middle)
        self.weight_alpha = float(self.weight_alpha)
        self.lambda_ = float(self.lambda_)
        self.diameter = self.radius * 2 + 1
        self.window_area = self.diameter * self.diameter
        self._validate()


@dataclass
class SparseFeaturesChunkDesc:
    """
    Encoder configuration with derived chunk geometry.

    Users set the hidden grid, the chunk tiling, the sample-history depth and
    one ``VisibleLayerDesc`` per input. The chunk grid and the compute
    backend are derived.

    Attributes
    ----------
    visible_layer_descs : list of VisibleLayerDesc
        One entry per input, in processing order.
    hidden_size : (int, int)
        Hidden grid (width, height).
    chunk_size : (int, int)
        Winner-take-all tile (width, height). Need not divide hidden_size;
        edge chunks are narrower.
    num_samples : int
        Depth of each input's sample history.
    init_weight_range : (float, float)
        Uniform weight initialization range [lo, hi).
    state_bias : float
        Weight of the previous hidden state in the activation rule. Recent
        winners get this much head start in the next competition.
    seed : int
        Seed for the default weight-initialization generator.
    device : str
        Torch device holding every grid.
    backend : str, optional
        "triton" or "torch". Derived from the device if None.

    Derived Attributes (computed in __post_init__)
    -----------------------------------------------
    chunk_grid : (int, int)
        (ceil(hidden_w / chunk_w), ceil(hidden_h / chunk_h)).
    """

    visible_layer_descs: List[VisibleLayerDesc] = field(default_factory=list)
    hidden_size: Tuple[int, int] = (16, 16)
    chunk_size: Tuple[int, int] = (4, 4)
    num_samples: int = 1
    init_weight_range: Tuple[float, float] = (-0.01, 0.01)
    state_bias: float = 0.01
    seed: int = 42
    device: str = DEVICE
    backend: Optional[str] = None
    chunk_grid: Tuple[int, int] = field(init=False)

    def _validate(self):
        if len(self.visible_layer_descs) == 0:
            raise ValueError("At least one visible layer is required.")
        if self.hidden_size[0] < 1 or self.hidden_size[1] < 1:
            raise ValueError(f"hidden_size must be positive, got {self.hidden_size}.")
        for axis in range(2):
            if not 1 <= self.chunk_size[axis] <= self.hidden_size[axis]:
                raise ValueError(
                    f"chunk_size {self.chunk_size} must lie within [1, hidden_size {self.hidden_size}]."
                )
        if self.num_samples < 1:
            raise ValueError(f"num_samples must be at least 1, got {self.num_samples}.")
        if self.init_weight_range[0] > self.init_weight_range[1]:
            raise ValueError(
                f"init_weight_range must be ordered (lo, hi), got {self.init_weight_range}."
            )
        if self.backend not in BACKENDS:
            raise ValueError(f"Unknown backend {self.backend!r}; expected one of {BACKENDS}.")
        if self.backend == "triton" and torch.device(self.device).type != "cuda":
            raise ValueError("The triton backend requires a CUDA device.")

    def __post_init__(self):
        self.visible_layer_descs = [
            d if isinstance(d, VisibleLayerDesc) else VisibleLayerDesc(**d)
            for d in self.visible_layer_descs
        ]
        self.hidden_size = _pair(self.hidden_size, "hidden_size")
        self.chunk_size = _pair(self.chunk_size, "chunk_size")
        self.init_weight_range = _pair(self.init_weight_range, "init_weight_range", float)
        self.num_samples = int(self.num_samples)
        self.state_bias = float(self.state_bias)
        self.device = str(self.device)

        if self.backend is None:
            self.backend = "triton" if torch.device(self.device).type == "cuda" else "torch"

        self._validate()

        self.chunk_grid = (
            int(math.ceil(self.hidden_size[0] / self.chunk_size[0])),
            int(math.ceil(self.hidden_size[1] / self.chunk_size[1])),
        )

    @classmethod
    def from_dict(cls, config: dict) -> "SparseFeaturesChunkDesc":
        """Build a desc from a plain mapping, e.g. one parsed from YAML."""
        config = dict(config)
        layers = config.pop("visible_layers", None)
        if layers is not None:
            config["visible_layer_descs"] = layers
        return cls(**config)

    def build(self, program=None, generator: Optional[torch.Generator] = None):
        """Construct a ``SparseFeaturesChunk`` encoder for this configuration."""
        from .encoder import SparseFeaturesChunk

        return SparseFeaturesChunk(self, program=program, generator=generator)


def load_desc(path) -> SparseFeaturesChunkDesc:
    """Load an encoder configuration from a YAML file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Missing encoder config: {path}")
    with open(path) as f:
        config = yaml.safe_load(f)
    if not isinstance(config, dict):
        raise ValueError(f"Encoder config {path} must be a mapping.")
    for layer in config.get("visible_layers", config.get("visible_layer_descs", [])):
        if isinstance(layer, dict) and "lambda" in layer:
            layer["lambda_"] = layer.pop("lambda")
    return SparseFeaturesChunkDesc.from_dict(config)
