"""
Double-buffered grid allocation and fill helpers.

Every mutable grid of the encoder is a pair of same-shaped tensors. Kernels
read from ``back`` (the last committed state) and write to ``front`` (scratch
for the step in progress); ``swap`` publishes the scratch half by exchanging
references, never by copying.
"""

from typing import Optional, Sequence, Tuple

import torch
from torch import Tensor

from .const import BLOCK_SIZE, DTYPE


class DoubleBuffer:
    """
    Front/back pair of equally shaped tensors.

    Attributes
    ----------
    front : Tensor
        Write-only scratch for the step in progress.
    back : Tensor
        Last fully committed, readable state.
    """

    __slots__ = ("front", "back")

    def __init__(self, front: Tensor, back: Tensor):
        if front.shape != back.shape:
            raise ValueError(
                f"Double buffer halves differ in shape: {tuple(front.shape)} vs {tuple(back.shape)}"
            )
        self.front = front
        self.back = back

    def swap(self):
        self.front, self.back = self.back, self.front

    @property
    def shape(self) -> torch.Size:
        return self.back.shape

    def __repr__(self):
        return f"DoubleBuffer(shape={tuple(self.shape)}, dtype={self.back.dtype})"


def create_double_buffer(shape: Tuple[int, ...], device="cpu", dtype=DTYPE) -> DoubleBuffer:
    return DoubleBuffer(
        torch.zeros(shape, dtype=dtype, device=device),
        torch.zeros(shape, dtype=dtype, device=device),
    )


def create_double_buffer_2d(
    size: Sequence[int], channels: int = 1, device="cpu", dtype=DTYPE
) -> DoubleBuffer:
    """
    Allocate a zeroed 2D double buffer.

    ``size`` is ``(width, height)``; tensors are laid out ``(height, width)``
    for a single channel and ``(height, width, channels)`` otherwise.
    """
    width, height = int(size[0]), int(size[1])
    shape = (height, width) if channels == 1 else (height, width, channels)
    return create_double_buffer(shape, device, dtype)


def create_double_buffer_3d(
    size: Sequence[int], device="cpu", dtype=DTYPE
) -> DoubleBuffer:
    """Allocate a zeroed 3D double buffer from ``(width, height, depth)``, laid out ``(depth, height, width)``."""
    width, height, depth = int(size[0]), int(size[1]), int(size[2])
    return create_double_buffer((depth, height, width), device, dtype)


@torch.no_grad()
def fill(tensor: Tensor, value: float) -> Tensor:
    return tensor.fill_(value)


@torch.no_grad()
def random_uniform(
    tensor: Tensor,
    value_range: Sequence[float],
    generator: Optional[torch.Generator] = None,
) -> Tensor:
    """
    Fill ``tensor`` with independent uniform values in ``[lo, hi)``.

    Values are drawn on the generator's own device and then copied, so a CPU
    generator can seed tensors living on an accelerator and vice versa.
    """
    lo, hi = float(value_range[0]), float(value_range[1])
    gen_device = generator.device if generator is not None else tensor.device
    values = torch.rand(
        tensor.shape, generator=generator, dtype=tensor.dtype, device=gen_device
    )
    tensor.copy_(values.mul_(hi - lo).add_(lo))
    return tensor


def grid_1d(num_cells: int, block_size: int = BLOCK_SIZE) -> Tuple[int]:
    """Triton launch grid covering ``num_cells`` flat cells."""
    return ((num_cells + block_size - 1) // block_size,)
