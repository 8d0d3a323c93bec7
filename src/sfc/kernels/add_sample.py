"""
Triton kernel shifting the newest derived rate into each cell's sample FIFO.

    front[0]     = derived[..., 1]
    front[s]     = back[s - 1]      for s in 1..S-1

The oldest slot of ``back`` is dropped. Slots are planes of a (S, vh, vw)
tensor, so slot s of cell i lives at ``s * NUM_CELLS + i``.

Grid parallelization: (ceil(vh * vw / BLOCK_SIZE),)
"""

import triton
import triton.language as tl
from torch import Tensor

from ..buffers import grid_1d
from ..const import BLOCK_SIZE


@triton.jit
def _add_sample_kernel(
    derived_ptr,
    samples_back_ptr,
    samples_front_ptr,
    NUM_CELLS,
    NUM_SAMPLES,
    BLOCK: tl.constexpr,
):
    pid = tl.program_id(axis=0)
    offs = pid * BLOCK + tl.arange(0, BLOCK)
    mask = offs < NUM_CELLS

    for s in range(1, NUM_SAMPLES):
        older = tl.load(samples_back_ptr + (s - 1) * NUM_CELLS + offs, mask=mask)
        tl.store(samples_front_ptr + s * NUM_CELLS + offs, older, mask=mask)

    newest = tl.load(derived_ptr + offs * 2 + 1, mask=mask)
    tl.store(samples_front_ptr + offs, newest, mask=mask)


def sfc_add_sample(derived: Tensor, samples_back: Tensor, samples_front: Tensor):
    num_samples = samples_back.shape[0]
    num_cells = samples_back.shape[1] * samples_back.shape[2]
    _add_sample_kernel[grid_1d(num_cells)](
        derived,
        samples_back,
        samples_front,
        num_cells,
        num_samples,
        BLOCK=BLOCK_SIZE,
    )
