"""
Triton kernel deriving the (running average, rate-of-change) encoding of a raw input.

For every visible cell, channel 0 holds an exponential running average of
the input and channel 1 the input's deviation from it:

    rate  = x_t - avg_{t-1}
    avg_t = avg_{t-1} + λ * rate

λ = 0 keeps the average at zero, so the raw signal passes through
unchanged; λ = 1 tracks the last input, so the rate is the pure temporal
difference. In between, 1 / λ is the filter's time constant in steps. The
rate channel is what enters the sample history.

Grid parallelization: (ceil(vh * vw / BLOCK_SIZE),)
"""

import triton
import triton.language as tl
from torch import Tensor

from ..buffers import grid_1d
from ..const import BLOCK_SIZE


@triton.jit
def _derive_inputs_kernel(
    inputs_ptr,
    derived_back_ptr,
    derived_front_ptr,
    NUM_CELLS,
    LAMBDA,
    BLOCK: tl.constexpr,
):
    pid = tl.program_id(axis=0)
    offs = pid * BLOCK + tl.arange(0, BLOCK)
    mask = offs < NUM_CELLS

    x = tl.load(inputs_ptr + offs, mask=mask, other=0.0)
    prev_avg = tl.load(derived_back_ptr + offs * 2, mask=mask, other=0.0)

    rate = x - prev_avg
    avg = prev_avg + LAMBDA * rate

    tl.store(derived_front_ptr + offs * 2, avg, mask=mask)
    tl.store(derived_front_ptr + offs * 2 + 1, rate, mask=mask)


def sfc_derive_inputs(
    inputs: Tensor, derived_back: Tensor, derived_front: Tensor, lambda_: float
):
    num_cells = inputs.numel()
    _derive_inputs_kernel[grid_1d(num_cells)](
        inputs.contiguous(),
        derived_back,
        derived_front,
        num_cells,
        float(lambda_),
        BLOCK=BLOCK_SIZE,
    )
