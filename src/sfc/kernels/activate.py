"""
Triton kernel combining accumulated stimulus with the previous hidden state.

    activation = stimulus + STATE_BIAS * state_{t-1}

The previous binary state acts as a trace: a unit that just won its chunk
starts the next competition STATE_BIAS ahead of its chunk-mates.

Grid parallelization: (ceil(hh * hw / BLOCK_SIZE),)
"""

import triton
import triton.language as tl
from torch import Tensor

from ..buffers import grid_1d
from ..const import BLOCK_SIZE


@triton.jit
def _activate_kernel(
    stimulus_ptr,
    states_prev_ptr,
    activations_ptr,
    NUM_HIDDEN,
    STATE_BIAS,
    BLOCK: tl.constexpr,
):
    pid = tl.program_id(axis=0)
    offs = pid * BLOCK + tl.arange(0, BLOCK)
    mask = offs < NUM_HIDDEN

    stimulus = tl.load(stimulus_ptr + offs, mask=mask, other=0.0)
    state_prev = tl.load(states_prev_ptr + offs, mask=mask, other=0.0)

    tl.store(activations_ptr + offs, stimulus + STATE_BIAS * state_prev, mask=mask)


def sfc_activate(
    stimulus: Tensor, states_prev: Tensor, activations: Tensor, state_bias: float
):
    num_hidden = stimulus.numel()
    _activate_kernel[grid_1d(num_hidden)](
        stimulus,
        states_prev,
        activations,
        num_hidden,
        float(state_bias),
        BLOCK=BLOCK_SIZE,
    )
