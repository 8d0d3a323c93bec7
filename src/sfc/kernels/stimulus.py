"""
Triton kernel accumulating receptive-field stimulus from one input.

For hidden unit (hx, hy) the window centre in the input grid is
    c = floor((h + 0.5) * hidden_to_visible)
per axis, and the stimulus contributed by this input is

    Σ_s Σ_{dx,dy ∈ [-r, r]} samples[s, cy+dy, cx+dx] · W[hy, hx, s·A + (dy+r)·D + (dx+r)]

where D = 2r + 1 and A = D². Cells outside the input grid contribute
nothing, and the centre offset is skipped when IGNORE_MIDDLE is set.
The result is added to the running total carried over from the previous
input (``summation_back``) and written to ``summation_front``.

Grid parallelization: (ceil(hh * hw / BLOCK_SIZE),)
"""

import triton
import triton.language as tl
from torch import Tensor

from ..buffers import grid_1d
from ..const import BLOCK_SIZE


@triton.jit
def _stimulus_kernel(
    samples_ptr,
    summation_back_ptr,
    summation_front_ptr,
    weights_ptr,
    HIDDEN_W,
    NUM_HIDDEN,
    VISIBLE_W,
    VISIBLE_H,
    HIDDEN_TO_VISIBLE_X,
    HIDDEN_TO_VISIBLE_Y,
    RADIUS,
    NUM_SAMPLES,
    IGNORE_MIDDLE,
    BLOCK: tl.constexpr,
):
    pid = tl.program_id(axis=0)
    offs = pid * BLOCK + tl.arange(0, BLOCK)
    mask = offs < NUM_HIDDEN

    hx = offs % HIDDEN_W
    hy = offs // HIDDEN_W

    cx = ((hx.to(tl.float32) + 0.5) * HIDDEN_TO_VISIBLE_X).to(tl.int32)
    cy = ((hy.to(tl.float32) + 0.5) * HIDDEN_TO_VISIBLE_Y).to(tl.int32)

    diam = RADIUS * 2 + 1
    area = diam * diam
    num_weights = area * NUM_SAMPLES
    num_visible = VISIBLE_W * VISIBLE_H

    acc = tl.zeros((BLOCK,), dtype=tl.float32)
    for s in range(0, NUM_SAMPLES):
        for dyi in range(0, diam):
            for dxi in range(0, diam):
                vx = cx + dxi - RADIUS
                vy = cy + dyi - RADIUS
                centre = ((dxi == RADIUS) & (dyi == RADIUS)).to(tl.int32)
                use = (1 - IGNORE_MIDDLE * centre) > 0
                in_bounds = (
                    mask & use & (vx >= 0) & (vx < VISIBLE_W) & (vy >= 0) & (vy < VISIBLE_H)
                )

                sample = tl.load(
                    samples_ptr + s * num_visible + vy * VISIBLE_W + vx,
                    mask=in_bounds,
                    other=0.0,
                )
                wi = s * area + dyi * diam + dxi
                weight = tl.load(
                    weights_ptr + offs * num_weights + wi, mask=in_bounds, other=0.0
                )
                acc += sample * weight

    running = tl.load(summation_back_ptr + offs, mask=mask, other=0.0)
    tl.store(summation_front_ptr + offs, running + acc, mask=mask)


def sfc_stimulus(
    samples: Tensor,
    summation_back: Tensor,
    summation_front: Tensor,
    weights: Tensor,
    hidden_to_visible,
    radius: int,
    ignore_middle: bool,
):
    num_samples, visible_h, visible_w = samples.shape
    hidden_h, hidden_w = summation_back.shape
    num_hidden = hidden_h * hidden_w
    _stimulus_kernel[grid_1d(num_hidden)](
        samples,
        summation_back,
        summation_front,
        weights,
        hidden_w,
        num_hidden,
        visible_w,
        visible_h,
        float(hidden_to_visible[0]),
        float(hidden_to_visible[1]),
        int(radius),
        num_samples,
        int(bool(ignore_middle)),
        BLOCK=BLOCK_SIZE,
    )
