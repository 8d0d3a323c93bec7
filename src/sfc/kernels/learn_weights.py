"""
Triton kernel for winner-gated weight learning.

Learning is gated by the chunk competition. For hidden unit u with
receptive-field sample s and weight w:

    win       = u is its chunk's current winner
    displaced = u was the previous winner and lost this step

    Δw = α · (win · (s - w) - displaced · w)

The current winner moves its weights toward the inputs it just won on;
a displaced winner decays toward zero. All other units copy through
unchanged. Weights whose window cell falls outside the input grid are left
untouched. The kernel reads ``weights_back`` and writes every entry of
``weights_front``, so no unit ever reads a weight that is being rewritten.

Grid parallelization: (ceil(hh * hw / BLOCK_SIZE),)
"""

import triton
import triton.language as tl
from torch import Tensor

from ..buffers import grid_1d
from ..const import BLOCK_SIZE


@triton.jit
def _learn_weights_kernel(
    chunk_winners_ptr,
    chunk_winners_prev_ptr,
    samples_ptr,
    weights_back_ptr,
    weights_front_ptr,
    HIDDEN_W,
    NUM_HIDDEN,
    VISIBLE_W,
    VISIBLE_H,
    HIDDEN_TO_VISIBLE_X,
    HIDDEN_TO_VISIBLE_Y,
    CHUNK_W,
    CHUNK_H,
    CHUNKS_X,
    RADIUS,
    NUM_SAMPLES,
    ALPHA,
    BLOCK: tl.constexpr,
):
    pid = tl.program_id(axis=0)
    offs = pid * BLOCK + tl.arange(0, BLOCK)
    mask = offs < NUM_HIDDEN

    hx = offs % HIDDEN_W
    hy = offs // HIDDEN_W

    chunk = (hy // CHUNK_H) * CHUNKS_X + hx // CHUNK_W
    ox = hx % CHUNK_W
    oy = hy % CHUNK_H

    winner_x = tl.load(chunk_winners_ptr + chunk * 2, mask=mask, other=-1)
    winner_y = tl.load(chunk_winners_ptr + chunk * 2 + 1, mask=mask, other=-1)
    prev_x = tl.load(chunk_winners_prev_ptr + chunk * 2, mask=mask, other=-1)
    prev_y = tl.load(chunk_winners_prev_ptr + chunk * 2 + 1, mask=mask, other=-1)

    win = (winner_x == ox) & (winner_y == oy)
    was = (prev_x == ox) & (prev_y == oy)
    win_f = tl.where(win, 1.0, 0.0)
    displaced_f = tl.where(was, 1.0, 0.0) * (1.0 - win_f)

    cx = ((hx.to(tl.float32) + 0.5) * HIDDEN_TO_VISIBLE_X).to(tl.int32)
    cy = ((hy.to(tl.float32) + 0.5) * HIDDEN_TO_VISIBLE_Y).to(tl.int32)

    diam = RADIUS * 2 + 1
    area = diam * diam
    num_weights = area * NUM_SAMPLES
    num_visible = VISIBLE_W * VISIBLE_H

    for s in range(0, NUM_SAMPLES):
        for dyi in range(0, diam):
            for dxi in range(0, diam):
                vx = cx + dxi - RADIUS
                vy = cy + dyi - RADIUS
                in_bounds = (vx >= 0) & (vx < VISIBLE_W) & (vy >= 0) & (vy < VISIBLE_H)

                sample = tl.load(
                    samples_ptr + s * num_visible + vy * VISIBLE_W + vx,
                    mask=mask & in_bounds,
                    other=0.0,
                )
                w_offs = offs * num_weights + s * area + dyi * diam + dxi
                w = tl.load(weights_back_ptr + w_offs, mask=mask, other=0.0)

                delta = ALPHA * (win_f * (sample - w) - displaced_f * w)
                delta = tl.where(in_bounds, delta, 0.0)

                tl.store(weights_front_ptr + w_offs, w + delta, mask=mask)


def sfc_learn_weights(
    chunk_winners: Tensor,
    chunk_winners_prev: Tensor,
    samples: Tensor,
    weights_back: Tensor,
    weights_front: Tensor,
    hidden_to_visible,
    chunk_size,
    radius: int,
    weight_alpha: float,
):
    num_samples, visible_h, visible_w = samples.shape
    hidden_h, hidden_w = weights_back.shape[0], weights_back.shape[1]
    num_hidden = hidden_h * hidden_w
    _learn_weights_kernel[grid_1d(num_hidden)](
        chunk_winners,
        chunk_winners_prev,
        samples,
        weights_back,
        weights_front,
        hidden_w,
        num_hidden,
        visible_w,
        visible_h,
        float(hidden_to_visible[0]),
        float(hidden_to_visible[1]),
        int(chunk_size[0]),
        int(chunk_size[1]),
        chunk_winners.shape[1],
        int(radius),
        num_samples,
        float(weight_alpha),
        BLOCK=BLOCK_SIZE,
    )
