"""
Triton kernels for chunk winner-take-all inhibition.

The hidden grid is tiled into chunks of CHUNK_W x CHUNK_H cells (edge chunks
are clipped to the grid). Within a chunk the unit with the largest
activation wins; offsets are scanned row-major (dy outer, dx inner) and only
a strictly greater value displaces the current candidate, so ties resolve to
the first cell in scan order. The chunk origin is always in the grid and is
the initial candidate.

Every hidden cell rescans its own chunk, so each program writes only its own
cells and no cross-program synchronization is needed. The self variant also
records the winner's (dx, dy) offset; the chunk-origin cell performs that
write.

Grid parallelization: (ceil(hh * hw / BLOCK_SIZE),)
"""

import triton
import triton.language as tl
from torch import Tensor

from ..buffers import grid_1d
from ..const import BLOCK_SIZE


@triton.jit
def _chunk_argmax(
    activations_ptr,
    hx,
    hy,
    mask,
    HIDDEN_W,
    HIDDEN_H,
    CHUNK_W,
    CHUNK_H,
    BLOCK: tl.constexpr,
):
    origin_x = (hx // CHUNK_W) * CHUNK_W
    origin_y = (hy // CHUNK_H) * CHUNK_H

    best = tl.full((BLOCK,), float("-inf"), dtype=tl.float32)
    best_idx = tl.zeros((BLOCK,), dtype=tl.int32)
    for dy in range(0, CHUNK_H):
        for dx in range(0, CHUNK_W):
            px = origin_x + dx
            py = origin_y + dy
            valid = mask & (px < HIDDEN_W) & (py < HIDDEN_H)
            a = tl.load(
                activations_ptr + py * HIDDEN_W + px, mask=valid, other=float("-inf")
            ).to(tl.float32)
            first = ((dx == 0) & (dy == 0)).to(tl.int32) > 0
            better = valid & ((a > best) | first)
            best = tl.where(better, a, best)
            best_idx = tl.where(better, dy * CHUNK_W + dx, best_idx)
    return best_idx


@triton.jit
def _inhibit_kernel(
    activations_ptr,
    states_ptr,
    chunk_winners_ptr,
    HIDDEN_W,
    HIDDEN_H,
    CHUNK_W,
    CHUNK_H,
    CHUNKS_X,
    BLOCK: tl.constexpr,
):
    pid = tl.program_id(axis=0)
    offs = pid * BLOCK + tl.arange(0, BLOCK)
    mask = offs < HIDDEN_W * HIDDEN_H

    hx = offs % HIDDEN_W
    hy = offs // HIDDEN_W

    best_idx = _chunk_argmax(
        activations_ptr, hx, hy, mask, HIDDEN_W, HIDDEN_H, CHUNK_W, CHUNK_H, BLOCK
    )

    ox = hx % CHUNK_W
    oy = hy % CHUNK_H
    state = tl.where(best_idx == oy * CHUNK_W + ox, 1.0, 0.0)
    tl.store(states_ptr + offs, state.to(states_ptr.dtype.element_ty), mask=mask)

    is_origin = mask & (ox == 0) & (oy == 0)
    chunk = (hy // CHUNK_H) * CHUNKS_X + hx // CHUNK_W
    winner_dtype = chunk_winners_ptr.dtype.element_ty
    tl.store(
        chunk_winners_ptr + chunk * 2,
        (best_idx % CHUNK_W).to(winner_dtype),
        mask=is_origin,
    )
    tl.store(
        chunk_winners_ptr + chunk * 2 + 1,
        (best_idx // CHUNK_W).to(winner_dtype),
        mask=is_origin,
    )


@triton.jit
def _inhibit_other_kernel(
    activations_ptr,
    states_ptr,
    HIDDEN_W,
    HIDDEN_H,
    CHUNK_W,
    CHUNK_H,
    BLOCK: tl.constexpr,
):
    pid = tl.program_id(axis=0)
    offs = pid * BLOCK + tl.arange(0, BLOCK)
    mask = offs < HIDDEN_W * HIDDEN_H

    hx = offs % HIDDEN_W
    hy = offs // HIDDEN_W

    best_idx = _chunk_argmax(
        activations_ptr, hx, hy, mask, HIDDEN_W, HIDDEN_H, CHUNK_W, CHUNK_H, BLOCK
    )

    ox = hx % CHUNK_W
    oy = hy % CHUNK_H
    state = tl.where(best_idx == oy * CHUNK_W + ox, 1.0, 0.0)
    tl.store(states_ptr + offs, state.to(states_ptr.dtype.element_ty), mask=mask)


def sfc_inhibit(
    activations: Tensor, states: Tensor, chunk_winners: Tensor, chunk_size
):
    hidden_h, hidden_w = activations.shape
    _inhibit_kernel[grid_1d(hidden_h * hidden_w)](
        activations,
        states,
        chunk_winners,
        hidden_w,
        hidden_h,
        int(chunk_size[0]),
        int(chunk_size[1]),
        chunk_winners.shape[1],
        BLOCK=BLOCK_SIZE,
    )


def sfc_inhibit_other(activations: Tensor, states: Tensor, chunk_size):
    hidden_h, hidden_w = activations.shape
    _inhibit_other_kernel[grid_1d(hidden_h * hidden_w)](
        activations.contiguous(),
        states,
        hidden_w,
        hidden_h,
        int(chunk_size[0]),
        int(chunk_size[1]),
        BLOCK=BLOCK_SIZE,
    )
