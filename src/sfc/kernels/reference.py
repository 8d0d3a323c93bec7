"""
Portable torch implementations of the chunk-encoder kernels.

Each function matches the signature and numerical contract of its Triton
counterpart in this package and writes its results into the caller's output
tensors. These run on any torch device and back the encoder wherever Triton
cannot target the device.
"""

import math

import torch
from torch import Tensor


def _centres(num_hidden: int, hidden_to_visible: float, device) -> Tensor:
    positions = torch.arange(num_hidden, dtype=torch.float32, device=device)
    return ((positions + 0.5) * hidden_to_visible).to(torch.long)


def _gather_windows(samples: Tensor, hidden_shape, hidden_to_visible, radius: int):
    """
    Gather every hidden unit's receptive-field samples.

    Returns
    -------
    patches : Tensor [hh, hw, S * area]
        Samples in weight-depth order, zero where the window leaves the grid.
    valid : Tensor (bool) [hh, hw, S * area]
        Whether each window cell lies inside the input grid.
    """
    num_samples, visible_h, visible_w = samples.shape
    hidden_h, hidden_w = hidden_shape
    device = samples.device
    diam = 2 * radius + 1

    offsets = torch.arange(-radius, radius + 1, device=device)
    vx = _centres(hidden_w, hidden_to_visible[0], device)[:, None] + offsets[None, :]
    vy = _centres(hidden_h, hidden_to_visible[1], device)[:, None] + offsets[None, :]
    valid_x = (vx >= 0) & (vx < visible_w)
    valid_y = (vy >= 0) & (vy < visible_h)

    vxc = vx.clamp(0, visible_w - 1)
    vyc = vy.clamp(0, visible_h - 1)

    # [S, hh, hw, diam, diam]
    patches = samples[:, vyc[:, None, :, None], vxc[None, :, None, :]]
    patches = patches.permute(1, 2, 0, 3, 4).reshape(
        hidden_h, hidden_w, num_samples * diam * diam
    )

    valid = valid_y[:, None, :, None] & valid_x[None, :, None, :]
    valid = (
        valid.unsqueeze(2)
        .expand(hidden_h, hidden_w, num_samples, diam, diam)
        .reshape(hidden_h, hidden_w, num_samples * diam * diam)
    )
    patches = torch.where(valid, patches, torch.zeros_like(patches))
    return patches, valid


def _chunk_argmax(activations: Tensor, chunk_size) -> Tensor:
    """Row-major first-max index within each chunk, shaped [chunks_y, chunks_x]."""
    hidden_h, hidden_w = activations.shape
    chunk_w, chunk_h = int(chunk_size[0]), int(chunk_size[1])
    chunks_x = int(math.ceil(hidden_w / chunk_w))
    chunks_y = int(math.ceil(hidden_h / chunk_h))

    padded = torch.full(
        (chunks_y * chunk_h, chunks_x * chunk_w),
        float("-inf"),
        dtype=activations.dtype,
        device=activations.device,
    )
    padded[:hidden_h, :hidden_w] = activations
    tiles = (
        padded.view(chunks_y, chunk_h, chunks_x, chunk_w)
        .permute(0, 2, 1, 3)
        .reshape(chunks_y, chunks_x, chunk_h * chunk_w)
    )
    return tiles.argmax(dim=-1)


def _winner_mask(best: Tensor, hidden_shape, chunk_size) -> Tensor:
    hidden_h, hidden_w = hidden_shape
    chunk_w, chunk_h = int(chunk_size[0]), int(chunk_size[1])
    device = best.device
    hy = torch.arange(hidden_h, device=device)
    hx = torch.arange(hidden_w, device=device)
    per_cell = best[(hy // chunk_h)[:, None], (hx // chunk_w)[None, :]]
    own = (hy % chunk_h)[:, None] * chunk_w + (hx % chunk_w)[None, :]
    return per_cell == own


@torch.no_grad()
def sfc_derive_inputs(
    inputs: Tensor, derived_back: Tensor, derived_front: Tensor, lambda_: float
):
    rate = inputs - derived_back[..., 0]
    derived_front[..., 0] = derived_back[..., 0] + lambda_ * rate
    derived_front[..., 1] = rate


@torch.no_grad()
def sfc_add_sample(derived: Tensor, samples_back: Tensor, samples_front: Tensor):
    samples_front[1:] = samples_back[:-1]
    samples_front[0] = derived[..., 1]


@torch.no_grad()
def sfc_stimulus(
    samples: Tensor,
    summation_back: Tensor,
    summation_front: Tensor,
    weights: Tensor,
    hidden_to_visible,
    radius: int,
    ignore_middle: bool,
):
    patches, _ = _gather_windows(samples, summation_back.shape, hidden_to_visible, radius)
    products = patches * weights
    if ignore_middle:
        num_samples = samples.shape[0]
        diam = 2 * radius + 1
        centre = radius * diam + radius
        keep = torch.ones(diam * diam, dtype=torch.bool, device=samples.device)
        keep[centre] = False
        products = products * keep.repeat(num_samples).to(products.dtype)
    torch.add(summation_back, products.sum(dim=-1), out=summation_front)


@torch.no_grad()
def sfc_activate(
    stimulus: Tensor, states_prev: Tensor, activations: Tensor, state_bias: float
):
    torch.add(stimulus, states_prev, alpha=state_bias, out=activations)


@torch.no_grad()
def sfc_inhibit(
    activations: Tensor, states: Tensor, chunk_winners: Tensor, chunk_size
):
    best = _chunk_argmax(activations, chunk_size)
    states.copy_(_winner_mask(best, activations.shape, chunk_size).to(states.dtype))
    chunk_w = int(chunk_size[0])
    chunk_winners[..., 0] = best % chunk_w
    chunk_winners[..., 1] = best // chunk_w


@torch.no_grad()
def sfc_inhibit_other(activations: Tensor, states: Tensor, chunk_size):
    best = _chunk_argmax(activations, chunk_size)
    states.copy_(_winner_mask(best, activations.shape, chunk_size).to(states.dtype))


@torch.no_grad()
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
    hidden_shape = weights_back.shape[:2]
    chunk_w = int(chunk_size[0])

    current = chunk_winners[..., 1] * chunk_w + chunk_winners[..., 0]
    previous = chunk_winners_prev[..., 1] * chunk_w + chunk_winners_prev[..., 0]
    win = _winner_mask(current, hidden_shape, chunk_size)
    displaced = _winner_mask(previous, hidden_shape, chunk_size) & ~win

    patches, valid = _gather_windows(samples, hidden_shape, hidden_to_visible, radius)

    win_f = win.to(weights_back.dtype).unsqueeze(-1)
    displaced_f = displaced.to(weights_back.dtype).unsqueeze(-1)
    delta = weight_alpha * (win_f * (patches - weights_back) - displaced_f * weights_back)
    delta = torch.where(valid, delta, torch.zeros_like(delta))

    torch.add(weights_back, delta, out=weights_front)


KERNELS = {
    "sfc_derive_inputs": sfc_derive_inputs,
    "sfc_add_sample": sfc_add_sample,
    "sfc_stimulus": sfc_stimulus,
    "sfc_activate": sfc_activate,
    "sfc_inhibit": sfc_inhibit,
    "sfc_inhibit_other": sfc_inhibit_other,
    "sfc_learn_weights": sfc_learn_weights,
}
