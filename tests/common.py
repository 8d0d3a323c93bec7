from typing import List

import torch

from sfc.hyperparameters import SparseFeaturesChunkDesc, VisibleLayerDesc

cuda_available = torch.cuda.is_available()


def available_backends() -> List[tuple]:
    """(device, backend) pairs runnable on this machine."""
    pairs = [("cpu", "torch")]
    if cuda_available:
        pairs += [("cuda", "torch"), ("cuda", "triton")]
    return pairs


def make_desc(
    visible_sizes=((4, 4),),
    hidden_size=(4, 4),
    chunk_size=(2, 2),
    radius=1,
    num_samples=1,
    ignore_middle=False,
    weight_alpha=0.1,
    lambda_=0.0,
    device="cpu",
    backend="torch",
    **kwargs,
) -> SparseFeaturesChunkDesc:
    layers = [
        VisibleLayerDesc(
            size=size,
            radius=radius,
            ignore_middle=ignore_middle,
            weight_alpha=weight_alpha,
            lambda_=lambda_,
        )
        for size in visible_sizes
    ]
    return SparseFeaturesChunkDesc(
        visible_layer_descs=layers,
        hidden_size=hidden_size,
        chunk_size=chunk_size,
        num_samples=num_samples,
        device=device,
        backend=backend,
        **kwargs,
    )


def random_inputs(desc: SparseFeaturesChunkDesc, seed: int = 0) -> List[torch.Tensor]:
    gen = torch.Generator().manual_seed(seed)
    return [
        torch.rand(vld.size[1], vld.size[0], generator=gen).to(desc.device)
        for vld in desc.visible_layer_descs
    ]


def chunk_tiles(grid: torch.Tensor, chunk_size):
    """Yield ((cx, cy), tile) for every chunk of a [h, w] grid, edge tiles clipped."""
    height, width = grid.shape
    chunk_w, chunk_h = chunk_size
    for cy, y0 in enumerate(range(0, height, chunk_h)):
        for cx, x0 in enumerate(range(0, width, chunk_w)):
            yield (cx, cy), grid[y0 : y0 + chunk_h, x0 : x0 + chunk_w]
