import torch
import numpy as np
import argparse
from tqdm import tqdm

from sfc import (
    SparseFeaturesChunkDesc,
    VisibleLayerDesc,
    encoder_summary,
    load_desc,
    print_config,
    save_to_file,
)
from sfc.const import DEVICE


def moving_bar_generator(n_points=1000, width=16, height=16, bar_width=2, seed=None):
    """Generates frames of a bar sweeping across the grid with a random drift per pass."""
    rng = np.random.default_rng(seed)
    frames = np.zeros((n_points, height, width), dtype=np.float32)
    x = 0.0
    speed = rng.uniform(0.5, 1.5)
    for t in range(n_points):
        col = int(x) % width
        for k in range(bar_width):
            frames[t, :, (col + k) % width] = 1.0
        frames[t] += rng.normal(0.0, 0.05, size=(height, width)).astype(np.float32)
        x += speed
        if x >= width:
            x -= width
            speed = rng.uniform(0.5, 1.5)
    return frames


def get_encoder_config(args):
    """Creates the encoder configuration from the command line."""
    if args.config is not None:
        return load_desc(args.config)

    return SparseFeaturesChunkDesc(
        visible_layer_descs=[
            VisibleLayerDesc(
                size=(args.input_size, args.input_size),
                radius=args.radius,
                weight_alpha=args.alpha,
                lambda_=args.lambda_,
            )
        ],
        hidden_size=(args.hidden_size, args.hidden_size),
        chunk_size=(args.chunk_size, args.chunk_size),
        num_samples=args.num_samples,
        seed=args.seed,
        device=args.device,
    )


def winner_statistics(winner_counts):
    """Fraction of units per chunk that ever won, and the entropy of the win distribution."""
    counts = winner_counts.reshape(-1, winner_counts.shape[-1])
    used = (counts > 0).float().mean(dim=1)
    probs = counts / counts.sum(dim=1, keepdim=True).clamp_min(1.0)
    entropy = -(probs * torch.log(probs.clamp_min(1e-12))).sum(dim=1)
    return used.mean().item(), entropy.mean().item()


def run(args):
    torch.manual_seed(args.seed)
    desc = get_encoder_config(args)
    print_config(desc)

    encoder = desc.build()
    print_config(encoder_summary(encoder), title="Encoder State")
    vld = desc.visible_layer_descs[0]
    frames = moving_bar_generator(
        n_points=args.steps, width=vld.size[0], height=vld.size[1], seed=args.seed
    )

    chunk_w, chunk_h = desc.chunk_size
    chunks_x, chunks_y = desc.chunk_grid
    winner_counts = torch.zeros(chunks_y, chunks_x, chunk_w * chunk_h)
    changes = 0
    prev_winners = encoder.chunk_winners.clone()

    for step in tqdm(range(args.steps)):
        inputs = [torch.from_numpy(frames[step])]
        encoder.step(inputs, learn=not args.no_learn)

        winners = encoder.chunk_winners.cpu()
        flat = winners[..., 1] * chunk_w + winners[..., 0]
        ones = torch.ones(flat.shape + (1,))
        winner_counts.scatter_add_(2, flat.unsqueeze(-1), ones)
        changes += int((winners != prev_winners.cpu()).any(dim=-1).sum())
        prev_winners = winners

    used, entropy = winner_statistics(winner_counts)
    print(f"Chunks: {chunks_x} x {chunks_y}, units per chunk: {chunk_w * chunk_h}")
    print(f"Mean fraction of units that ever won: {used:.3f}")
    print(f"Mean per-chunk winner entropy: {entropy:.3f} nats")
    print(f"Winner changes per step: {changes / max(args.steps, 1):.2f}")

    if args.save is not None:
        save_to_file(encoder, args.save)
        print(f"Saved encoder state to {args.save}")


def main():
    parser = argparse.ArgumentParser(
        description="Stream a moving bar through a chunk sparse-features encoder."
    )
    parser.add_argument("--config", type=str, default=None, help="YAML encoder config.")
    parser.add_argument("--steps", type=int, default=2000)
    parser.add_argument("--input-size", type=int, default=16)
    parser.add_argument("--hidden-size", type=int, default=16)
    parser.add_argument("--chunk-size", type=int, default=4)
    parser.add_argument("--radius", type=int, default=3)
    parser.add_argument("--num-samples", type=int, default=2)
    parser.add_argument("--alpha", type=float, default=0.01)
    parser.add_argument("--lambda", dest="lambda_", type=float, default=0.5)
    parser.add_argument("--device", type=str, default=DEVICE)
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--no-learn", action="store_true", help="Freeze the weights.")
    parser.add_argument("--save", type=str, default=None, help="Path for the final state.")
    args = parser.parse_args()
    run(args)


if __name__ == "__main__":
    main()
