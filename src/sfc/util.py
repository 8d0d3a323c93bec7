"""
Configuration and state display helpers.
"""

import dataclasses

import numpy as np
import torch
import yaml

from .buffers import DoubleBuffer

# Tensors with more elements than this are shown as a shape summary
MAX_INLINE_ELEMENTS = 32


def _tensor_summary(tensor: torch.Tensor) -> str:
    return f"tensor(shape={list(tensor.shape)}, dtype={tensor.dtype}, device={tensor.device})"


def config_to_dict(obj, include_derived: bool = True):
    """
    Convert an encoder configuration to plain YAML-safe values.

    Descs are walked recursively. ``include_derived=False`` drops fields that
    ``__post_init__`` computes (``diameter``, ``window_area``, ``chunk_grid``),
    which gives a mapping ``SparseFeaturesChunkDesc.from_dict`` accepts back.
    Double buffers and large tensors are reduced to shape strings.
    """
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {
            f.name: config_to_dict(getattr(obj, f.name), include_derived)
            for f in dataclasses.fields(obj)
            if include_derived or f.init
        }
    if isinstance(obj, DoubleBuffer):
        return f"DoubleBuffer(shape={list(obj.shape)}, dtype={obj.back.dtype})"
    if isinstance(obj, dict):
        return {k: config_to_dict(v, include_derived) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [config_to_dict(v, include_derived) for v in obj]
    if isinstance(obj, torch.Tensor):
        if obj.numel() > MAX_INLINE_ELEMENTS:
            return _tensor_summary(obj)
        return obj.tolist()
    if isinstance(obj, (torch.dtype, torch.device)):
        return str(obj)
    if isinstance(obj, (np.integer, np.floating)):
        return obj.item()
    return obj


def encoder_summary(encoder) -> dict:
    """Shapes and memory footprint of every double-buffered grid an encoder owns."""
    buffers = dict(encoder.double_buffers())
    for i, vl in enumerate(encoder.visible_layers):
        for name, buffer in vl.buffers().items():
            buffers[f"visible_layers[{i}].{name}"] = buffer

    total_bytes = sum(
        2 * b.back.numel() * b.back.element_size() for b in buffers.values()
    )
    return {
        "backend": encoder.desc.backend,
        "device": str(encoder.device),
        "chunk_grid": list(encoder.chunk_grid),
        "buffers": {name: list(b.shape) for name, b in buffers.items()},
        "memory_mib": round(total_bytes / 2**20, 3),
    }


def format_config(cfg, title: str = "Encoder Configuration") -> str:
    """
    Render a desc, or a summary dict such as ``encoder_summary``, as YAML
    framed by a rule sized to the widest line.

    Leaf lists (sizes, shapes, scale factors) stay inline, so a shape reads
    ``[4, 4, 18]`` rather than one element per line.
    """
    body = yaml.safe_dump(
        config_to_dict(cfg), sort_keys=False, default_flow_style=None, width=100
    ).rstrip()
    width = max(len(title), *(len(line) for line in body.splitlines()))
    rule = "=" * width
    return "\n".join([rule, title, "-" * len(title), body, rule])


def print_config(cfg, title: str = "Encoder Configuration"):
    print("\n" + format_config(cfg, title) + "\n")
