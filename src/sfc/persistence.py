"""
Save and restore the complete encoder state.

A saved record is a nested plain dict of Python scalars and CPU tensors:

    type, hidden_size, chunk_size, num_samples, init_weight_range, state_bias
    hidden_states / hidden_activations / chunk_winners / hidden_summation_temp
        {"front": Tensor, "back": Tensor}
    visible_layer_descs[i]
        size, radius, ignore_middle, weight_alpha, lambda_
    visible_layers[i]
        derived_input / samples / weights: {"front", "back"}
        hidden_to_visible, visible_to_hidden, chunk_to_visible, reverse_radii

Saving is pure. Loading validates the whole record against the live encoder
before overwriting anything and never resizes: any disagreement in type,
hidden size, layer count or tensor shape raises ``StateMismatchError``.
Scale factors are taken from the record as-is rather than re-derived.
"""

from pathlib import Path
from typing import Dict

import torch

from .buffers import DoubleBuffer
from .const import STATE_RECORD_TYPE
from .hyperparameters import SparseFeaturesChunkDesc, VisibleLayerDesc


class StateMismatchError(RuntimeError):
    """Persisted state does not fit the live encoder's configured shapes."""


_RECORD_KEYS = (
    "hidden_size",
    "chunk_size",
    "num_samples",
    "init_weight_range",
    "state_bias",
    "visible_layer_descs",
    "visible_layers",
)
_LAYER_KEYS = ("hidden_to_visible", "visible_to_hidden", "chunk_to_visible", "reverse_radii")


def _check(condition: bool, message: str):
    if not condition:
        raise StateMismatchError(message)


def _save_buffer(buffer: DoubleBuffer) -> Dict[str, torch.Tensor]:
    return {
        "front": buffer.front.detach().to("cpu", copy=True),
        "back": buffer.back.detach().to("cpu", copy=True),
    }


def _check_buffer(buffer: DoubleBuffer, record, name: str):
    _check(
        isinstance(record, dict) and "front" in record and "back" in record,
        f"{name}: expected a front/back record",
    )
    for half in ("front", "back"):
        tensor = record[half]
        _check(isinstance(tensor, torch.Tensor), f"{name}.{half}: expected a tensor")
        _check(
            tuple(tensor.shape) == tuple(buffer.shape),
            f"{name}.{half}: shape {tuple(tensor.shape)} does not match {tuple(buffer.shape)}",
        )
        _check(
            tensor.dtype == buffer.back.dtype,
            f"{name}.{half}: dtype {tensor.dtype} does not match {buffer.back.dtype}",
        )


@torch.no_grad()
def _load_buffer(buffer: DoubleBuffer, record):
    buffer.front.copy_(record["front"])
    buffer.back.copy_(record["back"])


def save_visible_layer_desc(vld: VisibleLayerDesc) -> dict:
    return {
        "size": tuple(vld.size),
        "radius": vld.radius,
        "ignore_middle": vld.ignore_middle,
        "weight_alpha": vld.weight_alpha,
        "lambda_": vld.lambda_,
    }


def save_desc(desc: SparseFeaturesChunkDesc) -> dict:
    """Configuration record, without runtime tensors."""
    return {
        "type": STATE_RECORD_TYPE,
        "hidden_size": tuple(desc.hidden_size),
        "chunk_size": tuple(desc.chunk_size),
        "num_samples": desc.num_samples,
        "init_weight_range": tuple(desc.init_weight_range),
        "state_bias": desc.state_bias,
        "visible_layer_descs": [
            save_visible_layer_desc(vld) for vld in desc.visible_layer_descs
        ],
    }


def desc_from_record(record: dict, **overrides) -> SparseFeaturesChunkDesc:
    """Rebuild a configuration from a saved record, e.g. to construct a fresh encoder for ``load_state``."""
    _check(record.get("type") == STATE_RECORD_TYPE, f"Unknown record type {record.get('type')!r}")
    missing = [key for key in _RECORD_KEYS if key != "visible_layers" and key not in record]
    _check(not missing, f"Record is missing {missing}")
    config = {
        "visible_layer_descs": [dict(d) for d in record["visible_layer_descs"]],
        "hidden_size": record["hidden_size"],
        "chunk_size": record["chunk_size"],
        "num_samples": record["num_samples"],
        "init_weight_range": record["init_weight_range"],
        "state_bias": record["state_bias"],
    }
    config.update(overrides)
    return SparseFeaturesChunkDesc(**config)


def save_state(encoder) -> dict:
    record = save_desc(encoder.desc)
    for name, buffer in encoder.double_buffers().items():
        record[name] = _save_buffer(buffer)

    record["visible_layers"] = [
        {
            "derived_input": _save_buffer(vl.derived_input),
            "samples": _save_buffer(vl.samples),
            "weights": _save_buffer(vl.weights),
            "hidden_to_visible": tuple(vl.hidden_to_visible),
            "visible_to_hidden": tuple(vl.visible_to_hidden),
            "chunk_to_visible": tuple(vl.chunk_to_visible),
            "reverse_radii": tuple(vl.reverse_radii),
        }
        for vl in encoder.visible_layers
    ]
    return record


def _validate_record(encoder, record: dict):
    _check(isinstance(record, dict), f"Expected a state record, got {type(record).__name__}")
    _check(
        record.get("type") == STATE_RECORD_TYPE,
        f"Record type {record.get('type')!r} is not {STATE_RECORD_TYPE!r}",
    )
    missing = [key for key in _RECORD_KEYS if key not in record]
    _check(not missing, f"Record is missing {missing}")
    _check(
        tuple(record["hidden_size"]) == tuple(encoder.hidden_size),
        f"Hidden size {tuple(record['hidden_size'])} does not match {tuple(encoder.hidden_size)}",
    )
    _check(
        len(record["visible_layer_descs"]) == len(encoder.visible_layer_descs),
        f"Record has {len(record['visible_layer_descs'])} visible layer descs, encoder has {len(encoder.visible_layer_descs)}",
    )
    _check(
        len(record["visible_layers"]) == len(encoder.visible_layers),
        f"Record has {len(record['visible_layers'])} visible layers, encoder has {len(encoder.visible_layers)}",
    )

    for name, buffer in encoder.double_buffers().items():
        _check(name in record, f"Record is missing {name}")
        _check_buffer(buffer, record[name], name)

    for i, (vl, vl_record, vld, vld_record) in enumerate(
        zip(
            encoder.visible_layers,
            record["visible_layers"],
            encoder.visible_layer_descs,
            record["visible_layer_descs"],
        )
    ):
        _check(
            isinstance(vld_record, dict) and "size" in vld_record,
            f"visible_layer_descs[{i}] has no size",
        )
        _check(
            tuple(vld_record["size"]) == tuple(vld.size),
            f"visible_layer_descs[{i}]: size {tuple(vld_record['size'])} does not match {tuple(vld.size)}",
        )
        _check(isinstance(vl_record, dict), f"visible_layers[{i}] is not a mapping")
        for name, buffer in vl.buffers().items():
            _check(name in vl_record, f"visible_layers[{i}] is missing {name}")
            _check_buffer(buffer, vl_record[name], f"visible_layers[{i}].{name}")
        missing = [key for key in _LAYER_KEYS if key not in vl_record]
        _check(not missing, f"visible_layers[{i}] is missing {missing}")


def _visible_layer_descs(record: dict):
    descs = []
    for i, d in enumerate(record["visible_layer_descs"]):
        try:
            descs.append(VisibleLayerDesc(**d))
        except (TypeError, ValueError) as e:
            raise StateMismatchError(f"visible_layer_descs[{i}]: {e}") from e
    return descs


def load_state(encoder, record: dict):
    """
    Overwrite ``encoder`` in place with a record produced by ``save_state``.

    Raises
    ------
    StateMismatchError
        If the record does not fit the encoder. Nothing is modified then.
    """
    _validate_record(encoder, record)
    visible_layer_descs = _visible_layer_descs(record)

    desc = encoder.desc
    desc.chunk_size = tuple(record["chunk_size"])
    desc.num_samples = int(record["num_samples"])
    desc.init_weight_range = tuple(record["init_weight_range"])
    desc.state_bias = float(record["state_bias"])
    desc.visible_layer_descs = visible_layer_descs

    for name, buffer in encoder.double_buffers().items():
        _load_buffer(buffer, record[name])

    for vl, vl_record in zip(encoder.visible_layers, record["visible_layers"]):
        for name, buffer in vl.buffers().items():
            _load_buffer(buffer, vl_record[name])
        vl.hidden_to_visible = tuple(vl_record["hidden_to_visible"])
        vl.visible_to_hidden = tuple(vl_record["visible_to_hidden"])
        vl.chunk_to_visible = tuple(vl_record["chunk_to_visible"])
        vl.reverse_radii = tuple(vl_record["reverse_radii"])


def save_to_file(encoder, path):
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    torch.save(save_state(encoder), path)


def load_from_file(encoder, path):
    record = torch.load(Path(path), map_location="cpu", weights_only=False)
    load_state(encoder, record)
