import torch
import yaml

from sfc import SparseFeaturesChunk, SparseFeaturesChunkDesc
from sfc.util import config_to_dict, encoder_summary, format_config, print_config
from tests.common import make_desc


def test_config_round_trips_through_yaml():
    desc = make_desc(visible_sizes=((6, 4), (3, 3)), hidden_size=(6, 4), chunk_size=(3, 2))

    config = config_to_dict(desc, include_derived=False)
    rebuilt = SparseFeaturesChunkDesc.from_dict(yaml.safe_load(yaml.safe_dump(config)))

    assert "chunk_grid" not in config
    assert "window_area" not in config["visible_layer_descs"][0]
    assert rebuilt == desc


def test_config_to_dict_keeps_derived_fields_by_default():
    config = config_to_dict(make_desc())
    assert config["chunk_grid"] == [2, 2]
    assert config["visible_layer_descs"][0]["window_area"] == 9


def test_large_tensors_are_summarized():
    assert config_to_dict({"t": torch.zeros(3)}) == {"t": [0.0, 0.0, 0.0]}
    assert config_to_dict({"t": torch.zeros(8, 8)})["t"].startswith("tensor(shape=[8, 8]")


def test_encoder_summary_lists_every_buffer():
    enc = SparseFeaturesChunk(make_desc(visible_sizes=((4, 4), (6, 2)), num_samples=2))
    summary = encoder_summary(enc)

    assert summary["backend"] == "torch"
    assert summary["buffers"]["chunk_winners"] == [2, 2, 2]
    assert summary["buffers"]["visible_layers[1].samples"] == [2, 2, 6]
    assert summary["buffers"]["visible_layers[0].weights"] == [4, 4, 18]
    assert summary["memory_mib"] > 0


def test_print_config_writes_yaml(capsys):
    print_config(make_desc(), title="Chunk Encoder")
    out = capsys.readouterr().out
    assert "Chunk Encoder" in out
    assert "hidden_size:" in out


def test_format_config_keeps_shapes_inline():
    enc = SparseFeaturesChunk(make_desc(num_samples=2))
    text = format_config(encoder_summary(enc), title="State")
    lines = text.splitlines()

    assert lines[1] == "State"
    assert lines[0] == lines[-1] == "=" * max(len(line) for line in lines)
    assert "visible_layers[0].weights: [4, 4, 18]" in text
    assert "chunk_grid: [2, 2]" in text
