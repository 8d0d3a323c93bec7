from .buffers import DoubleBuffer
from .const import BLOCK_SIZE, DEVICE, DTYPE, INDEX_DTYPE
from .encoder import SparseFeaturesChunk
from .hyperparameters import SparseFeaturesChunkDesc, VisibleLayerDesc, load_desc
from .persistence import (
    StateMismatchError,
    desc_from_record,
    load_from_file,
    load_state,
    save_desc,
    save_state,
    save_to_file,
)
from .program import ComputeProgram
from .types import VisibleLayer
from .util import config_to_dict, encoder_summary, format_config, print_config

__all__ = [
    "DoubleBuffer",
    "BLOCK_SIZE",
    "DEVICE",
    "DTYPE",
    "INDEX_DTYPE",
    "SparseFeaturesChunk",
    "SparseFeaturesChunkDesc",
    "VisibleLayerDesc",
    "load_desc",
    "StateMismatchError",
    "desc_from_record",
    "load_from_file",
    "load_state",
    "save_desc",
    "save_state",
    "save_to_file",
    "ComputeProgram",
    "VisibleLayer",
    "config_to_dict",
    "encoder_summary",
    "format_config",
    "print_config",
]
