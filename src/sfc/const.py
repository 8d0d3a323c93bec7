"""
Global constants for the sparse-features chunk encoder.

This module defines device configuration, tensor dtypes, and the launch
block size shared by the Triton kernels.
"""

import torch

DEVICE = "cuda" if torch.cuda.is_available() else "cpu"
DTYPE = torch.float32
INDEX_DTYPE = torch.long
BLOCK_SIZE = 128
STATE_RECORD_TYPE = "chunk"
