import pytest
import torch

from sfc.buffers import (
    DoubleBuffer,
    create_double_buffer_2d,
    create_double_buffer_3d,
    grid_1d,
    random_uniform,
)


def test_swap_exchanges_references():
    buf = create_double_buffer_2d((3, 2))
    front, back = buf.front, buf.back
    buf.swap()
    assert buf.front is back
    assert buf.back is front


def test_layouts():
    assert create_double_buffer_2d((5, 3)).shape == (3, 5)
    assert create_double_buffer_2d((5, 3), channels=2).shape == (3, 5, 2)
    assert create_double_buffer_3d((5, 3, 4)).shape == (4, 3, 5)
    buf = create_double_buffer_2d((2, 2), dtype=torch.long)
    assert buf.front.dtype == buf.back.dtype == torch.long
    assert torch.all(buf.front == 0) and torch.all(buf.back == 0)


def test_mismatched_halves_rejected():
    with pytest.raises(ValueError):
        DoubleBuffer(torch.zeros(2, 2), torch.zeros(2, 3))


def test_random_uniform_range_and_determinism():
    a = torch.empty(64, 64)
    b = torch.empty(64, 64)
    random_uniform(a, (-0.5, 0.25), torch.Generator().manual_seed(3))
    random_uniform(b, (-0.5, 0.25), torch.Generator().manual_seed(3))

    assert torch.equal(a, b)
    assert a.min() >= -0.5
    assert a.max() < 0.25


def test_grid_1d():
    assert grid_1d(1, 128) == (1,)
    assert grid_1d(128, 128) == (1,)
    assert grid_1d(129, 128) == (2,)
