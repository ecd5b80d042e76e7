import pytest
import torch

from tensor.positional import discretization_bounds, position_grid
from tensor.shape import (
    assert_dim_size,
    assert_same_batch,
    assert_shape,
    is_view_of,
    narrow_segment,
    split_segments,
    with_batch,
)


def test_split_segments_alias_parent():
    buf = torch.zeros(2, 6)
    a, b, c = split_segments(buf, 3)
    assert a.shape == b.shape == c.shape == (2, 2)
    b.fill_(1.0)
    c.copy_(torch.full((2, 2), 2.0))
    assert torch.equal(buf, torch.tensor([[0.0, 0.0, 1.0, 1.0, 2.0, 2.0]] * 2))
    assert is_view_of(b, buf)


def test_narrow_segment_bounds():
    buf = torch.arange(12.0).view(2, 6)
    assert torch.equal(narrow_segment(buf, 2, 2), buf[:, 4:6])
    with pytest.raises(ValueError):
        narrow_segment(buf, 3, 2)
    with pytest.raises(ValueError):
        split_segments(buf, 4)


def test_shape_asserts():
    x = torch.zeros(2, 3, 4)
    assert_shape(x, (2, 3, 4))
    with pytest.raises(ValueError):
        assert_shape(x, (2, 3, 5))
    with pytest.raises(ValueError):
        assert_dim_size(x, 1, 4)
    with pytest.raises(ValueError):
        assert_same_batch(x, torch.zeros(3, 1), names=("x", "y"))


def test_with_batch():
    assert with_batch((1, 1, 5, 2), 4) == (4, 1, 5, 2)
    with pytest.raises(ValueError):
        with_batch((1, 2), 0)


def test_position_grid_is_one_indexed():
    g = position_grid(4, 3, dtype=torch.float64)
    assert g.shape == (4, 3)
    assert torch.equal(g[:, 0], torch.tensor([1.0, 2.0, 3.0, 4.0], dtype=torch.float64))
    assert torch.equal(g[:, 0], g[:, 2])
    hi, lo = discretization_bounds(g)
    assert torch.allclose(hi - lo, torch.ones_like(g))
    assert float(lo[0, 0]) == 0.5
    with pytest.raises(ValueError):
        position_grid(0, 3)


def test_split_segments_routes_through_narrow():
    buf = torch.arange(12.0).view(2, 6)
    segs = split_segments(buf, 3)
    for i, seg in enumerate(segs):
        assert torch.equal(seg, narrow_segment(buf, i, 2))
    assert_shape(segs[1], (2, 2), "segment")
