import pytest
import torch

from tensor.debug import assert_finite


def test_assert_finite_raises_or_warns():
    ok = torch.ones(3)
    bad = torch.tensor([1.0, float("inf"), 0.0])
    assert assert_finite(ok, "ok")
    with pytest.raises(RuntimeError, match="NaN/Inf detected in grad"):
        assert_finite(bad, "grad")
    with pytest.warns(UserWarning, match="NaN/Inf"):
        assert not assert_finite(bad, "grad", throw=False)
