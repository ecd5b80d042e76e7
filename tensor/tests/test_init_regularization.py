import math

import pytest
import torch

from tensor.init import INITIALIZERS, fans, initialize_
from tensor.regularization import regularization_grad_, regularization_loss


def test_constant_initializers():
    t = torch.full((3, 4), 7.0)
    assert torch.equal(initialize_(t.clone(), "none"), t)
    assert torch.equal(initialize_(t.clone(), "zeros"), torch.zeros(3, 4))
    assert torch.equal(initialize_(t.clone(), "ONES"), torch.ones(3, 4))


def test_uniform_initializers_respect_bounds():
    gen = torch.Generator().manual_seed(0)
    w = initialize_(torch.empty(64, 32), "xavier_uniform", generator=gen)
    assert w.abs().max().item() <= math.sqrt(6.0 / 96) + 1e-6
    w = initialize_(torch.empty(64, 32), "he_uniform", generator=gen)
    assert w.abs().max().item() <= math.sqrt(6.0 / 64) + 1e-6


def test_initializers_are_seeded():
    for name in INITIALIZERS:
        a = initialize_(torch.zeros(8, 5), name, generator=torch.Generator().manual_seed(1))
        b = initialize_(torch.zeros(8, 5), name, generator=torch.Generator().manual_seed(1))
        assert torch.equal(a, b)


def test_fans_follow_in_out_layout():
    assert fans(torch.empty(4, 8)) == (4, 8)
    assert fans(torch.empty(8)) == (8, 1)
    assert fans(torch.empty(3, 4, 8)) == (12, 24)


def test_lecun_normal_scales_with_fan_in():
    gen = torch.Generator().manual_seed(0)
    w = initialize_(torch.empty(256, 64, dtype=torch.float64), "lecun_normal", generator=gen)
    assert w.std().item() == pytest.approx(1.0 / 16.0, rel=0.05)
    b = initialize_(torch.empty(400, dtype=torch.float64), "he_uniform", generator=gen)
    assert b.abs().max().item() <= math.sqrt(6.0 / 400) + 1e-9


def test_unknown_initializer():
    with pytest.raises(ValueError):
        initialize_(torch.zeros(2, 2), "orthogonal")


def test_l2norm_loss_and_grad():
    w = torch.tensor([[1.0, -2.0], [3.0, 0.0]])
    loss = regularization_loss(w, "l2norm", 0.1)
    assert torch.isclose(loss, torch.tensor(0.5 * 0.1 * 14.0))
    g = torch.zeros_like(w)
    regularization_grad_(g, w, "l2norm", 0.1)
    assert torch.allclose(g, 0.1 * w)
    g2 = torch.ones_like(w)
    regularization_grad_(g2, w, "none", 0.1)
    assert torch.equal(g2, torch.ones_like(w))
    assert float(regularization_loss(w, "none", 1.0)) == 0.0
    with pytest.raises(ValueError):
        regularization_loss(w, "l1", 1.0)
