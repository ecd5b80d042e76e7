import pytest
import torch

from tensor.activations import Activation


def _autograd_vjp(fn, x, dy):
    x = x.clone().requires_grad_(True)
    y = fn(x)
    (g,) = torch.autograd.grad(y, x, grad_outputs=dy)
    return g


@pytest.mark.parametrize(
    "name,fn",
    [
        ("tanh", torch.tanh),
        ("sigmoid", torch.sigmoid),
        ("softmax", lambda x: torch.softmax(x, dim=-1)),
        ("exp", torch.exp),
    ],
)
def test_prime_matches_autograd(name, fn):
    torch.manual_seed(0)
    act = Activation(name)
    x = torch.randn(3, 6, dtype=torch.float64)
    dy = torch.randn(3, 6, dtype=torch.float64)
    y = act.run_fn(x)
    assert torch.allclose(y, fn(x))
    dx = act.run_prime_fn(y, dy)
    assert torch.allclose(dx, _autograd_vjp(fn, x, dy), atol=1e-10)


def test_run_fn_writes_into_aliasing_out():
    buf = torch.randn(2, 9)
    seg = buf.narrow(1, 6, 3)
    expected = torch.softmax(seg.clone(), dim=-1)
    Activation("softmax").run_fn(seg, out=seg)
    assert torch.allclose(buf[:, 6:], expected)
    assert torch.allclose(buf[:, 6:].sum(dim=-1), torch.ones(2))


def test_softmax_prime_is_orthogonal_to_ones():
    y = torch.softmax(torch.randn(4, 5, dtype=torch.float64), dim=-1)
    dx = Activation("softmax").run_prime_fn(y, torch.randn(4, 5, dtype=torch.float64))
    assert torch.allclose(dx.sum(dim=-1), torch.zeros(4, dtype=torch.float64), atol=1e-12)


def test_unknown_activation_and_shape_mismatch():
    with pytest.raises(ValueError):
        Activation("gelu")
    with pytest.raises(ValueError):
        Activation("tanh").run_prime_fn(torch.zeros(2, 3), torch.zeros(3, 2))


def test_half_precision_is_computed_upcast():
    x = torch.randn(4, 4).half()
    y = Activation("sigmoid").run_fn(x)
    assert y.dtype == torch.float16
    assert torch.isfinite(y.float()).all()
