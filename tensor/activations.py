import torch

from .numerics import safe_exp, safe_sigmoid, safe_softmax, safe_tanh


def tanh_prime(y: torch.Tensor, dy: torch.Tensor) -> torch.Tensor:
    # d tanh(x) = 1 - tanh(x)^2, expressed on the cached output
    return dy * (1.0 - y * y)


def sigmoid_prime(y: torch.Tensor, dy: torch.Tensor) -> torch.Tensor:
    return dy * y * (1.0 - y)


def softmax_prime(y: torch.Tensor, dy: torch.Tensor, dim: int = -1) -> torch.Tensor:
    """Jacobian-vector product of softmax given its output `y`."""
    return y * (dy - (dy * y).sum(dim=dim, keepdim=True))


def exp_prime(y: torch.Tensor, dy: torch.Tensor) -> torch.Tensor:
    return dy * y


_ACTIVATIONS = {
    "tanh": (safe_tanh, tanh_prime),
    "sigmoid": (safe_sigmoid, sigmoid_prime),
    "softmax": (safe_softmax, softmax_prime),
    "exp": (safe_exp, exp_prime),
}


def _resolve(act: str):
    a = act.lower()
    if a in ("tanh",):
        return "tanh"
    if a in ("sigmoid", "logistic"):
        return "sigmoid"
    if a in ("softmax",):
        return "softmax"
    if a in ("exp", "exponential"):
        return "exp"
    raise ValueError(f"Unsupported activation: {act}")


class Activation:
    """Elementwise (or last-axis, for softmax) activation with a manual backward.

    `run_fn` evaluates the activation; `run_prime_fn` takes the cached forward
    *output* and an upstream gradient and returns the gradient w.r.t. the
    activation input. Both optionally write into `out`, which may alias the
    input.
    """

    def __init__(self, act: str):
        self.name = _resolve(act)
        self._fn, self._prime = _ACTIVATIONS[self.name]

    def run_fn(self, x: torch.Tensor, out: torch.Tensor | None = None) -> torch.Tensor:
        y = self._fn(x)
        if out is None:
            return y
        out.copy_(y)
        return out

    def run_prime_fn(self, y: torch.Tensor, dy: torch.Tensor, out: torch.Tensor | None = None) -> torch.Tensor:
        if tuple(y.shape) != tuple(dy.shape):
            raise ValueError(f"{self.name} backward: output {tuple(y.shape)} and gradient {tuple(dy.shape)} differ")
        dx = self._prime(y, dy)
        if out is None:
            return dx
        out.copy_(dx)
        return out

    def __repr__(self) -> str:
        return f"Activation({self.name!r})"
