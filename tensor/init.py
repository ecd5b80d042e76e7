import torch
import torch.nn as nn


INITIALIZERS = (
    "none",
    "zeros",
    "ones",
    "lecun_normal",
    "lecun_uniform",
    "xavier_normal",
    "xavier_uniform",
    "he_normal",
    "he_uniform",
)


def check_initializer(name: str) -> str:
    key = str(name).strip().lower()
    if key not in INITIALIZERS:
        raise ValueError(f"Unsupported initializer: {name}")
    return key


def _torch_layout(t: torch.Tensor) -> torch.Tensor:
    # weights are stored (..., in, out); nn.init expects (out, in, ...)
    if t.ndim == 0:
        raise ValueError("fan computation needs at least 1 dimension")
    if t.ndim == 1:
        return t.unsqueeze(0)
    return t.movedim((-1, -2), (0, 1))


def fans(t: torch.Tensor) -> tuple[int, int]:
    """(fan_in, fan_out) of `t` under the (..., in, out) layout."""
    return nn.init._calculate_fan_in_and_fan_out(_torch_layout(t))


@torch.no_grad()
def initialize_(t: torch.Tensor, name: str, generator: torch.Generator | None = None) -> torch.Tensor:
    """Fill `t` in place with the named initializer and return it.

    "none" leaves the tensor untouched. A 1-D tensor is treated as a single
    output row, so its length is the fan-in.
    """
    key = check_initializer(name)
    if key == "none":
        return t
    if key == "zeros":
        return nn.init.zeros_(t)
    if key == "ones":
        return nn.init.ones_(t)
    view = _torch_layout(t)
    if key == "lecun_normal":
        nn.init.kaiming_normal_(view, nonlinearity="linear", generator=generator)
    elif key == "lecun_uniform":
        nn.init.kaiming_uniform_(view, nonlinearity="linear", generator=generator)
    elif key == "xavier_normal":
        nn.init.xavier_normal_(view, generator=generator)
    elif key == "xavier_uniform":
        nn.init.xavier_uniform_(view, generator=generator)
    elif key == "he_normal":
        nn.init.kaiming_normal_(view, nonlinearity="relu", generator=generator)
    else:
        nn.init.kaiming_uniform_(view, nonlinearity="relu", generator=generator)
    return t
