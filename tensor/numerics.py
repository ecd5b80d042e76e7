import torch
import torch.nn.functional as F


def _upcast(x: torch.Tensor) -> torch.Tensor:
    # half/bfloat16 math runs in fp32; fp32/fp64 stay as they are
    if x.dtype in (torch.float16, torch.bfloat16):
        return x.float()
    return x


def safe_softmax(x: torch.Tensor, mask: torch.Tensor | None = None, dim: int = -1) -> torch.Tensor:
    x_up = _upcast(x)
    if mask is not None:
        x_up = x_up.masked_fill(mask, torch.finfo(x_up.dtype).min)
    out = F.softmax(x_up, dim=dim)
    return out.to(dtype=x.dtype)


def safe_sigmoid(x: torch.Tensor) -> torch.Tensor:
    return torch.sigmoid(_upcast(x)).to(dtype=x.dtype)


def safe_tanh(x: torch.Tensor) -> torch.Tensor:
    return torch.tanh(_upcast(x)).to(dtype=x.dtype)


def safe_exp(x: torch.Tensor) -> torch.Tensor:
    return torch.exp(_upcast(x)).to(dtype=x.dtype)
