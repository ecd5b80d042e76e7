import warnings
import torch


def assert_finite(t: torch.Tensor, where: str, *, throw: bool = True) -> bool:
    """Check `t` for NaN/Inf.

    If `throw` is True, raises RuntimeError on detection; otherwise warns and
    returns False.
    """
    if torch.isfinite(t).all():
        return True
    msg = f"NaN/Inf detected in {where}: shape={tuple(t.shape)} dtype={t.dtype} device={t.device}"
    if throw:
        raise RuntimeError(msg)
    warnings.warn(msg)
    return False
