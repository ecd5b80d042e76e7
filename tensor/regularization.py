import torch


REGULARIZERS = ("none", "l2norm")


def check_regularizer(name: str) -> str:
    key = str(name).strip().lower()
    if key not in REGULARIZERS:
        raise ValueError(f"Unsupported regularizer: {name}")
    return key


def l2norm_loss(weight: torch.Tensor, constant: float) -> torch.Tensor:
    # 0.5 * c * ||W||^2
    return 0.5 * float(constant) * weight.float().pow(2).sum()


def l2norm_grad_(grad: torch.Tensor, weight: torch.Tensor, constant: float) -> torch.Tensor:
    return grad.add_(weight, alpha=float(constant))


def regularization_loss(weight: torch.Tensor, regularizer: str, constant: float) -> torch.Tensor:
    key = check_regularizer(regularizer)
    if key == "none" or constant == 0.0:
        return weight.new_zeros((), dtype=torch.float32)
    return l2norm_loss(weight, constant)


@torch.no_grad()
def regularization_grad_(grad: torch.Tensor, weight: torch.Tensor, regularizer: str, constant: float) -> torch.Tensor:
    """Add the regularizer's gradient into `grad` in place."""
    key = check_regularizer(regularizer)
    if key == "none" or constant == 0.0:
        return grad
    return l2norm_grad_(grad, weight, constant)
