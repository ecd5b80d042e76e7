import torch


def assert_ndim(x: torch.Tensor, ndim: int, name: str = "tensor"):
    if x.ndim != ndim:
        raise ValueError(f"{name} must be {ndim}D, got shape {tuple(x.shape)}")


def assert_shape(x: torch.Tensor, shape: tuple[int, ...], name: str = "tensor"):
    if tuple(x.shape) != tuple(shape):
        raise ValueError(f"{name} shape {tuple(x.shape)} != {tuple(shape)}")


def assert_dim_size(x: torch.Tensor, dim: int, size: int, name: str = "tensor"):
    if x.size(dim) != size:
        raise ValueError(f"{name} dim {dim} must be {size}, got shape {tuple(x.shape)}")


def assert_same_batch(*tensors: torch.Tensor, names: tuple[str, ...] | None = None):
    if not tensors:
        return
    b = tensors[0].size(0)
    for i, t in enumerate(tensors[1:], start=1):
        if t.size(0) != b:
            who = names[i] if names else f"tensor[{i}]"
            raise ValueError(f"{who} batch {t.size(0)} != {b}")


def with_batch(shape: tuple[int, ...], batch: int) -> tuple[int, ...]:
    """Return `shape` with its leading (batch) extent replaced."""
    if not shape:
        raise ValueError("cannot set batch on a 0-d shape")
    if batch <= 0:
        raise ValueError(f"batch must be positive, got {batch}")
    return (int(batch),) + tuple(int(s) for s in shape[1:])


def narrow_segment(x: torch.Tensor, index: int, width: int, dim: int = -1) -> torch.Tensor:
    """Aliased view of the `index`-th `width`-wide segment of `x` along `dim`.

    Writes through the view land in `x`.
    """
    if (index + 1) * width > x.size(dim):
        raise ValueError(f"segment {index} of width {width} exceeds dim {dim} of shape {tuple(x.shape)}")
    return x.narrow(dim, index * width, width)


def split_segments(x: torch.Tensor, n: int, dim: int = -1) -> tuple[torch.Tensor, ...]:
    # Equal-width aliased segments; a packed [a|b|c] buffer splits into three views
    d = x.size(dim)
    if n <= 0 or d % n != 0:
        raise ValueError(f"dim {dim} of shape {tuple(x.shape)} is not divisible into {n} segments")
    w = d // n
    return tuple(narrow_segment(x, i, w, dim) for i in range(n))


def is_view_of(a: torch.Tensor, b: torch.Tensor) -> bool:
    return a.untyped_storage().data_ptr() == b.untyped_storage().data_ptr()
