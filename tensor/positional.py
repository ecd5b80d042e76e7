# tensor/positional.py
import torch


def position_grid(seq_len: int, width: int, device=None, dtype: torch.dtype = torch.float32) -> torch.Tensor:
    """1-indexed sequence positions broadcast across `width` columns.

    Returns (T, W) with grid[t, w] = t + 1.
    """
    if seq_len <= 0 or width <= 0:
        raise ValueError(f"position grid needs positive extents, got ({seq_len}, {width})")
    t = torch.arange(1, seq_len + 1, device=device, dtype=dtype)
    return t.unsqueeze(-1).expand(seq_len, width)


def discretization_bounds(grid: torch.Tensor, half_width: float = 0.5) -> tuple[torch.Tensor, torch.Tensor]:
    # Upper/lower edges of the unit bin centred on each position
    return grid + half_width, grid - half_width
