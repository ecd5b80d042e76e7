"""Matrix products and their partial derivatives.

For ``C = A @ B`` the two partials are ``dA = dC @ B^T`` (``*_deriv_wrt_1``)
and ``dB = A^T @ dC`` (``*_deriv_wrt_2``). The batched variants treat the
leading axis as the batch. Every function validates operand shapes before
running and optionally writes into a preallocated ``out``.
"""
import torch


def _check_out(out: torch.Tensor | None, shape: tuple[int, ...], what: str):
    if out is not None and tuple(out.shape) != tuple(shape):
        raise ValueError(f"{what}: out shape {tuple(out.shape)} != {tuple(shape)}")


def _check_2d(a: torch.Tensor, b: torch.Tensor, what: str):
    if a.ndim != 2 or b.ndim != 2:
        raise ValueError(f"{what} expects 2D operands, got {tuple(a.shape)} and {tuple(b.shape)}")


def _check_3d(a: torch.Tensor, b: torch.Tensor, what: str):
    if a.ndim != 3 or b.ndim != 3:
        raise ValueError(f"{what} expects 3D operands, got {tuple(a.shape)} and {tuple(b.shape)}")
    if a.size(0) != b.size(0):
        raise ValueError(f"{what}: batch {a.size(0)} != {b.size(0)}")


def dot(a: torch.Tensor, b: torch.Tensor, out: torch.Tensor | None = None) -> torch.Tensor:
    # a: (M,K), b: (K,N) -> (M,N)
    _check_2d(a, b, "dot")
    if a.size(1) != b.size(0):
        raise ValueError(f"dot: inner dims differ, {tuple(a.shape)} x {tuple(b.shape)}")
    _check_out(out, (a.size(0), b.size(1)), "dot")
    if out is None:
        return torch.matmul(a, b)
    return torch.matmul(a, b, out=out)


def dot_deriv_wrt_1(b: torch.Tensor, dc: torch.Tensor, out: torch.Tensor | None = None) -> torch.Tensor:
    # dA = dC @ B^T ; b: (K,N), dc: (M,N) -> (M,K)
    _check_2d(b, dc, "dot_deriv_wrt_1")
    if b.size(1) != dc.size(1):
        raise ValueError(f"dot_deriv_wrt_1: {tuple(dc.shape)} incompatible with {tuple(b.shape)}")
    _check_out(out, (dc.size(0), b.size(0)), "dot_deriv_wrt_1")
    if out is None:
        return torch.matmul(dc, b.t())
    return torch.matmul(dc, b.t(), out=out)


def dot_deriv_wrt_2(a: torch.Tensor, dc: torch.Tensor, out: torch.Tensor | None = None) -> torch.Tensor:
    # dB = A^T @ dC ; a: (M,K), dc: (M,N) -> (K,N)
    _check_2d(a, dc, "dot_deriv_wrt_2")
    if a.size(0) != dc.size(0):
        raise ValueError(f"dot_deriv_wrt_2: {tuple(a.shape)} incompatible with {tuple(dc.shape)}")
    _check_out(out, (a.size(1), dc.size(1)), "dot_deriv_wrt_2")
    if out is None:
        return torch.matmul(a.t(), dc)
    return torch.matmul(a.t(), dc, out=out)


def dot_batched(a: torch.Tensor, b: torch.Tensor, out: torch.Tensor | None = None) -> torch.Tensor:
    # a: (B,M,K), b: (B,K,N) -> (B,M,N)
    _check_3d(a, b, "dot_batched")
    if a.size(2) != b.size(1):
        raise ValueError(f"dot_batched: inner dims differ, {tuple(a.shape)} x {tuple(b.shape)}")
    _check_out(out, (a.size(0), a.size(1), b.size(2)), "dot_batched")
    if out is None:
        return torch.bmm(a, b)
    return torch.bmm(a, b, out=out)


def dot_batched_deriv_wrt_1(b: torch.Tensor, dc: torch.Tensor, out: torch.Tensor | None = None) -> torch.Tensor:
    # dA = dC @ B^T ; b: (B,K,N), dc: (B,M,N) -> (B,M,K)
    _check_3d(b, dc, "dot_batched_deriv_wrt_1")
    if b.size(2) != dc.size(2):
        raise ValueError(f"dot_batched_deriv_wrt_1: {tuple(dc.shape)} incompatible with {tuple(b.shape)}")
    _check_out(out, (dc.size(0), dc.size(1), b.size(1)), "dot_batched_deriv_wrt_1")
    if out is None:
        return torch.bmm(dc, b.transpose(1, 2))
    return torch.bmm(dc, b.transpose(1, 2), out=out)


def dot_batched_deriv_wrt_2(a: torch.Tensor, dc: torch.Tensor, out: torch.Tensor | None = None) -> torch.Tensor:
    # dB = A^T @ dC ; a: (B,M,K), dc: (B,M,N) -> (B,K,N)
    _check_3d(a, dc, "dot_batched_deriv_wrt_2")
    if a.size(1) != dc.size(1):
        raise ValueError(f"dot_batched_deriv_wrt_2: {tuple(a.shape)} incompatible with {tuple(dc.shape)}")
    _check_out(out, (a.size(0), a.size(2), dc.size(2)), "dot_batched_deriv_wrt_2")
    if out is None:
        return torch.bmm(a.transpose(1, 2), dc)
    return torch.bmm(a.transpose(1, 2), dc, out=out)
