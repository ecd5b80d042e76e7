from typing import NamedTuple

import torch

from tensor.numerics import safe_softmax
from tensor.positional import discretization_bounds, position_grid


class MoLTrace(NamedTuple):
    output: torch.Tensor
    kappa: torch.Tensor
    beta: torch.Tensor
    alpha: torch.Tensor
    m: torch.Tensor
    prob_left: torch.Tensor
    prob_right: torch.Tensor
    prob: torch.Tensor
    scores: torch.Tensor


def compute_mixture_params(
    query: torch.Tensor,
    fc_w: torch.Tensor,
    fc_bias: torch.Tensor,
    fc_proj_w: torch.Tensor,
    mol_k: int,
) -> tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
    # query: (B,Dq) -> kappa, beta, alpha: (B,K)
    h = torch.tanh(query @ fc_w + fc_bias)
    kappa_src, beta_src, alpha_src = (h @ fc_proj_w).split(mol_k, dim=-1)
    return torch.exp(kappa_src), torch.exp(beta_src), safe_softmax(alpha_src, dim=-1)


def compute_mixture_probs(
    m: torch.Tensor, beta: torch.Tensor, seq_len: int, eps: float = 1e-8
) -> tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
    # m, beta: (B,K) -> prob_left, prob_right, prob: (B,L,K)
    grid = position_grid(seq_len, m.size(-1), device=m.device, dtype=m.dtype)
    u_pos, u_neg = discretization_bounds(grid)
    beta_eps = (beta + eps).unsqueeze(1)
    m = m.unsqueeze(1)
    prob_left = torch.sigmoid((u_pos - m) / beta_eps)
    prob_right = torch.sigmoid((u_neg - m) / beta_eps)
    return prob_left, prob_right, prob_left - prob_right


def mol_attention_reference(
    query: torch.Tensor,
    value: torch.Tensor,
    state: torch.Tensor,
    fc_w: torch.Tensor,
    fc_bias: torch.Tensor,
    fc_proj_w: torch.Tensor,
    mol_k: int,
    eps: float = 1e-8,
) -> MoLTrace:
    """Differentiable MoL attention forward built from plain torch ops.

    value: (B,L,Dv), state: (B,K). Returns the (B,Dv) context vector together
    with the intermediates; scores are (B,L).
    """
    kappa, beta, alpha = compute_mixture_params(query, fc_w, fc_bias, fc_proj_w, mol_k)
    m = state + kappa
    prob_left, prob_right, prob = compute_mixture_probs(m, beta, value.size(1), eps=eps)
    scores = (prob * alpha.unsqueeze(1)).sum(dim=-1)
    output = torch.bmm(scores.unsqueeze(1), value).squeeze(1)
    return MoLTrace(output, kappa, beta, alpha, m, prob_left, prob_right, prob, scores)
