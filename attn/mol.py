"""Mixture-of-logistics (MoL) location attention.

The query is projected to K logistic components (center increment kappa,
scale beta, weight alpha). Each component assigns the discretized logistic
mass CDF(u + 0.5) - CDF(u - 0.5) to every 1-indexed position u of the value
sequence; the alpha-weighted sum over components gives per-position scores,
and the context vector is the score-weighted sum of the values.

Scores are a mixture of partial-CDF differences, not a softmax: they are
non-negative but need not sum to 1 across positions.

The backward pass is written by hand. Both gradient procedures need the
gradient of the packed projection output; it is computed once per step by a
shared helper and cached until the next forward.
"""
from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

import torch

from tensor.activations import Activation
from tensor.context import InitContext, InputHandle, RunContext, TensorHandle, WeightHandle
from tensor.debug import assert_finite
from tensor.matmul import (
    dot,
    dot_batched,
    dot_batched_deriv_wrt_1,
    dot_batched_deriv_wrt_2,
    dot_deriv_wrt_1,
    dot_deriv_wrt_2,
)
from tensor.positional import discretization_bounds, position_grid
from tensor.shape import assert_dim_size, assert_ndim, assert_same_batch, split_segments
from .config import MoLAttentionConfig, config_from_properties, export_properties

logger = logging.getLogger(__name__)

SINGLE_INOUT_IDX = 0
BETA_EPS = 1e-8


@dataclass(frozen=True)
class MoLSlots:
    query: InputHandle
    value: InputHandle
    state: InputHandle
    fc_w: WeightHandle
    fc_bias: WeightHandle
    fc_proj_w: WeightHandle
    fc_out: TensorHandle
    fc_tanh: TensorHandle
    fc_proj_out: TensorHandle
    scores: TensorHandle
    prob: TensorHandle
    prob_left: TensorHandle
    prob_right: TensorHandle
    u_neg_div: TensorHandle
    u_pos_div: TensorHandle

    def scratch(self) -> Tuple[TensorHandle, ...]:
        return (
            self.fc_out,
            self.fc_tanh,
            self.fc_proj_out,
            self.scores,
            self.prob,
            self.prob_left,
            self.prob_right,
            self.u_neg_div,
            self.u_pos_div,
        )


@dataclass(frozen=True)
class _HelperResult:
    # views of the context's buffers, valid until the next forward
    dfc_proj_out: torch.Tensor
    dstate: torch.Tensor


class MoLAttention:
    type_name = "mol_attention"

    def __init__(self, config: Optional[MoLAttentionConfig] = None, **overrides):
        cfg = config if config is not None else MoLAttentionConfig()
        if overrides:
            cfg = dataclasses.replace(cfg, **overrides)
        self.config = cfg
        self.tanh = Activation("tanh")
        self.sigmoid = Activation("sigmoid")
        self.softmax = Activation("softmax")
        self.exp = Activation("exp")
        self.slots: Optional[MoLSlots] = None
        self._helper: Optional[_HelperResult] = None
        self._forwarded = False
        self._grid_cache: Dict[tuple, torch.Tensor] = {}

    # -------- Properties ---------
    def set_property(self, values: Sequence[str]) -> None:
        # hyperparameters are fixed once buffers are allocated
        if self.slots is not None:
            raise RuntimeError(f"{self.type_name}: properties cannot change after finalize()")
        self.config = config_from_properties(values, base=self.config)

    def export_to(self) -> Dict[str, str]:
        out = {"type": self.type_name}
        out.update(export_properties(self.config))
        return out

    @property
    def helper_exec(self) -> bool:
        return self._helper is not None

    def _require_slots(self) -> MoLSlots:
        if self.slots is None:
            raise RuntimeError("MoL attention layer used before finalize()")
        return self.slots

    # -------- Setup ---------
    def finalize(self, context: InitContext) -> None:
        if context.num_inputs != 3:
            raise ValueError(f"MoL attention layer {context.name} needs 3 inputs, got {context.num_inputs}")
        unit, mol_k = self.config.validate(context.name)

        query_shape, value_shape, state_shape = context.input_shapes
        if len(query_shape) != 2 or len(value_shape) != 3 or len(state_shape) != 2:
            raise ValueError(
                f"{context.name}: expected query (B,Dq), value (B,L,Dv), state (B,K); "
                f"got {query_shape}, {value_shape}, {state_shape}"
            )
        if state_shape[-1] != mol_k:
            raise ValueError(f"{context.name}: state width {state_shape[-1]} != mol_k {mol_k}")
        batch = query_shape[0]
        length, value_width = value_shape[1], value_shape[2]
        cfg = self.config

        fc_w = context.request_weight(
            (query_shape[-1], unit), cfg.weight_initializer, cfg.weight_regularizer,
            cfg.weight_regularizer_constant, "fc_w",
        )
        fc_bias = context.request_weight(
            (unit,), cfg.bias_initializer, cfg.weight_regularizer, cfg.weight_regularizer_constant, "fc_bias",
        )
        fc_proj_w = context.request_weight(
            (unit, 3 * mol_k), cfg.weight_initializer, cfg.weight_regularizer,
            cfg.weight_regularizer_constant, "fc_proj_w",
        )

        fc_out = context.request_tensor((batch, unit), "fc_out")
        fc_tanh = context.request_tensor((batch, unit), "fc_tanh")
        # packed [kappa | beta | alpha], each mol_k wide
        fc_proj_out = context.request_tensor((batch, 3 * mol_k), "fc_proj_out", with_grad=True)
        scores = context.request_tensor((batch, 1, 1, length), "scores")
        prob_shape = (batch, 1, length, mol_k)
        prob = context.request_tensor(prob_shape, "prob")
        prob_left = context.request_tensor(prob_shape, "prob_left")
        prob_right = context.request_tensor(prob_shape, "prob_right")
        u_neg_div = context.request_tensor(prob_shape, "u_neg_div")
        u_pos_div = context.request_tensor(prob_shape, "u_pos_div")

        context.set_output_shapes([(batch, value_width)])

        self.slots = MoLSlots(
            query=context.input_handle(0, "query"),
            value=context.input_handle(1, "value"),
            state=context.input_handle(2, "state"),
            fc_w=fc_w,
            fc_bias=fc_bias,
            fc_proj_w=fc_proj_w,
            fc_out=fc_out,
            fc_tanh=fc_tanh,
            fc_proj_out=fc_proj_out,
            scores=scores,
            prob=prob,
            prob_left=prob_left,
            prob_right=prob_right,
            u_neg_div=u_neg_div,
            u_pos_div=u_pos_div,
        )
        logger.debug("%s: finalized unit=%d mol_k=%d length=%d", context.name, unit, mol_k, length)

    # -------- Forward ---------
    def _position_grid(self, length: int, mol_k: int, like: torch.Tensor) -> torch.Tensor:
        key = (length, mol_k, like.device, like.dtype)
        grid = self._grid_cache.get(key)
        if grid is None:
            grid = position_grid(length, mol_k, device=like.device, dtype=like.dtype)
            self._grid_cache = {key: grid}
        return grid

    def _check_inputs(self, context: RunContext, query, value, state) -> None:
        slots = self._require_slots()
        assert_ndim(query, 2, "query")
        assert_ndim(value, 3, "value")
        assert_ndim(state, 2, "state")
        assert_same_batch(query, value, state, names=("query", "value", "state"))
        assert_dim_size(query, 1, context.get_weight(slots.fc_w).size(0), "query")
        assert_dim_size(state, 1, self.config.mol_k, "state")
        scores = context.get_tensor(slots.scores)
        assert_dim_size(value, 1, scores.size(-1), "value")
        if scores.size(0) != query.size(0):
            raise ValueError(
                f"{context.name}: scratch buffers sized for batch {scores.size(0)}, "
                f"got {query.size(0)}; call set_batch first"
            )

    @torch.no_grad()
    def forward(self, context: RunContext, training: bool = True) -> torch.Tensor:
        slots = self._require_slots()
        query = context.get_input(slots.query)
        value = context.get_input(slots.value)
        state = context.get_input(slots.state)
        self._check_inputs(context, query, value, state)

        output = context.get_output(SINGLE_INOUT_IDX)
        fc_w = context.get_weight(slots.fc_w)
        fc_bias = context.get_weight(slots.fc_bias)
        fc_proj_w = context.get_weight(slots.fc_proj_w)
        fc_out = context.get_tensor(slots.fc_out)
        fc_tanh = context.get_tensor(slots.fc_tanh)
        fc_proj_out = context.get_tensor(slots.fc_proj_out)
        scores = context.get_tensor(slots.scores)
        prob = context.get_tensor(slots.prob)
        prob_left = context.get_tensor(slots.prob_left)
        prob_right = context.get_tensor(slots.prob_right)
        u_neg_div = context.get_tensor(slots.u_neg_div)
        u_pos_div = context.get_tensor(slots.u_pos_div)

        batch, length = value.size(0), value.size(1)
        mol_k = self.config.mol_k

        # a new forward invalidates the cached backward state
        self._helper = None

        dot(query, fc_w, out=fc_out)
        fc_out.add_(fc_bias)
        self.tanh.run_fn(fc_out, out=fc_tanh)
        dot(fc_tanh, fc_proj_w, out=fc_proj_out)

        # transform each segment in place; the backward reads them from here
        kappa, beta, alpha = split_segments(fc_proj_out, 3)
        self.exp.run_fn(kappa, out=kappa)
        self.exp.run_fn(beta, out=beta)
        self.softmax.run_fn(alpha, out=alpha)

        m = (state + kappa).view(batch, 1, 1, mol_k)
        u_pos, u_neg = discretization_bounds(self._position_grid(length, mol_k, fc_proj_out))
        beta_eps = (beta + BETA_EPS).view(batch, 1, 1, mol_k)

        torch.div(u_pos - m, beta_eps, out=u_pos_div)
        self.sigmoid.run_fn(u_pos_div, out=prob_left)
        torch.div(u_neg - m, beta_eps, out=u_neg_div)
        self.sigmoid.run_fn(u_neg_div, out=prob_right)
        torch.sub(prob_left, prob_right, out=prob)

        prob_scaled = prob * alpha.view(batch, 1, 1, mol_k)
        scores.copy_(prob_scaled.sum(dim=3).view(batch, 1, 1, length))

        dot_batched(scores.view(batch, 1, length), value, out=output.view(batch, 1, -1))
        self._forwarded = True
        if self.config.check_numerics:
            assert_finite(output, f"{context.name}.output")
        return output

    # -------- Backward ---------
    def _calc_derivative_helper(self, context: RunContext) -> _HelperResult:
        slots = self._require_slots()
        value = context.get_input(slots.value)
        derivative = context.get_incoming_derivative(SINGLE_INOUT_IDX)
        dstate = context.get_outgoing_derivative(slots.state)

        fc_proj_out = context.get_tensor(slots.fc_proj_out)
        dfc_proj_out = context.get_tensor_grad(slots.fc_proj_out)
        prob = context.get_tensor(slots.prob)
        prob_left = context.get_tensor(slots.prob_left)
        prob_right = context.get_tensor(slots.prob_right)
        u_neg_div = context.get_tensor(slots.u_neg_div)
        u_pos_div = context.get_tensor(slots.u_pos_div)

        batch, length = value.size(0), value.size(1)
        mol_k = self.config.mol_k
        kappa, beta, alpha = split_segments(fc_proj_out, 3)

        dscores = dot_batched_deriv_wrt_1(value, derivative.reshape(batch, 1, -1))
        dprob_scaled = dscores.view(batch, 1, length, 1).expand(batch, 1, length, mol_k)

        dalpha = (dprob_scaled * prob).sum(dim=2).view(batch, mol_k)
        dprob = dprob_scaled * alpha.view(batch, 1, 1, mol_k)
        dprob_left = dprob
        dprob_right = -dprob

        beta_eps = (beta + BETA_EPS).view(batch, 1, 1, mol_k)

        du_neg_div = self.sigmoid.run_prime_fn(prob_right, dprob_right)
        du_neg_m = du_neg_div / beta_eps
        dm_neg = -du_neg_m.sum(dim=2)
        dbeta_eps_neg = -(du_neg_m * u_neg_div).sum(dim=2)

        du_pos_div = self.sigmoid.run_prime_fn(prob_left, dprob_left)
        du_pos_m = du_pos_div / beta_eps
        dm_pos = -du_pos_m.sum(dim=2)
        dbeta_eps_pos = -(du_pos_m * u_pos_div).sum(dim=2)

        # m = state + kappa: both receive dm
        dstate.copy_((dm_neg + dm_pos).view(batch, mol_k))
        dkappa = dstate
        dbeta = (dbeta_eps_neg + dbeta_eps_pos).view(batch, mol_k)

        dalpha_src = self.softmax.run_prime_fn(alpha, dalpha)

        dkappa_src, dbeta_src, dalpha_out = split_segments(dfc_proj_out, 3)
        dkappa_src.copy_(self.exp.run_prime_fn(kappa, dkappa))
        dbeta_src.copy_(self.exp.run_prime_fn(beta, dbeta))
        dalpha_out.copy_(dalpha_src)
        return _HelperResult(dfc_proj_out=dfc_proj_out, dstate=dstate)

    def _helper_result(self, context: RunContext) -> _HelperResult:
        if not self._forwarded:
            raise RuntimeError(f"{context.name}: gradient requested before forward")
        if self._helper is None:
            logger.debug("%s: computing shared projection gradient", context.name)
            self._helper = self._calc_derivative_helper(context)
        return self._helper

    @torch.no_grad()
    def calc_derivative(self, context: RunContext) -> None:
        """Gradients w.r.t. query, value and state."""
        slots = self._require_slots()
        dquery = context.get_outgoing_derivative(slots.query)
        dvalue = context.get_outgoing_derivative(slots.value)
        derivative = context.get_incoming_derivative(SINGLE_INOUT_IDX)

        fc_w = context.get_weight(slots.fc_w)
        fc_proj_w = context.get_weight(slots.fc_proj_w)
        fc_tanh = context.get_tensor(slots.fc_tanh)
        scores = context.get_tensor(slots.scores)
        batch, length = scores.size(0), scores.size(-1)

        # dvalue only needs the cached scores
        dot_batched_deriv_wrt_2(scores.view(batch, 1, length), derivative.reshape(batch, 1, -1), out=dvalue)

        helper = self._helper_result(context)

        dfc_tanh = dot_deriv_wrt_1(fc_proj_w, helper.dfc_proj_out)
        dfc_out = self.tanh.run_prime_fn(fc_tanh, dfc_tanh)
        dot_deriv_wrt_1(fc_w, dfc_out, out=dquery)

        if self.config.check_numerics:
            assert_finite(dquery, f"{context.name}.dquery")
            assert_finite(dvalue, f"{context.name}.dvalue")
            assert_finite(helper.dstate, f"{context.name}.dstate")

    @torch.no_grad()
    def calc_gradient(self, context: RunContext) -> None:
        """Gradients w.r.t. fc_w, fc_bias and fc_proj_w (overwritten each step)."""
        slots = self._require_slots()
        query = context.get_input(slots.query)
        fc_proj_w = context.get_weight(slots.fc_proj_w)
        dfc_w = context.get_weight_grad(slots.fc_w)
        dfc_bias = context.get_weight_grad(slots.fc_bias)
        dfc_proj_w = context.get_weight_grad(slots.fc_proj_w)
        fc_tanh = context.get_tensor(slots.fc_tanh)

        helper = self._helper_result(context)

        dot_deriv_wrt_2(fc_tanh, helper.dfc_proj_out, out=dfc_proj_w)
        dfc_tanh = dot_deriv_wrt_1(fc_proj_w, helper.dfc_proj_out)
        dfc_out = self.tanh.run_prime_fn(fc_tanh, dfc_tanh)
        dot_deriv_wrt_2(query, dfc_out, out=dfc_w)
        torch.sum(dfc_out, dim=0, out=dfc_bias)

        if self.config.check_numerics:
            for name, g in (("dfc_w", dfc_w), ("dfc_bias", dfc_bias), ("dfc_proj_w", dfc_proj_w)):
                assert_finite(g, f"{context.name}.{name}")

    # -------- Batch ---------
    def set_batch(self, context: RunContext, batch: int) -> None:
        slots = self._require_slots()
        for handle in slots.scratch():
            context.update_tensor(handle, batch)
        # cached state refers to the old buffers
        self._helper = None
        self._forwarded = False
        logger.debug("%s: scratch buffers resized to batch %d", context.name, batch)


def build_mol_attention(
    config: MoLAttentionConfig,
    query_shape: Sequence[int],
    value_shape: Sequence[int],
    state_shape: Optional[Sequence[int]] = None,
    *,
    name: str = "mol_attention",
    dtype: torch.dtype = torch.float32,
    device: torch.device | str | None = None,
    generator: torch.Generator | None = None,
) -> tuple[MoLAttention, RunContext]:
    """Finalize a layer for the given input shapes and materialize its buffers."""
    layer = MoLAttention(config)
    if state_shape is None:
        state_shape = (query_shape[0], config.mol_k if config.mol_k is not None else 1)
    init = InitContext(name, [query_shape, value_shape, state_shape], dtype=dtype, device=device)
    layer.finalize(init)
    return layer, RunContext.from_init(init, generator=generator)
