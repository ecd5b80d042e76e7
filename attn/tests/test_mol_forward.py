import pytest
import torch

from attn.config import MoLAttentionConfig
from attn.mol import build_mol_attention
from attn.reference import mol_attention_reference
from tensor.shape import is_view_of, split_segments


def _build(batch=2, dq=4, length=5, dv=3, unit=8, mol_k=2, dtype=torch.float64, seed=0, state=None):
    gen = torch.Generator().manual_seed(seed)
    cfg = MoLAttentionConfig(unit=unit, mol_k=mol_k)
    layer, ctx = build_mol_attention(cfg, (batch, dq), (batch, length, dv), dtype=dtype, generator=gen)
    query = torch.randn(batch, dq, dtype=dtype, generator=gen)
    value = torch.randn(batch, length, dv, dtype=dtype, generator=gen)
    if state is None:
        state = 2.0 * torch.rand(batch, mol_k, dtype=dtype, generator=gen)
    ctx.set_inputs(query, value, state)
    return layer, ctx


def _weights(layer, ctx):
    s = layer.slots
    return ctx.get_weight(s.fc_w), ctx.get_weight(s.fc_bias), ctx.get_weight(s.fc_proj_w)


def test_concrete_scenario_single_batch():
    layer, ctx = _build(batch=1, dq=4, length=5, dv=3, unit=8, mol_k=2, dtype=torch.float32,
                        state=torch.zeros(1, 2))
    out = layer.forward(ctx)
    scores = ctx.get_tensor(layer.slots.scores)
    assert out.shape == (1, 3)
    assert scores.shape == (1, 1, 1, 5)
    assert torch.isfinite(scores).all()
    assert (scores >= 0).all() and (scores <= 1).all()

    ctx.set_incoming_derivative(torch.ones(1, 3))
    layer.calc_derivative(ctx)
    layer.calc_gradient(ctx)
    grads = [ctx.get_outgoing_derivative(i) for i in range(3)]
    grads += [g for _, _, g in ctx.weights()]
    assert all(torch.isfinite(g).all() for g in grads)


@pytest.mark.parametrize(
    "batch,length,mol_k,unit,width",
    [(1, 1, 1, 1, 1), (3, 7, 4, 5, 6), (2, 12, 3, 16, 8)],
)
def test_output_shape_matches_query(batch, length, mol_k, unit, width):
    layer, ctx = _build(batch=batch, dq=width, length=length, dv=width, unit=unit, mol_k=mol_k)
    query = ctx.get_input(layer.slots.query)
    assert layer.forward(ctx).shape == query.shape


@pytest.mark.parametrize("seed", [0, 1, 2])
def test_mixture_parameter_invariants(seed):
    layer, ctx = _build(batch=4, length=9, mol_k=3, seed=seed)
    layer.forward(ctx)
    kappa, beta, alpha = split_segments(ctx.get_tensor(layer.slots.fc_proj_out), 3)
    assert (kappa > 0).all() and (beta > 0).all()
    assert torch.allclose(alpha.sum(dim=-1), torch.ones(4, dtype=alpha.dtype), atol=1e-5)

    prob = ctx.get_tensor(layer.slots.prob)
    left = ctx.get_tensor(layer.slots.prob_left)
    right = ctx.get_tensor(layer.slots.prob_right)
    assert (prob >= 0).all() and (prob <= 1).all()
    assert (left >= right).all()


def test_scores_are_not_normalized():
    # a narrow component far from the sequence leaves almost no mass on it
    layer, ctx = _build(batch=1, length=4, mol_k=1, state=torch.full((1, 1), 50.0, dtype=torch.float64))
    layer.forward(ctx)
    scores = ctx.get_tensor(layer.slots.scores)
    assert float(scores.sum()) < 0.5


def test_forward_matches_reference():
    layer, ctx = _build(batch=3, length=6, mol_k=2)
    out = layer.forward(ctx).clone()
    q, v, st = (ctx.get_input(i) for i in range(3))
    trace = mol_attention_reference(q, v, st, *_weights(layer, ctx), mol_k=2)
    assert torch.allclose(out, trace.output, atol=1e-12)
    scores = ctx.get_tensor(layer.slots.scores).view(3, 6)
    assert torch.allclose(scores, trace.scores, atol=1e-12)
    kappa, beta, alpha = split_segments(ctx.get_tensor(layer.slots.fc_proj_out), 3)
    assert torch.allclose(kappa, trace.kappa) and torch.allclose(beta, trace.beta)
    assert torch.allclose(alpha, trace.alpha)


def test_packed_buffer_holds_transformed_segments_in_place():
    layer, ctx = _build()
    packed = ctx.get_tensor(layer.slots.fc_proj_out)
    ptr = packed.data_ptr()
    layer.forward(ctx)
    assert ctx.get_tensor(layer.slots.fc_proj_out).data_ptr() == ptr
    segs = split_segments(packed, 3)
    assert all(is_view_of(s, packed) for s in segs)
    # pre-transform values are gone: alpha rows are a distribution
    assert torch.allclose(segs[2].sum(dim=-1), torch.ones(2, dtype=packed.dtype))


def test_centers_progress_monotonically_across_steps():
    layer, ctx = _build(batch=2, mol_k=3, state=torch.zeros(2, 3, dtype=torch.float64))
    query, value, state0 = (ctx.get_input(i) for i in range(3))
    layer.forward(ctx)
    kappa1 = split_segments(ctx.get_tensor(layer.slots.fc_proj_out), 3)[0].clone()
    m1 = state0 + kappa1

    ctx.set_inputs(torch.randn(2, 4, dtype=torch.float64), value, m1)
    layer.forward(ctx)
    kappa2 = split_segments(ctx.get_tensor(layer.slots.fc_proj_out), 3)[0]
    m2 = m1 + kappa2
    assert (kappa2 >= 0).all()
    assert (m2 >= m1).all()


def test_forward_resets_helper_cache():
    layer, ctx = _build()
    layer.forward(ctx)
    ctx.set_incoming_derivative(torch.ones(2, 3, dtype=torch.float64))
    layer.calc_gradient(ctx)
    assert layer.helper_exec
    layer.forward(ctx)
    assert not layer.helper_exec


def test_check_numerics_raises_on_nan():
    layer, ctx = _build()
    layer.config.check_numerics = True
    q, v, st = (ctx.get_input(i) for i in range(3))
    bad = v.clone()
    bad[0, 0, 0] = float("nan")
    ctx.set_inputs(q, bad, st)
    with pytest.raises(RuntimeError, match="NaN/Inf"):
        layer.forward(ctx)
