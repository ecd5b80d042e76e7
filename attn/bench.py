from __future__ import annotations

import argparse
import time
from typing import Optional, Sequence

import torch

from .config import MoLAttentionConfig
from .mol import build_mol_attention


def _sync(device: torch.device) -> None:
    if device.type == "cuda":
        torch.cuda.synchronize(device)


def _timeit(fn, device: torch.device, warmup: int = 3, iters: int = 10) -> float:
    for _ in range(warmup):
        fn()
    _sync(device)
    t0 = time.perf_counter()
    for _ in range(iters):
        fn()
    _sync(device)
    return (time.perf_counter() - t0) / iters


def bench_mol_attention(
    batch_size: int = 8,
    query_width: int = 256,
    value_length: int = 200,
    value_width: int = 256,
    unit: int = 128,
    mol_k: int = 5,
    dtype: torch.dtype = torch.float32,
    device: str = "cuda" if torch.cuda.is_available() else "cpu",
    iters: int = 10,
    seed: int = 0,
) -> dict[str, float]:
    """Milliseconds per call for forward and the two gradient procedures."""
    dev = torch.device(device)
    gen = torch.Generator(device=dev).manual_seed(seed)
    cfg = MoLAttentionConfig(unit=unit, mol_k=mol_k)
    layer, ctx = build_mol_attention(
        cfg, (batch_size, query_width), (batch_size, value_length, value_width),
        dtype=dtype, device=dev, generator=gen,
    )
    query = torch.randn(batch_size, query_width, dtype=dtype, device=dev, generator=gen)
    value = torch.randn(batch_size, value_length, value_width, dtype=dtype, device=dev, generator=gen)
    state = torch.zeros(batch_size, mol_k, dtype=dtype, device=dev)
    ctx.set_inputs(query, value, state)
    ctx.set_incoming_derivative(torch.ones(batch_size, value_width, dtype=dtype, device=dev))

    def step_derivative():
        layer.forward(ctx)
        layer.calc_derivative(ctx)

    def step_gradient():
        layer.forward(ctx)
        layer.calc_gradient(ctx)

    def step_full():
        layer.forward(ctx)
        layer.calc_derivative(ctx)
        layer.calc_gradient(ctx)

    results = {"forward": _timeit(lambda: layer.forward(ctx), dev, iters=iters) * 1000.0}
    results["forward+derivative"] = _timeit(step_derivative, dev, iters=iters) * 1000.0
    results["forward+gradient"] = _timeit(step_gradient, dev, iters=iters) * 1000.0
    results["full_step"] = _timeit(step_full, dev, iters=iters) * 1000.0
    return results


def main(argv: Optional[Sequence[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Benchmark the MoL attention layer")
    ap.add_argument("--batch-size", type=int, default=8)
    ap.add_argument("--query-width", type=int, default=256)
    ap.add_argument("--value-length", type=int, default=200)
    ap.add_argument("--value-width", type=int, default=256)
    ap.add_argument("--unit", type=int, default=128)
    ap.add_argument("--mol-k", type=int, default=5)
    ap.add_argument("--dtype", choices=["float32", "float64"], default="float32")
    ap.add_argument("--device", type=str, default=None)
    ap.add_argument("--iters", type=int, default=10)
    ap.add_argument("--seed", type=int, default=0)
    args = ap.parse_args(argv)

    device = args.device or ("cuda" if torch.cuda.is_available() else "cpu")
    res = bench_mol_attention(
        batch_size=args.batch_size,
        query_width=args.query_width,
        value_length=args.value_length,
        value_width=args.value_width,
        unit=args.unit,
        mol_k=args.mol_k,
        dtype=getattr(torch, args.dtype),
        device=device,
        iters=args.iters,
        seed=args.seed,
    )
    for k, v in res.items():
        print(f"{k}: {v:.3f} ms/iter")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
