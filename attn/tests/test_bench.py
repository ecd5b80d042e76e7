from attn.bench import bench_mol_attention, main


def test_bench_reports_each_phase():
    res = bench_mol_attention(batch_size=2, query_width=4, value_length=5, value_width=4, unit=3, mol_k=2,
                              device="cpu", iters=1)
    assert set(res) == {"forward", "forward+derivative", "forward+gradient", "full_step"}
    assert all(v >= 0.0 for v in res.values())


def test_main_prints_timings(capsys):
    rc = main(["--batch-size", "1", "--query-width", "3", "--value-length", "4", "--value-width", "3",
               "--unit", "2", "--mol-k", "1", "--iters", "1", "--device", "cpu"])
    assert rc == 0
    out = capsys.readouterr().out
    assert "forward:" in out and "full_step:" in out
