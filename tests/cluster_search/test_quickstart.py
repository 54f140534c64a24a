"""Smoke test for the cluster search quickstart harness."""

from __future__ import annotations

import importlib.util
import json
from pathlib import Path

QUICKSTART = Path(__file__).resolve().parents[2] / "examples" / "cluster_search_quickstart.py"


def _load_quickstart():
    spec = importlib.util.spec_from_file_location("cluster_search_quickstart", QUICKSTART)
    module = importlib.util.module_from_spec(spec)
    assert spec.loader is not None
    spec.loader.exec_module(module)
    return module


def test_quickstart_runs_with_yaml_config(tmp_path, capsys) -> None:
    config_path = tmp_path / "cluster_search.yaml"
    config_path.write_text("emb_dim: 16\ntop_k: 3\nfaiss_search_type: 0\n", encoding="utf-8")

    exit_code = _load_quickstart().main(
        ["--config", str(config_path), "--clusters", "2", "--vectors-per-cluster", "50"]
    )

    output = capsys.readouterr().out
    assert exit_code == 0
    assert output.count("-> accepted") == 2
    assert output.count("cluster=") == 8
    stats = json.loads(output[output.index("{"):])
    assert stats == {"clusters": 2.0, "vectors": 100.0, "pending_queries": 0.0}
