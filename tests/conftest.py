from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

# Ensure local "src/" takes precedence over any globally-installed "stakebank" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)


@pytest.fixture(autouse=True)
def _isolate_metrics_and_env(monkeypatch: pytest.MonkeyPatch):
    """Process-level counters and STAKEBANK_* env must not leak between tests."""
    from stakebank.runtime import metrics

    for k in list(os.environ.keys()):
        if k.startswith("STAKEBANK_"):
            monkeypatch.delenv(k, raising=False)
    metrics.reset()
    yield
    metrics.reset()
