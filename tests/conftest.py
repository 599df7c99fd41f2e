"""Shared test fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure polyagents is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from polyagents.observability.metrics import metrics  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()
