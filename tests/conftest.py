from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
for path in (SRC, ROOT):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from canonstream.core.ids import sequential_ids, stable_clock  # noqa: E402


@pytest.fixture
def id_factory():
    """Deterministic ``<prefix>-<n>`` identifiers."""

    return sequential_ids()


@pytest.fixture
def clock():
    return stable_clock()
