"""
pytest configuration

Goals:
- keep tests fast and deterministic
- silence [Canopy]/[Dynamics]/[Scenario] diagnostics unless a test enables them
- pin model constants so a developer's RAMET_* environment cannot leak in
"""

import os
import sys

import pytest

# Ensure project root on sys.path for 'pyramet' and 'scripts' imports
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)


@pytest.fixture(autouse=True)
def _ramet_env(monkeypatch):
    # Diagnostics off by default (tests can override via monkeypatch in the test)
    monkeypatch.setenv("RAMET_DIAG", "0")
    # Physiological constants at their documented defaults
    for name in ("A", "R", "B", "BETA", "M", "K"):
        monkeypatch.delenv("RAMET_" + name, raising=False)
    # Scenario batches: single worker, no progress bar
    for name in ("ITER", "SPECIES", "TRAIT", "RANGE", "BINS", "SEED"):
        monkeypatch.delenv("RAMET_SCEN_" + name, raising=False)
    monkeypatch.setenv("RAMET_SCEN_JOBS", "1")
    monkeypatch.setenv("RAMET_SCEN_PROGRESS", "0")
    yield
