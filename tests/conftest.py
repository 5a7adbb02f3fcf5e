from __future__ import annotations

import pytest


@pytest.fixture(autouse=True)
def _isolated_telemetry(tmp_path, monkeypatch):
    """Keep telemetry out of the repo; tests that assert on it re-enable it."""
    monkeypatch.setenv("ADS_TELEMETRY_DIR", str(tmp_path / "telemetry"))
    monkeypatch.setenv("ADS_DISABLE_TELEMETRY", "1")
