"""
Tests for the model registry.

Import order matters here, so each import runs in a fresh interpreter.
"""

import subprocess
import sys
from pathlib import Path

import pytest

BACKEND_DIR = Path(__file__).resolve().parents[2]


def import_fresh(module: str) -> subprocess.CompletedProcess:
    return subprocess.run(
        [sys.executable, "-c", f"import {module}"],
        cwd=BACKEND_DIR,
        capture_output=True,
        text=True,
    )


# =============================================================================
# Import order
# =============================================================================

class TestImportOrder:
    """Feature packages import cleanly without app.models loaded first."""

    @pytest.mark.parametrize("module", [
        "app.main",
        "app.features.integrations",
        "app.features.users",
        "app.models",
    ])
    def test_imports_first(self, module):
        result = import_fresh(module)

        assert result.returncode == 0, result.stderr


# =============================================================================
# Registry
# =============================================================================

class TestRegisterModels:
    """register_models() puts every table on Base.metadata."""

    def test_all_tables_registered(self):
        from app.models import register_models

        tables = set(register_models().metadata.tables)

        assert {
            "profiles",
            "connected_accounts",
            "workouts",
            "health_metrics",
            "daily_logs",
            "webhook_queue",
            "sync_history",
        } <= tables

    def test_lazy_attribute(self):
        import app.models
        from app.features.integrations.models import ConnectedAccount

        assert app.models.ConnectedAccount is ConnectedAccount
