"""
Pytest config.

Local imports like `import explorer` rely on the repo root being on sys.path. When a
global `pytest` entrypoint is used that doesn't happen reliably during collection, so
we pin it here.

Every test runs offline: LLM_MOCK is on, audit output goes to a temp directory and the
process-wide admission gates and registry are rebuilt from the test's env.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()


@pytest.fixture(autouse=True)
def _offline_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    monkeypatch.setenv("LLM_MOCK", "1")
    monkeypatch.setenv("AUDIT_LOG_DIR", str(tmp_path / "audit"))
    for name in (
        "AUDIT_WEBHOOK_URL",
        "ZAPIER_WEBHOOK_URL",
        "LANGSMITH_TRACING",
        "LANGCHAIN_TRACING_V2",
        "SCHOOL_DATA_PATH",
        "CHAT_RATE_LIMIT_PER_MINUTE",
        "CHAT_RATE_LIMIT_PER_HOUR",
        "MCP_RATE_LIMIT_PER_MINUTE",
        "DAILY_BUDGET_USD",
    ):
        monkeypatch.delenv(name, raising=False)
    return tmp_path / "audit"


@pytest.fixture(autouse=True)
def _reset_process_state():
    from explorer.auth.rate_limit import reset_admission_state
    from explorer.tools.store import set_store

    reset_admission_state()
    set_store(None)
    yield
    reset_admission_state()
    set_store(None)


@pytest.fixture
def audit_dir(_offline_env: Path) -> Path:
    return _offline_env


@pytest.fixture
def flush_audit():
    """Wait for queued audit writes to land."""
    from explorer.memory.audit import shutdown_audit_writer

    return lambda: shutdown_audit_writer(wait=True)
