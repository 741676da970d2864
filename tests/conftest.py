"""Shared pytest fixtures for buildtrack tests."""

import pytest
from click.testing import CliRunner


@pytest.fixture
def worker_id(request):
    """Get the pytest-xdist worker ID, or 'master' if not running in parallel."""
    if hasattr(request.config, "workerinput"):
        return request.config.workerinput["workerid"]
    return "master"


@pytest.fixture
def mock_buildtrack_base(tmp_path, monkeypatch):
    """Point BUILDTRACK_HOME at tmp_path for test isolation.

    This ensures tests don't write to the real ~/.buildtrack/ directory.
    Every module resolves the base through get_buildtrack_base(), which
    reads the environment on each call.
    """
    base = tmp_path / "buildtrack"
    monkeypatch.setenv("BUILDTRACK_HOME", str(base))
    return base


@pytest.fixture
def runner():
    """Click CLI test runner."""
    return CliRunner()
