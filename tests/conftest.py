"""Global test fixtures for pr-comments."""

from __future__ import annotations

import pytest

from prcomments.config import Config, clear_reload_callbacks, set_config


@pytest.fixture(autouse=True)
def _default_config(monkeypatch):
    """Reset config to defaults and hide real tokens before every test.

    A developer's GH_TOKEN would otherwise leak into token-resolution tests.
    """
    monkeypatch.delenv("GH_TOKEN", raising=False)
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    set_config(Config())
    yield
    set_config(Config())
    clear_reload_callbacks()
