"""Shared fixtures for reqchain scenario tests."""

import json

import pytest
from click.testing import CliRunner

from reqchain import core
from reqchain.executor import RequestResult


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def global_reqchain_dir(tmp_path, monkeypatch):
    """Override the global ~/.reqchain directory to a temp location."""
    fake_global = tmp_path / "fake_home" / ".reqchain"
    fake_global.mkdir(parents=True)
    monkeypatch.setattr(core, "GLOBAL_DIR", fake_global)
    monkeypatch.setattr(core, "GLOBAL_CONFIG", fake_global / "config.yaml")
    return fake_global


def make_request_result(
    status_code=200,
    body=None,
    headers=None,
    elapsed_ms=42.0,
    error=None,
):
    """Factory for mock RequestResult objects.

    dict/list bodies are serialized to JSON bytes, str bodies are encoded.
    """
    r = RequestResult()
    r.status_code = status_code
    r.headers = headers or {}
    if isinstance(body, dict | list):
        body = json.dumps(body).encode("utf-8")
    elif isinstance(body, str):
        body = body.encode("utf-8")
    r.body = body or b""
    r.elapsed_ms = elapsed_ms
    r.error = error
    return r
