"""Tests for the health-check script against a mocked liveness route."""

import importlib.util
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import requests


@pytest.fixture
def health_check(monkeypatch):
    path = Path(__file__).resolve().parent.parent / "health-check.py"
    spec = importlib.util.spec_from_file_location("health_check", path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    monkeypatch.setattr(module, "RETRY_DELAY", 0)
    return module


def _response(status: int, payload: dict) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = payload
    resp.text = str(payload)
    return resp


class TestCheckService:
    def test_healthy(self, health_check, monkeypatch) -> None:
        get = MagicMock(return_value=_response(200, {"ok": True, "service": "fulcanellie-staking-api"}))
        monkeypatch.setattr(health_check.requests, "get", get)
        assert health_check.check_service("http://api.test/") == (True, None)
        get.assert_called_once_with("http://api.test/", timeout=5)

    def test_wrong_service(self, health_check, monkeypatch) -> None:
        get = MagicMock(return_value=_response(200, {"ok": True, "service": "other"}))
        monkeypatch.setattr(health_check.requests, "get", get)
        ok, error = health_check.check_service("http://api.test/")
        assert ok is False
        assert "Unexpected response (200)" in error
        assert get.call_count == health_check.MAX_RETRIES

    def test_connection_error_then_recovery(self, health_check, monkeypatch) -> None:
        healthy = _response(200, {"ok": True, "service": "fulcanellie-staking-api"})
        get = MagicMock(side_effect=[requests.ConnectionError("refused"), healthy])
        monkeypatch.setattr(health_check.requests, "get", get)
        assert health_check.check_service("http://api.test/") == (True, None)


class TestMain:
    def test_writes_log_line(self, health_check, monkeypatch, tmp_path) -> None:
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr(health_check, "check_service", lambda url: (False, "refused"))
        assert health_check.main() == 1
        log = (tmp_path / "data" / "health-check.log").read_text()
        assert "ERROR: fulcanellie-staking-api DOWN: refused" in log
