"""Shared fixtures for Drover tests."""

import json

import httpx
import pytest

from drover.schemas.ingest import WatchedFolder


@pytest.fixture(autouse=True)
def _no_sops(monkeypatch):
    """Ensure tests never try to invoke SOPS."""
    monkeypatch.setenv("DROVER_USE_SOPS", "false")


class FakeObserver:
    """Stands in for ``watchdog.observers.Observer`` without threads."""

    def __init__(self) -> None:
        self.scheduled = []
        self.started = False
        self.stopped = False
        self.joined = False

    def schedule(self, handler, path, recursive=False):
        self.scheduled.append((handler, path, recursive))

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def join(self, timeout=None):
        self.joined = True


@pytest.fixture()
def make_folder(tmp_path):
    """Factory for WatchedFolder definitions rooted in tmp_path."""

    def _make(name: str = "in", **overrides) -> WatchedFolder:
        fields = {
            "path": str(tmp_path / name),
            "client_code": "C1",
        }
        fields.update(overrides)
        return WatchedFolder(**fields)

    return _make


def api_result(is_success: bool = True, status_code: int = 200, result=None, message: str = "") -> dict:
    """Body in the shape the ingestion API returns."""
    return {
        "statusCode": status_code,
        "message": message,
        "result": result,
        "isSuccess": is_success,
    }


def json_response(payload, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, content=json.dumps(payload).encode())
