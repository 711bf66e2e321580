import hashlib

import pytest
from rich.console import Console

from conftest import DummyLogger
from endpointremediator.errors import ActionFailed
from endpointremediator.services.download import DownloadService, is_url


class FakeResponse:
    def __init__(self, payload: bytes):
        self.payload = payload
        self.headers = {"Content-Length": str(len(payload))}

    def raise_for_status(self):
        return None

    def iter_content(self, chunk_size=8192):
        yield self.payload

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class FakeRequestsModule:
    class RequestException(Exception):
        pass

    def __init__(self, payload: bytes):
        self.payload = payload
        self.urls = []

    def get(self, url, *_args, **_kwargs):
        self.urls.append(url)
        return FakeResponse(self.payload)


class BrokenRequestsModule(FakeRequestsModule):
    def get(self, url, *_args, **_kwargs):
        raise self.RequestException("connection reset")


def _service(requests_module):
    return DownloadService(
        logger=DummyLogger(),
        console=Console(record=True),
        requests_module=requests_module,
    )


def test_fetch_downloads_remote_installer(tmp_path):
    payload = b"msi-bytes"
    service = _service(FakeRequestsModule(payload))

    local = service.fetch(
        "https://downloads.example.com/agent/Agent-5.2.msi",
        str(tmp_path),
        expected_sha256=hashlib.sha256(payload).hexdigest(),
    )

    assert local.endswith("Agent-5.2.msi")
    assert (tmp_path / "Agent-5.2.msi").read_bytes() == payload


def test_fetch_returns_local_path_untouched(tmp_path):
    requests_module = FakeRequestsModule(b"unused")

    assert _service(requests_module).fetch(r"C:\Staging\agent.msi", str(tmp_path)) == r"C:\Staging\agent.msi"
    assert requests_module.urls == []


def test_checksum_mismatch_removes_file(tmp_path):
    service = _service(FakeRequestsModule(b"tampered"))

    with pytest.raises(ActionFailed, match="Checksum mismatch") as excinfo:
        service.fetch("https://downloads.example.com/agent.msi", str(tmp_path), expected_sha256="0" * 64)

    assert excinfo.value.code == "download_failed"
    assert not (tmp_path / "agent.msi").exists()


def test_plain_http_is_refused(tmp_path):
    with pytest.raises(ActionFailed, match="insecure HTTP"):
        _service(FakeRequestsModule(b"x")).fetch("http://downloads.example.com/agent.msi", str(tmp_path))


def test_request_errors_become_action_failed(tmp_path):
    with pytest.raises(ActionFailed, match="connection reset"):
        _service(BrokenRequestsModule(b"")).fetch("https://downloads.example.com/agent.msi", str(tmp_path))


def test_is_url():
    assert is_url("https://example.com/a.msi")
    assert not is_url(r"C:\Staging\a.msi")
