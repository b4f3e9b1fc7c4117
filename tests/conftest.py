"""Shared fixtures: raw server payloads, an httpx MockTransport client and a fake API."""
from __future__ import annotations

import threading
import zipfile
from pathlib import Path
from typing import Callable, Dict, List, Optional

import httpx
import pytest

from cdscan.api import ApiClient
from cdscan.config import Settings
from cdscan.models import ResultPage, ScanJob, ScanProjectInfo, ScanStatus
from cdscan.normalize import unify_all


# ---------------------------------------------------------------------------
# Raw payload builders (camelCase, as the backend sends them)
# ---------------------------------------------------------------------------


def _metadata(vid: str, kind: str) -> dict:
    return {
        "id": f"meta-{vid}",
        "cwe": ["CWE-89"],
        "name": f"{kind} issue {vid}",
        "shortDescription": "short",
        "description": "long description",
        "howToPrevent": "sanitize input",
        "severity": "HIGH",
        "language": "python",
        "vulnerabilityType": kind,
    }


def _base(vid: str, kind: str, with_metadata: bool = True) -> dict:
    return {
        "id": vid,
        "projectId": "p1",
        "createdAt": "2026-01-01T00:00:00Z",
        "updateAt": "2026-01-02T00:00:00Z",
        "timeToFix": None,
        "currentState": "TO_VERIFY",
        "currentSeverity": "HIGH",
        "currentPriority": "URGENT",
        "contextualExplanation": None,
        "language": "python",
        "path": f"src/{vid}.py",
        "vulnerableStartLine": 10,
        "vulnerableEndLine": 12,
        "vulnerability": _metadata(vid, kind) if with_metadata else None,
        "historyItems": {"items": [{"id": "h1", "type": "STATE", "value": "TO_VERIFY", "date": "2026-01-01"}]},
        "codeSnippets": [],
        "vulnerabilityType": kind,
    }


def _sast(vid: str) -> dict:
    return {
        "base": _base(vid, "sast"),
        "dataFlowItems": [
            {"id": "d2", "nameHighlight": "cursor.execute", "line": 12, "language": "python", "code": [], "type": "sink", "order": 2},
            {"id": "d1", "nameHighlight": "request.args", "line": 3, "language": "python", "code": [], "type": "source", "order": 1},
        ],
    }


def _iac(vid: str) -> dict:
    return {"base": _base(vid, "iac")}


def _sca(vid: str, with_metadata: bool = False) -> dict:
    return {
        "base": _base(vid, "sca", with_metadata=with_metadata),
        "library": {
            "id": "lib1", "projectId": "p1", "packageName": "requests", "packageVersion": "2.0.0",
            "fileName": "requirements.txt", "ecosystem": "PyPI",
        },
        "cvssScore": 7.5,
        "metadata": {
            "cve": "CVE-2023-0001",
            "internalId": "GHSA-xxxx",
            "summary": "requests leaks headers",
            "severityGh": "HIGH",
            "schemaVersion": "1.4.0",
            "details": "details text",
            "aliases": [{"id": "a1", "alias": "PYSEC-1"}],
            "cwes": [{"id": "c1", "cweId": "CWE-200"}],
            "references": [{"id": "r1", "type": "WEB", "url": "https://example.test/advisory"}],
            "packages": [{"id": "pk1", "ecosystem": "PyPI", "packageName": "requests", "introduced": "0", "fixed": "2.31.0", "fixAvailable": True}],
        },
    }


class RawBuilders:
    base = staticmethod(_base)
    sast = staticmethod(_sast)
    iac = staticmethod(_iac)
    sca = staticmethod(_sca)

    @staticmethod
    def page(items: List[dict], total: Optional[int] = None, state: Optional[str] = None) -> dict:
        out = {"vulnerabilities": items, "total": len(items) if total is None else total, "scanProjectInfo": None}
        if state:
            out["scanProjectInfo"] = {"scanId": "s1", "state": state, "createAt": "2026-01-01", "scanType": "FULL"}
        return out


@pytest.fixture
def raw() -> type:
    return RawBuilders


# ---------------------------------------------------------------------------
# HTTP client over MockTransport
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(api_key="test-key", api_url="https://api.test", page_size=50)


@pytest.fixture
def make_client(settings) -> Callable[..., ApiClient]:
    clients: List[ApiClient] = []

    def _make(handler: Callable[[httpx.Request], httpx.Response], **overrides) -> ApiClient:
        s = Settings(**{**settings.__dict__, **overrides})
        client = ApiClient(s, transport=httpx.MockTransport(handler))
        clients.append(client)
        return client

    yield _make
    for c in clients:
        c.close()


# ---------------------------------------------------------------------------
# Fake API for orchestrator tests
# ---------------------------------------------------------------------------


class FakeApi:
    """In-memory stand-in for ApiClient with scripted statuses and results."""

    def __init__(self, statuses: Optional[List[str]] = None, results: Optional[Dict[str, List[dict]]] = None,
                 scan_state: Optional[str] = None, block: Optional[threading.Event] = None,
                 on_status: Optional[Callable[[int], None]] = None):
        self.statuses = list(statuses or ["COMPLETED"])
        self.results = results or {}
        self.scan_state = scan_state
        self.block = block
        self.on_status = on_status
        self.calls: List[tuple] = []
        self.uploaded_path: Optional[Path] = None
        self.uploaded_names: List[str] = []

    def __enter__(self) -> "FakeApi":
        return self

    def __exit__(self, *exc) -> None:
        pass

    def start_scan(self, project_id, branch=None):
        self.calls.append(("start_scan", project_id, branch))
        if self.block is not None:
            self.block.wait(5)
        return ScanJob(scan_id="s1", project_id=project_id, upload_url="https://up", branch=branch)

    def upload_file_to_signed_url(self, url, path):
        self.calls.append(("upload", url))
        self.uploaded_path = Path(path)
        with zipfile.ZipFile(path) as zf:
            self.uploaded_names = zf.namelist()

    def get_scan_status(self, project_id, scan_id):
        n = sum(1 for c in self.calls if c[0] == "status")
        self.calls.append(("status", project_id, scan_id))
        if self.on_status:
            self.on_status(n)
        state = self.statuses[min(n, len(self.statuses) - 1)]
        return ScanStatus(scan_id=scan_id, state=state)

    def _page(self, kind, project_id, branch):
        self.calls.append((kind, project_id, branch))
        items = self.results.get(kind, [])
        info = None
        if self.scan_state:
            info = ScanProjectInfo(scan_id="s1", state=self.scan_state)
        return ResultPage(vulnerabilities=unify_all(kind, items), total=len(items), scan_info=info)

    def get_sast_results(self, project_id, branch=None, severity=None):
        return self._page("sast", project_id, branch)

    def get_iac_results(self, project_id, branch=None, severity=None):
        return self._page("iac", project_id, branch)

    def get_sca_results(self, project_id, branch=None, severity=None):
        return self._page("sca", project_id, branch)

    def status_calls(self) -> int:
        return sum(1 for c in self.calls if c[0] == "status")


@pytest.fixture
def fake_api_cls() -> type:
    return FakeApi


@pytest.fixture
def workspace(tmp_path) -> Path:
    root = tmp_path / "ws"
    (root / "src").mkdir(parents=True)
    (root / "src" / "app.py").write_text("print('hi')\n")
    (root / "README.md").write_text("readme\n")
    (root / "node_modules" / "pkg").mkdir(parents=True)
    (root / "node_modules" / "pkg" / "index.js").write_text("x")
    return root
