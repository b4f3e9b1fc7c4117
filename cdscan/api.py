from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlsplit

import httpx

from .config import Settings
from .errors import ApiError, MissingApiKeyError, UploadError
from .models import SCAN_TYPES, ResultPage, ScanJob, ScanStatus, Vulnerability
from .normalize import scan_info_from_raw, to_unified, unify_all


GCS_HOST = "storage.googleapis.com"
MAX_UPLOAD_BYTES = 5 * 1024 ** 3


def upload_headers(url: str) -> Dict[str, str]:
    """Headers for the signed-URL PUT; GCS gets create-only and size-cap guards."""
    headers = {"Content-Type": "application/zip"}
    if GCS_HOST in (urlsplit(url).hostname or ""):
        headers["x-goog-if-generation-match"] = "0"
        headers["x-goog-content-length-range"] = f"0,{MAX_UPLOAD_BYTES}"
    return headers


def _status_message(code: int, operation: str, detail: str, context: Optional[str]) -> str:
    if code == 400:
        return f"API Error: Invalid Request for '{operation}'. {detail} (Context: {context})"
    if code == 401:
        return f"API Authentication Failed: Invalid or missing API Key. Please check settings. (Operation: '{operation}')"
    if code == 403:
        return f"API Authorization Failed for '{operation}': Access Denied. Check permissions. (Context: {context})"
    if code == 404:
        return f"API Error: Resource not found for '{operation}'. (Context: {context})"
    if code == 429:
        return f"API Rate Limit Exceeded for '{operation}'. Please try later. (Context: {context})"
    if 500 <= code <= 599:
        return f"Server Error ({code}) during '{operation}'. Please try later. (Context: {context})"
    return f"API Error ({code}) during '{operation}': {detail} (Context: {context})"


class ApiClient:
    """httpx bindings for the scan backend.

    Every call checks for an API key first and maps transport and HTTP failures
    to ``ApiError`` naming the failing operation.
    """

    def __init__(self, settings: Settings, http_client: Optional[httpx.Client] = None,
                 transport: Optional[httpx.BaseTransport] = None):
        self.settings = settings
        self.base_url = settings.base_url
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(
            base_url=self.base_url + "/",
            timeout=httpx.Timeout(settings.read_timeout, connect=settings.connect_timeout),
            transport=transport,
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "ApiClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ---- helpers ----

    def _headers(self) -> Dict[str, str]:
        if not self.settings.api_key:
            raise MissingApiKeyError()
        return {"X-API-Key": self.settings.api_key, "Accept": "application/json"}

    def _map_error(self, error: Exception, operation: str, context: Optional[str]) -> ApiError:
        if isinstance(error, httpx.HTTPStatusError):
            code = error.response.status_code
            body = (error.response.text or "").strip()
            detail = body or error.response.reason_phrase
            return ApiError(operation, _status_message(code, operation, detail, context), status_code=code, context=context)
        if isinstance(error, httpx.TransportError):
            msg = (
                f"Network Error for '{operation}': Could not reach server at {self.base_url}. "
                f"Please check your internet connection and VPN settings. (Context: {context})"
            )
            return ApiError(operation, msg, context=context)
        return ApiError(operation, f"Unexpected Error during '{operation}': {error or 'Unknown error'}. (Context: {context})", context=context)

    def _json(self, operation: str, context: Optional[str], send: Callable[[Dict[str, str]], httpx.Response]) -> Any:
        headers = self._headers()
        try:
            resp = send(headers)
            resp.raise_for_status()
            return resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise self._map_error(e, operation, context) from e

    # ---- scan lifecycle ----

    def start_scan(self, project_id: str, branch: Optional[str] = None) -> ScanJob:
        params = {"branch": branch} if branch else None
        context = f"ProjectId: {project_id}"
        data = self._json("startScan", context, lambda h: self._client.post(
            f"project/{project_id}/scan/start", params=params, headers=h))
        url, scan_id = (data or {}).get("url"), (data or {}).get("scanId")
        if not url or not scan_id:
            raise ApiError("startScan", f"Unexpected Error during 'startScan': response missing url or scanId. (Context: {context})", context=context)
        return ScanJob(scan_id=str(scan_id), project_id=project_id, upload_url=url, branch=branch)

    def upload_file_to_signed_url(self, url: str, path) -> None:
        self._headers()
        path = Path(path)
        # the query string holds the signature
        context = f"Host: {urlsplit(url).hostname}"
        try:
            with path.open("rb") as f:
                resp = self._client.put(url, content=f, headers=upload_headers(url))
        except httpx.HTTPError as e:
            raise self._map_error(e, "uploadFileToSignedUrl", context) from e
        if not resp.is_success:
            body = (resp.text or "").strip() or "Unknown error"
            raise UploadError(
                "uploadFileToSignedUrl",
                f"Upload failed with code {resp.status_code}: {body}",
                status_code=resp.status_code,
                context=context,
            )

    def get_scan_status(self, project_id: str, scan_id: str) -> ScanStatus:
        data = self._json("getScanStatus", f"ScanId: {scan_id}", lambda h: self._client.get(
            f"project/{project_id}/scan/{scan_id}", headers=h)) or {}
        return ScanStatus(
            scan_id=str(data.get("id") or scan_id),
            state=str(data.get("state") or ""),
            progress=data.get("progress"),
            step=data.get("step"),
        )

    # ---- results ----

    def _results_page(self, kind: str, project_id: str, branch: Optional[str], page: int,
                      page_size: int, severity: Optional[List[str]]) -> Dict[str, Any]:
        if kind not in SCAN_TYPES:
            raise ValueError(f"Unknown scan type: {kind}")
        params: Dict[str, Any] = {"pageNumber": page, "pageSizeNumber": page_size}
        if severity:
            params["severity"] = list(severity)
        if branch:
            params["branch"] = branch
        operation = f"get{kind.capitalize()}Results"
        return self._json(operation, f"ProjectId: {project_id}", lambda h: self._client.get(
            f"project/{project_id}/results/{kind}", params=params, headers=h)) or {}

    def get_results(self, kind: str, project_id: str, branch: Optional[str] = None, page: int = 1,
                    page_size: Optional[int] = None, severity: Optional[List[str]] = None) -> ResultPage:
        data = self._results_page(kind, project_id, branch, page, page_size or self.settings.page_size, severity)
        return ResultPage(
            vulnerabilities=unify_all(kind, data.get("vulnerabilities"), verbose=self.settings.verbose),
            total=int(data.get("total") or 0),
            scan_info=scan_info_from_raw(data.get("scanProjectInfo")),
        )

    def get_all_results(self, kind: str, project_id: str, branch: Optional[str] = None,
                        severity: Optional[List[str]] = None) -> ResultPage:
        """Walk every page of one result list."""
        page_size = self.settings.page_size
        vulns: List[Vulnerability] = []
        scan_info = None
        total = 0
        seen = 0
        page = 1
        while True:
            data = self._results_page(kind, project_id, branch, page, page_size, severity)
            raw = data.get("vulnerabilities") or []
            total = int(data.get("total") or 0)
            if scan_info is None:
                scan_info = scan_info_from_raw(data.get("scanProjectInfo"))
            vulns.extend(unify_all(kind, raw, verbose=self.settings.verbose))
            seen += len(raw)
            if not raw or seen >= total:
                break
            page += 1
        return ResultPage(vulnerabilities=vulns, total=total, scan_info=scan_info)

    def get_sast_results(self, project_id: str, branch: Optional[str] = None, severity: Optional[List[str]] = None) -> ResultPage:
        return self.get_all_results("sast", project_id, branch, severity)

    def get_iac_results(self, project_id: str, branch: Optional[str] = None, severity: Optional[List[str]] = None) -> ResultPage:
        return self.get_all_results("iac", project_id, branch, severity)

    def get_sca_results(self, project_id: str, branch: Optional[str] = None, severity: Optional[List[str]] = None) -> ResultPage:
        return self.get_all_results("sca", project_id, branch, severity)

    def get_vulnerability_details(self, project_id: str, vulnerability_id: str, scan_type: str) -> Optional[Vulnerability]:
        kind = (scan_type or "").lower()
        if kind not in SCAN_TYPES:
            raise ValueError(f"Unknown scanType for details: {scan_type}")
        data = self._json("getVulnerabilityDetails", f"VulnerabilityId: {vulnerability_id}", lambda h: self._client.get(
            f"project/{project_id}/results/{kind}/{vulnerability_id}", headers=h)) or {}
        item = data.get(kind)
        return to_unified(kind, item, verbose=self.settings.verbose) if item else None
