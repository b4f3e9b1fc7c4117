import threading
import time
from typing import Callable, Optional

from .api import ApiClient
from .archive import workspace_zip
from .cancel import CancelToken
from .config import load_settings
from .errors import ScanAlreadyRunning, ScanCancelled, ScanFailed, ScanTimeout
from .gitinfo import branch_for_api
from .models import SUCCESS_STATES, TERMINAL_STATES, ScanSnapshot
from .state import ScanStateStore
from .util import log


Notifier = Callable[[str, str, str], None]  # (level, title, message)
Progress = Callable[[str], None]


def log_notifier(level: str, title: str, message: str) -> None:
    log(f"{level.upper()} {title}: {message}")


class ScanOrchestrator:
    """Runs archive → start → upload → poll → fetch → publish for one workspace.

    At most one run is active at a time; ``run`` and ``start_scan`` raise
    ``ScanAlreadyRunning`` otherwise. Every failure is caught once at the top
    of the run and lands in the store as an error with cleared results.
    """

    def __init__(
        self,
        store: ScanStateStore,
        api_factory: Optional[Callable[[], ApiClient]] = None,
        notifier: Optional[Notifier] = None,
        progress: Optional[Progress] = None,
        poll_interval: float = 5,
        max_attempts: int = 60,
        sleep: Callable[[float], None] = time.sleep,
        verbose: bool = False,
    ):
        self.store = store
        self.api_factory = api_factory or (lambda: ApiClient(load_settings()))
        self.notifier = notifier or log_notifier
        self.progress = progress
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.sleep = sleep
        self.verbose = verbose
        self._lock = threading.Lock()
        self._active: Optional[CancelToken] = None

    # ---- run control ----

    @property
    def running(self) -> bool:
        with self._lock:
            return self._active is not None

    def _acquire(self) -> CancelToken:
        with self._lock:
            if self._active is not None:
                raise ScanAlreadyRunning()
            self._active = CancelToken()
            return self._active

    def _release(self) -> None:
        with self._lock:
            self._active = None

    def cancel(self) -> bool:
        with self._lock:
            token = self._active
        if token is None:
            return False
        token.cancel()
        return True

    def run(self, project_id: str, workspace_root) -> ScanSnapshot:
        """Run one scan synchronously and return the published snapshot."""
        token = self._acquire()
        try:
            return self._execute(project_id, workspace_root, token)
        finally:
            self._release()

    def start_scan(self, project_id: str, workspace_root) -> threading.Thread:
        """Kick off a run on a background thread and return immediately."""
        token = self._acquire()

        def _target():
            try:
                self._execute(project_id, workspace_root, token)
            finally:
                self._release()

        t = threading.Thread(target=_target, name="cdscan-scan", daemon=True)
        try:
            t.start()
        except RuntimeError:
            self._release()
            raise
        return t

    # ---- phases ----

    def _report(self, text: str) -> None:
        if self.progress:
            self.progress(text)
        if self.verbose:
            log(text)

    def poll_scan_status(self, api: ApiClient, project_id: str, scan_id: str, token: CancelToken) -> str:
        """Poll until a terminal state; returns it uppercased."""
        for attempt in range(1, self.max_attempts + 1):
            token.raise_if_cancelled()
            self._report(f"Polling status ({attempt}/{self.max_attempts})…")
            status = api.get_scan_status(project_id, scan_id)
            state = status.state.upper()
            if state in TERMINAL_STATES:
                return state
            if status.step and self.verbose:
                log(f"scan {scan_id}: {state} step={status.step} progress={status.progress}")
            if attempt < self.max_attempts:
                self.sleep(self.poll_interval)
        raise ScanTimeout(self.max_attempts)

    def _execute(self, project_id: str, workspace_root, token: CancelToken) -> ScanSnapshot:
        try:
            self._report("Detecting Git branch…")
            branch = branch_for_api(workspace_root, verbose=self.verbose)
            if branch:
                self._report(f"Starting scan on branch: {branch}")
            self.store.set_loading(True, branch=branch)

            with self.api_factory() as api:
                token.raise_if_cancelled()
                self._report("Archiving project…")
                with workspace_zip(workspace_root, token) as zip_path:
                    token.raise_if_cancelled()
                    self._report("Initiating scan...")
                    job = api.start_scan(project_id, branch)
                    token.raise_if_cancelled()
                    self._report("Uploading project files...")
                    api.upload_file_to_signed_url(job.upload_url, zip_path)

                self._report("Waiting for scan to complete…")
                final = self.poll_scan_status(api, project_id, job.scan_id, token)
                if final not in SUCCESS_STATES:
                    raise ScanFailed(final)

                token.raise_if_cancelled()
                self._report("Fetching SAST results…")
                sast = api.get_sast_results(project_id, branch=branch)
                token.raise_if_cancelled()
                self._report("Fetching IaC results…")
                iac = api.get_iac_results(project_id, branch=branch)
                token.raise_if_cancelled()
                self._report("Fetching SCA results…")
                sca = api.get_sca_results(project_id, branch=branch)
                token.raise_if_cancelled()

            self.store.update_results(sast.vulnerabilities, iac.vulnerabilities, sca.vulnerabilities, sast.scan_info)
            total = self.store.total_vulnerabilities
            branch_info = f" on branch '{branch}'" if branch else ""
            self.notifier("info", "Scan completed", f"Found {total} vulnerabilities{branch_info}")
        except ScanCancelled:
            self.store.set_error("Scan cancelled")
            self.notifier("warning", "Scan cancelled", "The scan was cancelled before results were published")
        except Exception as e:
            message = str(e) or "Unknown error"
            self.store.set_error(message)
            self.notifier("error", "Scan failed", message)
        return self.store.snapshot()
