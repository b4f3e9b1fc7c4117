import threading
from dataclasses import replace
from typing import Callable, List, Optional, Sequence, Tuple

from .models import ScanProjectInfo, ScanSnapshot, ScanState, Vulnerability
from .util import log


Listener = Callable[[], None]


class ScanStateStore:
    """Single scan-results snapshot for a workspace, observable by any number of listeners.

    Mutators swap the snapshot under a lock, then call every listener once, in
    registration order, outside the lock. Listeners read the store through the
    accessors (or ``snapshot()``) and always see the fully updated state.
    """

    def __init__(self, verbose: bool = False) -> None:
        self.verbose = verbose
        self._lock = threading.RLock()
        self._snapshot = ScanSnapshot()
        self._listeners: List[Listener] = []

    # ---- read side ----

    def snapshot(self) -> ScanSnapshot:
        with self._lock:
            return self._snapshot

    @property
    def is_loading(self) -> bool:
        return self.snapshot().is_loading

    @property
    def error(self) -> Optional[str]:
        return self.snapshot().error

    @property
    def total_vulnerabilities(self) -> int:
        return self.snapshot().total_vulnerabilities

    @property
    def last_scan_state(self) -> str:
        return self.snapshot().last_scan_state

    @property
    def current_branch(self) -> Optional[str]:
        return self.snapshot().current_branch

    @property
    def sast_results(self) -> Tuple[Vulnerability, ...]:
        return self.snapshot().sast

    @property
    def iac_results(self) -> Tuple[Vulnerability, ...]:
        return self.snapshot().iac

    @property
    def sca_results(self) -> Tuple[Vulnerability, ...]:
        return self.snapshot().sca

    # ---- listeners ----

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register a zero-argument callback; returns a handle that unsubscribes it."""
        with self._lock:
            self._listeners.append(listener)
        return lambda: self.remove_listener(listener)

    def remove_listener(self, listener: Listener) -> None:
        with self._lock:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

    def _notify(self) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener()
            except Exception as e:
                if self.verbose:
                    log(f"state listener error: {e}")

    # ---- mutators ----

    def set_loading(self, loading: bool, branch: Optional[str] = None) -> None:
        with self._lock:
            if loading:
                # a new run starts from an empty snapshot
                self._snapshot = ScanSnapshot(is_loading=True, current_branch=branch)
            else:
                self._snapshot = replace(self._snapshot, is_loading=False)
        self._notify()

    def set_error(self, message: str) -> None:
        with self._lock:
            self._snapshot = replace(
                self._snapshot,
                error=message,
                is_loading=False,
                total_vulnerabilities=0,
                sast=(), iac=(), sca=(),
            )
        self._notify()

    def update_results(self, sast: Sequence[Vulnerability], iac: Sequence[Vulnerability],
                       sca: Sequence[Vulnerability], scan_info: Optional[ScanProjectInfo] = None) -> None:
        sast, iac, sca = tuple(sast), tuple(iac), tuple(sca)
        state = (scan_info.state if scan_info else None) or ScanState.COMPLETED.value
        with self._lock:
            self._snapshot = replace(
                self._snapshot,
                sast=sast, iac=iac, sca=sca,
                total_vulnerabilities=len(sast) + len(iac) + len(sca),
                last_scan_state=state,
                error=None,
                is_loading=False,
            )
        self._notify()

    def reset(self) -> None:
        with self._lock:
            self._snapshot = ScanSnapshot()
        self._notify()
