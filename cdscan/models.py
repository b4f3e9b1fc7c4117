from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


class ScanState(str, Enum):
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    COMPLETED_DEGRADED = "COMPLETED_DEGRADED"
    FAILED = "FAILED"


TERMINAL_STATES = {ScanState.COMPLETED.value, ScanState.COMPLETED_DEGRADED.value, ScanState.FAILED.value}
SUCCESS_STATES = {ScanState.COMPLETED.value, ScanState.COMPLETED_DEGRADED.value}

SCAN_TYPES = ("sast", "iac", "sca")


@dataclass(frozen=True)
class ScanJob:
    scan_id: str
    project_id: str
    upload_url: str
    branch: Optional[str] = None


@dataclass
class ScanStatus:
    scan_id: str
    state: str
    progress: Optional[int] = None
    step: Optional[str] = None


@dataclass
class ScanProjectInfo:
    scan_id: Optional[str]
    state: Optional[str]
    created_at: Optional[str] = None
    scan_type: Optional[str] = None


@dataclass
class VulnerabilityMetadata:
    id: str
    name: str
    short_description: str = ""
    description: str = ""
    how_to_prevent: str = ""
    cwe: List[str] = field(default_factory=list)
    owasp_top10: List[str] = field(default_factory=list)
    severity: str = ""
    language: str = ""
    vulnerability_type: str = ""


@dataclass
class DataFlowStep:
    order: int
    line: Optional[int]
    name_highlight: str = ""
    type: str = ""
    language: str = ""
    code: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class SastDetails:
    data_flow: List[DataFlowStep] = field(default_factory=list)


@dataclass
class IacDetails:
    pass


@dataclass
class ScaDetails:
    package_name: Optional[str] = None
    package_version: Optional[str] = None
    ecosystem: Optional[str] = None
    file_name: Optional[str] = None
    cvss_score: Optional[float] = None
    cve: Optional[str] = None
    summary: Optional[str] = None
    severity_gh: Optional[str] = None
    aliases: List[str] = field(default_factory=list)
    references: List[str] = field(default_factory=list)
    fixed_versions: List[str] = field(default_factory=list)


Details = Union[SastDetails, IacDetails, ScaDetails]


@dataclass
class Vulnerability:
    """Unified record for SAST, IaC and SCA findings.

    ``type`` is the list the record came from and decides which ``details``
    variant is attached.
    """
    id: str
    type: str
    project_id: str
    path: str
    severity: str
    priority: str
    state: str
    start_line: int
    end_line: int
    metadata: VulnerabilityMetadata
    details: Details
    language: str = ""
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    time_to_fix: Optional[str] = None
    contextual_explanation: Optional[str] = None
    history: List[Dict[str, Any]] = field(default_factory=list)
    code_snippets: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ResultPage:
    vulnerabilities: List[Vulnerability]
    total: int
    scan_info: Optional[ScanProjectInfo] = None


@dataclass(frozen=True)
class ScanSnapshot:
    is_loading: bool = False
    error: Optional[str] = None
    total_vulnerabilities: int = 0
    last_scan_state: str = "N/A"
    current_branch: Optional[str] = None
    sast: Tuple[Vulnerability, ...] = ()
    iac: Tuple[Vulnerability, ...] = ()
    sca: Tuple[Vulnerability, ...] = ()

    def results(self, kind: str) -> Tuple[Vulnerability, ...]:
        if kind not in SCAN_TYPES:
            raise ValueError(f"Unknown scan type: {kind}")
        return getattr(self, kind)

    def summary(self) -> Dict[str, Any]:
        return {
            "is_loading": self.is_loading,
            "error": self.error,
            "total_vulnerabilities": self.total_vulnerabilities,
            "last_scan_state": self.last_scan_state,
            "current_branch": self.current_branch,
            "counts": {kind: len(getattr(self, kind)) for kind in SCAN_TYPES},
        }

    def to_dict(self) -> Dict[str, Any]:
        out = self.summary()
        for kind in SCAN_TYPES:
            out[kind] = [v.to_dict() for v in getattr(self, kind)]
        return out
