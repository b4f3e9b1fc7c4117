"""Map the server's heterogeneous vulnerability payloads onto ``Vulnerability``.

SAST and IaC items share one shape (``base`` plus, for SAST, ``dataFlowItems``).
SCA items carry ``library`` and ``metadata`` blocks instead and may omit the
base vulnerability metadata, in which case it is rebuilt from the SCA data.
"""
from typing import Any, Dict, List, Optional

from .models import (
    DataFlowStep,
    Details,
    IacDetails,
    SastDetails,
    ScaDetails,
    ScanProjectInfo,
    Vulnerability,
    VulnerabilityMetadata,
)
from .util import log


SCA_HOW_TO_PREVENT = "Update the dependency."


def _int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _str_list(values: Any) -> List[str]:
    return [str(v) for v in (values or []) if v is not None]


def metadata_from_raw(raw: Dict[str, Any]) -> VulnerabilityMetadata:
    return VulnerabilityMetadata(
        id=str(raw.get("id") or ""),
        name=raw.get("name") or "",
        short_description=raw.get("shortDescription") or "",
        description=raw.get("description") or "",
        how_to_prevent=raw.get("howToPrevent") or "",
        cwe=_str_list(raw.get("cwe") or raw.get("cweArray")),
        owasp_top10=_str_list(raw.get("owaspTop10")),
        severity=raw.get("severity") or "",
        language=raw.get("language") or "",
        vulnerability_type=raw.get("vulnerabilityType") or "",
    )


def scan_info_from_raw(raw: Optional[Dict[str, Any]]) -> Optional[ScanProjectInfo]:
    if not raw:
        return None
    return ScanProjectInfo(
        scan_id=raw.get("scanId"),
        state=raw.get("state"),
        created_at=raw.get("createAt"),
        scan_type=raw.get("scanType"),
    )


def _data_flow(items: Any) -> List[DataFlowStep]:
    steps = [
        DataFlowStep(
            order=_int(it.get("order")),
            line=it.get("line"),
            name_highlight=it.get("nameHighlight") or "",
            type=it.get("type") or "",
            language=it.get("language") or "",
            code=list(it.get("code") or []),
        )
        for it in (items or [])
        if isinstance(it, dict)
    ]
    steps.sort(key=lambda s: s.order)
    return steps


def _build(kind: str, base: Dict[str, Any], metadata: VulnerabilityMetadata, details: Details,
           path: Optional[str] = None, language: Optional[str] = None) -> Vulnerability:
    history = base.get("historyItems")
    if isinstance(history, dict):
        history = history.get("items")
    return Vulnerability(
        id=str(base.get("id") or ""),
        type=kind,
        project_id=str(base.get("projectId") or ""),
        path=path or base.get("path") or "",
        severity=base.get("currentSeverity") or "UNKNOWN",
        priority=base.get("currentPriority") or "UNKNOWN",
        state=base.get("currentState") or "",
        start_line=_int(base.get("vulnerableStartLine")),
        end_line=_int(base.get("vulnerableEndLine")),
        metadata=metadata,
        details=details,
        language=language or base.get("language") or "",
        created_at=base.get("createdAt"),
        updated_at=base.get("updateAt"),
        time_to_fix=base.get("timeToFix"),
        contextual_explanation=base.get("contextualExplanation"),
        history=list(history or []),
        code_snippets=list(base.get("codeSnippets") or []),
    )


def _sast_iac(kind: str, item: Dict[str, Any], details: Details) -> Optional[Vulnerability]:
    base = item.get("base")
    if not base:
        return None
    raw_meta = base.get("vulnerability")
    if not raw_meta:
        return None
    return _build(kind, base, metadata_from_raw(raw_meta), details)


def sast_to_unified(item: Dict[str, Any]) -> Optional[Vulnerability]:
    return _sast_iac("sast", item, SastDetails(data_flow=_data_flow(item.get("dataFlowItems"))))


def iac_to_unified(item: Dict[str, Any]) -> Optional[Vulnerability]:
    return _sast_iac("iac", item, IacDetails())


def sca_to_unified(item: Dict[str, Any]) -> Optional[Vulnerability]:
    base = item.get("base")
    if not base:
        return None
    library = item.get("library") or {}
    meta = item.get("metadata") or {}

    raw_meta = base.get("vulnerability")
    if raw_meta:
        metadata = metadata_from_raw(raw_meta)
    else:
        metadata = VulnerabilityMetadata(
            id=str(meta.get("internalId") or base.get("id") or ""),
            name=meta.get("summary") or "N/A",
            short_description=meta.get("summary") or "",
            description=meta.get("details") or "",
            how_to_prevent=SCA_HOW_TO_PREVENT,
            cwe=[c.get("cweId") for c in (meta.get("cwes") or []) if c.get("cweId")],
            severity=base.get("currentSeverity") or "",
            language=library.get("ecosystem") or "N/A",
            vulnerability_type="sca",
        )

    cvss = item.get("cvssScore")
    details = ScaDetails(
        package_name=library.get("packageName"),
        package_version=library.get("packageVersion"),
        ecosystem=library.get("ecosystem"),
        file_name=library.get("fileName"),
        cvss_score=float(cvss) if cvss is not None else None,
        cve=meta.get("cve"),
        summary=meta.get("summary"),
        severity_gh=meta.get("severityGh"),
        aliases=[a.get("alias") for a in (meta.get("aliases") or []) if a.get("alias")],
        references=[r.get("url") for r in (meta.get("references") or []) if r.get("url")],
        fixed_versions=[p.get("fixed") for p in (meta.get("packages") or []) if p.get("fixed")],
    )
    return _build("sca", base, metadata, details, path=library.get("fileName"), language=library.get("ecosystem"))


_CONVERTERS = {
    "sast": sast_to_unified,
    "iac": iac_to_unified,
    "sca": sca_to_unified,
}


def to_unified(kind: str, item: Dict[str, Any], verbose: bool = False) -> Optional[Vulnerability]:
    """Convert one raw item; None when it lacks a base or (SAST/IaC) metadata."""
    try:
        convert = _CONVERTERS[kind]
    except KeyError:
        raise ValueError(f"Unknown scan type: {kind}") from None
    v = convert(item)
    if v is None and verbose:
        vid = (item.get("base") or {}).get("id")
        log(f"dropping {kind} item {vid}: missing base or vulnerability metadata")
    return v


def unify_all(kind: str, items: Any, verbose: bool = False) -> List[Vulnerability]:
    out: List[Vulnerability] = []
    for item in items or []:
        if not isinstance(item, dict):
            continue
        v = to_unified(kind, item, verbose=verbose)
        if v is not None:
            out.append(v)
    return out
