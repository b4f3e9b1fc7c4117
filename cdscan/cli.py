import argparse
import json
from pathlib import Path
from typing import List, Optional

from .api import ApiClient
from .config import Settings, load_settings
from .errors import CdscanError
from .models import SCAN_TYPES, ScanSnapshot
from .orchestrator import ScanOrchestrator
from .state import ScanStateStore
from .util import log


def _settings_from_args(args: argparse.Namespace) -> Settings:
    return load_settings(
        api_key=getattr(args, "api_key", None),
        project_id=getattr(args, "project_id", None),
        region=getattr(args, "region", None),
        api_url=getattr(args, "api_url", None),
        verbose=getattr(args, "verbose", False) or None,
    )


def _filter_severity(snapshot: ScanSnapshot, severities: Optional[List[str]]) -> dict:
    out = snapshot.to_dict()
    if not severities:
        return out
    wanted = {s.upper() for s in severities}
    for kind in SCAN_TYPES:
        out[kind] = [v for v in out[kind] if (v.get("severity") or "").upper() in wanted]
    return out


def run_scan(path: Path, settings: Settings, verbose: bool = False) -> ScanSnapshot:
    store = ScanStateStore(verbose=verbose)

    def notify(level: str, title: str, message: str) -> None:
        log(f"{title}: {message}")

    orchestrator = ScanOrchestrator(
        store,
        api_factory=lambda: ApiClient(settings),
        notifier=notify,
        poll_interval=settings.poll_interval,
        max_attempts=settings.poll_attempts,
        verbose=verbose,
    )
    worker = orchestrator.start_scan(settings.project_id, str(path))
    try:
        while worker.is_alive():
            worker.join(timeout=0.5)
    except KeyboardInterrupt:
        log("Cancelling scan (waiting for the current request to finish)…")
        orchestrator.cancel()
        worker.join()
    return store.snapshot()


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="cdscan", description="Remote SAST/IaC/SCA scan client")
    sub = parser.add_subparsers(dest="command", required=True)

    def add_connection_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("--project-id", help="Backend project ID (default: CYBEDEFEND_PROJECT_ID)")
        p.add_argument("--api-key", help="API key (default: CYBEDEFEND_API_KEY)")
        p.add_argument("--region", choices=["US", "EU", "us", "eu"], help="API region (default: CYBEDEFEND_REGION or US)")
        p.add_argument("--api-url", help="Explicit API base URL (overrides region)")

    p_scan = sub.add_parser("scan", help="Archive, upload and scan a workspace")
    p_scan.add_argument("--path", default=".", help="Path to workspace root")
    p_scan.add_argument("--severity", action="append", help="Only print findings with this severity (repeatable)")
    p_scan.add_argument("--summary", action="store_true", help="Print only the summary, not the findings")
    p_scan.add_argument("--verbose", action="store_true", help="Log progress to stderr")
    add_connection_args(p_scan)

    p_details = sub.add_parser("details", help="Fetch one vulnerability with full details")
    p_details.add_argument("--type", required=True, choices=list(SCAN_TYPES), dest="scan_type")
    p_details.add_argument("--id", required=True, dest="vulnerability_id")
    add_connection_args(p_details)

    args = parser.parse_args(argv)
    settings = _settings_from_args(args)

    if not settings.project_id:
        print(json.dumps({"error": "missing project id: pass --project-id or set CYBEDEFEND_PROJECT_ID"}))
        return 2

    if args.command == "scan":
        target = Path(args.path)
        if not target.is_dir():
            print(json.dumps({"error": f"path does not exist: {target}"}))
            return 2
        snapshot = run_scan(target.resolve(), settings, verbose=settings.verbose)
        result = snapshot.summary() if args.summary else _filter_severity(snapshot, args.severity)
        print(json.dumps(result, indent=2))
        return 1 if snapshot.error else 0

    if args.command == "details":
        try:
            with ApiClient(settings) as api:
                vuln = api.get_vulnerability_details(settings.project_id, args.vulnerability_id, args.scan_type)
        except CdscanError as e:
            print(json.dumps({"error": str(e)}))
            return 1
        if vuln is None:
            print(json.dumps({"error": f"vulnerability not found: {args.vulnerability_id}"}))
            return 1
        print(json.dumps(vuln.to_dict(), indent=2))
        return 0

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
