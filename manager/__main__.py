import argparse
import os

import uvicorn

from cdscan.config import load_settings


def main(argv=None):
    settings = load_settings()
    parser = argparse.ArgumentParser(description="Serve the cdscan manager API over one workspace state store")
    parser.add_argument("--host", default=settings.host, help="Bind address (default: HOST or 127.0.0.1)")
    parser.add_argument("--port", type=int, default=settings.port, help="Bind port (default: PORT or 8008)")
    parser.add_argument("--workspace", help="Workspace scanned when a request names no path (sets CDSCAN_WORKSPACE)")
    parser.add_argument("--reload", action="store_true", default=False)
    args = parser.parse_args(argv)

    if args.workspace:
        os.environ["CDSCAN_WORKSPACE"] = args.workspace
    uvicorn.run("manager.app:app", host=args.host, port=args.port, reload=args.reload)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
