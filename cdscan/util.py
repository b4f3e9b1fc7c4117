import sys


def log(msg: str, prefix: str = "cdscan") -> None:
    sys.stderr.write(f"[{prefix}] {msg}\n")
    sys.stderr.flush()
