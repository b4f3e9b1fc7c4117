import os
import tempfile
import zipfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, Optional, Tuple

from .cancel import CancelToken


# Directory names to skip anywhere in the tree
EXCLUDED_DIRS = frozenset({
    "node_modules", ".git", "dist", "build", "out", "target", ".gradle",
})


def iter_workspace_files(root: Path, excluded: Iterable[str] = EXCLUDED_DIRS) -> Iterator[Tuple[Path, str]]:
    """Yield (path, archive name) for every regular file under root outside excluded dirs.

    Archive names are root-relative and always use '/' as separator.
    """
    excluded = set(excluded)
    for cur, dirs, files in os.walk(root):
        dirs[:] = sorted(d for d in dirs if d not in excluded)
        rel_dir = Path(cur).relative_to(root)
        for name in sorted(files):
            p = Path(cur) / name
            if not p.is_file():
                continue
            yield p, (rel_dir / name).as_posix()


def create_workspace_zip(workspace_root, cancel_token: Optional[CancelToken] = None,
                         excluded: Iterable[str] = EXCLUDED_DIRS) -> Path:
    """Zip the workspace into a temp file and return its path.

    The caller owns the returned file. On cancellation or I/O error the partial
    archive is removed and the error propagates.
    """
    root = Path(workspace_root)
    if not root.is_dir():
        raise FileNotFoundError(f"workspace root does not exist: {root}")

    fd, tmp = tempfile.mkstemp(prefix="cdscan-", suffix=".zip")
    os.close(fd)
    zip_path = Path(tmp)
    try:
        with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for p, arcname in iter_workspace_files(root, excluded):
                if cancel_token is not None:
                    cancel_token.raise_if_cancelled()
                zf.write(p, arcname)
    except BaseException:
        zip_path.unlink(missing_ok=True)
        raise
    return zip_path


@contextmanager
def workspace_zip(workspace_root, cancel_token: Optional[CancelToken] = None,
                  excluded: Iterable[str] = EXCLUDED_DIRS) -> Iterator[Path]:
    zip_path = create_workspace_zip(workspace_root, cancel_token, excluded)
    try:
        yield zip_path
    finally:
        zip_path.unlink(missing_ok=True)
