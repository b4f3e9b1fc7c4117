import re
import subprocess as sp
from pathlib import Path
from typing import Optional

from .util import log


DETACHED_PREFIX = "HEAD ("
_SHA_RE = re.compile(r"^[0-9a-f]{40}$")


def detached_label(sha: str) -> str:
    return f"{DETACHED_PREFIX}{sha})"


def is_detached_label(branch: Optional[str]) -> bool:
    return bool(branch) and branch.startswith(DETACHED_PREFIX)


def is_git_repository(root) -> bool:
    """True when root holds a .git directory or a .git pointer file."""
    try:
        return (Path(root) / ".git").exists()
    except OSError:
        return False


def _git_dir(root: Path) -> Optional[Path]:
    dot_git = root / ".git"
    if dot_git.is_dir():
        return dot_git
    if dot_git.is_file():
        # worktrees and submodules: .git is a "gitdir: <path>" pointer
        content = dot_git.read_text(encoding="utf-8").strip()
        if not content.startswith("gitdir:"):
            return None
        target = Path(content[len("gitdir:"):].strip())
        return target if target.is_absolute() else (root / target)
    return None


def read_branch_from_head(root) -> Optional[str]:
    """Parse HEAD directly; no subprocess."""
    try:
        git_dir = _git_dir(Path(root))
        if git_dir is None:
            return None
        head = git_dir / "HEAD"
        if not head.exists():
            return None
        content = head.read_text(encoding="utf-8").strip()
    except (OSError, UnicodeDecodeError):
        return None

    if content.startswith("ref: refs/heads/"):
        return content[len("ref: refs/heads/"):] or None
    if content.startswith("ref:"):
        ref = content[len("ref:"):].strip()
        return ref.rsplit("/", 1)[-1] or None
    if _SHA_RE.match(content):
        return detached_label(content[:8])
    return None


def read_branch_from_git(root) -> Optional[str]:
    try:
        out = sp.run(["git", "-C", str(root), "rev-parse", "--abbrev-ref", "HEAD"],
                     capture_output=True, text=True, timeout=10)
        if out.returncode != 0:
            return None
        branch = out.stdout.strip()
        if branch == "HEAD":
            sha = sp.run(["git", "-C", str(root), "rev-parse", "--short", "HEAD"],
                         capture_output=True, text=True, timeout=10).stdout.strip()
            return detached_label(sha) if sha else branch
        return branch or None
    except (OSError, sp.SubprocessError):
        return None


def current_branch(root, verbose: bool = False) -> Optional[str]:
    """Current branch name, a detached label like ``HEAD (a1b2c3d4)``, or None."""
    branch = read_branch_from_head(root)
    if branch:
        if verbose:
            log(f"Git branch detected from HEAD file: {branch}")
        return branch
    if not is_git_repository(root):
        if verbose:
            log(f"Not a Git repository: {root}")
        return None
    branch = read_branch_from_git(root)
    if branch:
        if verbose:
            log(f"Git branch detected from git command: {branch}")
        return branch
    if verbose:
        log(f"Could not detect Git branch for workspace: {root}")
    return None


def branch_for_api(root, verbose: bool = False) -> Optional[str]:
    """Branch safe to send to the backend; detached labels and errors give None."""
    try:
        branch = current_branch(root, verbose=verbose)
    except Exception as e:
        if verbose:
            log(f"Error detecting Git branch: {e}")
        return None
    if is_detached_label(branch):
        if verbose:
            log("Skipping detached HEAD state for branch association")
        return None
    return branch
