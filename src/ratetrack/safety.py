from __future__ import annotations
from pathlib import Path
import sys


def _find_git_root(start: Path) -> Path | None:
    cur = start
    for _ in range(200):
        if (cur / ".git").exists():
            return cur
        if cur.parent == cur:
            return None
        cur = cur.parent
    return None


def assert_safe_data_dir(data_dir: Path, allow_repo_data_path: bool) -> None:
    # ratings are personal: refuse a data dir that could get committed
    git_root = _find_git_root(data_dir)
    if git_root and not allow_repo_data_path:
        print("🚫 Refusing to keep ratings inside a git repo.", file=sys.stderr)
        print(f"   data_dir:  {data_dir}", file=sys.stderr)
        print(f"   repo_root: {git_root}", file=sys.stderr)
        print(
            "   Fix: use ~/.config/ratetrack, set RATETRACK_HOME, or pass --allow-repo-data-path",
            file=sys.stderr,
        )
        raise SystemExit(2)
