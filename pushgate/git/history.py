from __future__ import annotations

import logging
import subprocess
from typing import Callable, List, Optional

from pushgate.git.refs import is_null_sha

logger = logging.getLogger(__name__)

# (old_sha or None for "from the beginning", new_sha) -> commit ids, in git's order
HistoryProvider = Callable[[Optional[str], str], List[str]]


class HistoryError(RuntimeError):
    """Raised when the commit range of a push cannot be listed."""


class GitHistory:
    """
    Lists the commits a push introduces by shelling out to `git rev-list`.

    Hooks run with GIT_DIR set by git itself, so git_dir is only needed when
    running outside a hook.
    """

    def __init__(self, git_dir: Optional[str] = None, git_binary: str = "git", timeout: Optional[float] = None):
        self.git_dir = git_dir
        self.git_binary = git_binary
        self.timeout = timeout

    def command(self, old_sha: Optional[str], new_sha: str) -> List[str]:
        cmd = [self.git_binary]
        if self.git_dir:
            cmd.append(f"--git-dir={self.git_dir}")
        cmd.append("rev-list")
        if old_sha is None or is_null_sha(old_sha):
            cmd.append(new_sha)
        else:
            cmd.append(f"{old_sha}..{new_sha}")
        return cmd

    def list_commits(self, old_sha: Optional[str], new_sha: str) -> List[str]:
        cmd = self.command(old_sha, new_sha)
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as exc:
            raise HistoryError(f"git executable not found: {self.git_binary}") from exc
        except subprocess.TimeoutExpired as exc:
            raise HistoryError(f"timed out listing commits ({' '.join(cmd)})") from exc
        except subprocess.CalledProcessError as exc:
            stderr = (exc.stderr or "").strip()
            stdout = (exc.stdout or "").strip()
            message = stderr or stdout or str(exc)
            raise HistoryError(f"git rev-list failed: {message}") from exc
        commits = [line.strip() for line in proc.stdout.splitlines() if line.strip()]
        logger.debug("%s -> %d commits", " ".join(cmd), len(commits))
        return commits

    def __call__(self, old_sha: Optional[str], new_sha: str) -> List[str]:
        return self.list_commits(old_sha, new_sha)
