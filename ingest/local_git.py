"""
Local repository access: a git subprocess runner and the filesystem walker that finds repositories.
"""
import os
import logging
import subprocess
from datetime import date
from typing import Callable, Iterable, List, Optional, Sequence
from ingest.errors import SourceUnavailable
from normalize.util import identity_from_remote_url, local_fallback_identity, LOG_FORMAT

log = logging.getLogger(__name__)

VCS_DIR = '.git'

DEFAULT_SKIP_DIRS = ('node_modules', 'vendor', '.cache')

DEFAULT_ROOT_NAMES = ('projects', 'code', 'dev', 'src', 'work', 'repos')

SkipPredicate = Callable[[str, str], bool]


def default_roots(home: Optional[str] = None) -> List[str]:
    home = home or os.path.expanduser('~')
    return [os.path.join(home, name) for name in DEFAULT_ROOT_NAMES]


def make_skip_predicate(names: Iterable[str] = DEFAULT_SKIP_DIRS) -> SkipPredicate:
    """Build a walker predicate that skips directories by exact base name."""
    skip_names = frozenset(names)

    def _skip(name: str, path: str) -> bool:
        return name in skip_names

    return _skip


def find_local_repositories(roots: Sequence[str], skip: Optional[SkipPredicate] = None, vcs_dir: str = VCS_DIR) -> List[str]:
    """
    Walk each root and return repository paths in sorted, deduplicated order.

    A directory holding `vcs_dir` is a repository boundary: it is recorded and nothing below it is visited.
    Skipped directories are pruned before they are examined. Missing roots are ignored.
    """
    skip = skip or make_skip_predicate()
    found: List[str] = []
    seen = set()
    for root in roots:
        if not root or not os.path.isdir(root):
            log.debug("skipping missing root %s", root)
            continue
        for dirpath, dirnames, _ in os.walk(os.path.abspath(root), topdown=True, onerror=lambda err: log.debug("walk error: %s", err)):
            if vcs_dir in dirnames:
                real = os.path.realpath(dirpath)
                if real not in seen:
                    seen.add(real)
                    found.append(dirpath)
                dirnames[:] = []
                continue
            dirnames[:] = sorted(d for d in dirnames if not skip(d, os.path.join(dirpath, d)))
    return found


class GitRunner:
    """Runs git commands with a per-call timeout, raising SourceUnavailable on any failure."""

    def __init__(self, executable: str = 'git', timeout: float = 30.0):
        self.executable = executable
        self.timeout = timeout

    def run(self, args: List[str], cwd: str) -> str:
        cmd = [self.executable] + list(args)
        try:
            proc = subprocess.run(cmd, cwd=cwd, capture_output=True, text=True, encoding='utf-8', errors='replace', timeout=self.timeout)
        except subprocess.TimeoutExpired:
            raise SourceUnavailable(cwd, f"git {args[0]} timed out after {self.timeout}s")
        except OSError as ex:
            raise SourceUnavailable(cwd, f"could not run git: {ex}")
        if proc.returncode != 0:
            raise SourceUnavailable(cwd, (proc.stderr or '').strip() or f"git {args[0]} exited with {proc.returncode}")
        return proc.stdout


def read_origin_url(repo_path: str, runner: GitRunner) -> Optional[str]:
    try:
        return runner.run(['remote', 'get-url', 'origin'], cwd=repo_path).strip() or None
    except SourceUnavailable:
        return None


def resolve_local_identity(repo_path: str, runner: GitRunner) -> str:
    """owner/name from a hosted origin, otherwise '<dir name> (local)'."""
    return identity_from_remote_url(read_origin_url(repo_path, runner)) or local_fallback_identity(repo_path)


def read_local_log(repo_path: str, since: date, author: Optional[str], runner: GitRunner, until: Optional[date] = None) -> str:
    """
    Raw `git log` output across all branches, one `sha|subject|date` line per commit.

    Bounds are explicit local times: git reads a bare date as that day at the current time of day.
    """
    args = ['log', '--all', f'--since={since.isoformat()} 00:00:00', f'--pretty=format:{LOG_FORMAT}', '--no-merges']
    if until:
        args.insert(3, f'--until={until.isoformat()} 23:59:59')
    if author:
        args.insert(2, f'--author={author}')
    return runner.run(args, cwd=repo_path)
