"""
Per-repository collection of commits and pull requests for the tracked identity.

Every per-handle call yields a CollectionResult: items on success, the SourceUnavailable error otherwise.
One unreachable repository never stops the others.
"""
import math
import logging
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import date, datetime, time as dtime, timedelta, timezone
from typing import Callable, Iterable, List, Optional
from ingest.errors import SourceUnavailable, MalformedRecord
from ingest.github import GitHubClient
from ingest.local_git import GitRunner, read_local_log
from normalize.models import RepositoryHandle, Commit, PullRequest, CollectionResult
from normalize.util import normalize_remote_commit, normalize_pull_request, commit_author_login, pr_author_login, parse_log_line

log = logging.getLogger(__name__)

FALLBACK_BRANCH = 'main'

PR_STRATEGIES = ('auto', 'search', 'per-repo')


def local_midnight_utc(day: date) -> datetime:
    return datetime.combine(day, dtime.min).astimezone().astimezone(timezone.utc)


def end_of_day_utc(day: date) -> datetime:
    """Next local midnight after `day`, in UTC. Exclusive upper bound for that day's activity."""
    return local_midnight_utc(day + timedelta(days=1))


def since_timestamp(since: date) -> str:
    """Local midnight of `since` as a UTC ISO-8601 string."""
    return local_midnight_utc(since).strftime('%Y-%m-%dT%H:%M:%SZ')


def until_timestamp(until: date) -> str:
    return end_of_day_utc(until).strftime('%Y-%m-%dT%H:%M:%SZ')


def ordered_handles(handles: Iterable[RepositoryHandle]) -> List[RepositoryHandle]:
    return sorted(handles, key=lambda h: h.sort_key())


def as_source_error(source: str, ex: Exception) -> SourceUnavailable:
    if isinstance(ex, SourceUnavailable):
        return ex
    return SourceUnavailable(source, f"{type(ex).__name__}: {ex}")


def fan_out(handles: List[RepositoryHandle], fn: Callable[[RepositoryHandle], List], max_workers: int = 8, call_timeout: Optional[float] = None) -> List[CollectionResult]:
    """
    Run fn(handle) for every handle on a bounded thread pool.

    Results come back in input order. Calls that raise, or that are still running once
    ceil(N / workers) * call_timeout has elapsed, become SourceUnavailable error results.
    """
    if not handles:
        return []
    workers = max(1, min(max_workers, len(handles)))
    deadline = math.ceil(len(handles) / workers) * call_timeout if call_timeout else None
    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix='collect')
    try:
        futures = [executor.submit(fn, h) for h in handles]
        wait(futures, timeout=deadline)
        results = []
        for handle, fut in zip(handles, futures):
            if not fut.done():
                fut.cancel()
                results.append(CollectionResult(handle, error=SourceUnavailable(handle.identity, 'collection timed out')))
                continue
            try:
                results.append(CollectionResult(handle, items=fut.result()))
            except Exception as ex:
                results.append(CollectionResult(handle, error=as_source_error(handle.identity, ex)))
        return results
    finally:
        # hung workers are abandoned rather than joined
        executor.shutdown(wait=False, cancel_futures=True)


class CommitCollector:
    """Collects the identity's commits from one remote or local repository handle."""

    def __init__(self, github: Optional[GitHubClient], login: str, runner: Optional[GitRunner] = None, local_author: Optional[str] = None, fallback_branch: str = FALLBACK_BRANCH):
        self.github = github
        self.login = login
        self.runner = runner or GitRunner()
        self.local_author = local_author or login
        self.fallback_branch = fallback_branch

    def collect(self, handle: RepositoryHandle, since: date, until: Optional[date] = None) -> List[Commit]:
        """Commits from `since` through the end of `until` (open-ended when None); an unreachable repository yields an empty list."""
        return self.collect_result(handle, since, until).items

    def collect_result(self, handle: RepositoryHandle, since: date, until: Optional[date] = None) -> CollectionResult:
        try:
            return CollectionResult(handle, items=self._collect(handle, since, until))
        except Exception as ex:
            error = as_source_error(handle.identity, ex)
            log.warning("skipping %s: %s", handle.identity, error.reason)
            return CollectionResult(handle, error=error)

    def collect_all(self, handles: Iterable[RepositoryHandle], since: date, max_workers: int = 8, call_timeout: Optional[float] = None, until: Optional[date] = None) -> List[CollectionResult]:
        """
        Collect every handle concurrently. Several local clones of one repository share a project key,
        so a commit already seen under that key is dropped from later handles.
        """
        results = fan_out(ordered_handles(handles), lambda h: self._collect(h, since, until), max_workers, call_timeout)
        seen = set()
        for res in results:
            if not res.ok:
                log.warning("skipping %s: %s", res.handle.identity, res.error)
                continue
            unique = []
            for commit in res.items:
                key = (commit.repository_identity, commit.sha)
                if key not in seen:
                    seen.add(key)
                    unique.append(commit)
            res.items = unique
        return results

    def _collect(self, handle: RepositoryHandle, since: date, until: Optional[date] = None) -> List[Commit]:
        if handle.is_local:
            commits = self._collect_local(handle, since, until)
        else:
            commits = self._collect_remote(handle, since, until)
        if until is None:
            return commits
        # neither the API nor git log treats the upper bound as exact
        end = end_of_day_utc(until)
        return [c for c in commits if c.authored_at < end]

    def _resolve_branch(self, handle: RepositoryHandle) -> str:
        if handle.default_branch:
            return handle.default_branch
        try:
            return self.github.get_default_branch(handle.identity) or self.fallback_branch
        except SourceUnavailable as ex:
            log.debug("default branch of %s unknown (%s); using %s", handle.identity, ex.reason, self.fallback_branch)
            return self.fallback_branch

    def _collect_remote(self, handle: RepositoryHandle, since: date, until: Optional[date] = None) -> List[Commit]:
        if self.github is None:
            raise SourceUnavailable(handle.identity, 'no GitHub client configured')
        branch = self._resolve_branch(handle)
        until_iso = until_timestamp(until) if until else None
        raw_items = self.github.list_commits(handle.identity, branch, since_timestamp(since), author=self.login, until_iso=until_iso)
        commits: List[Commit] = []
        for raw in raw_items:
            # the server-side author filter also matches co-authors and email aliases
            if commit_author_login(raw) != self.login:
                continue
            try:
                commits.append(normalize_remote_commit(raw, handle.project_key))
            except MalformedRecord as ex:
                log.debug("skipping malformed commit in %s: %s", handle.identity, ex)
        return commits

    def _collect_local(self, handle: RepositoryHandle, since: date, until: Optional[date] = None) -> List[Commit]:
        if not handle.local_path:
            raise SourceUnavailable(handle.identity, 'local handle without a path')
        output = read_local_log(handle.local_path, since, self.local_author, self.runner, until=until)
        commits: List[Commit] = []
        for line in output.splitlines():
            if not line.strip():
                continue
            try:
                commits.append(parse_log_line(line, handle.project_key, handle.local_path))
            except MalformedRecord as ex:
                log.debug("skipping malformed log line in %s: %s", handle.local_path, ex)
        return commits


class PullRequestCollector:
    """
    Collects the identity's pull requests within a recency window.

    Strategy 'search' uses one cross-repository search; 'per-repo' lists each remote handle;
    'auto' tries search and falls back to per-repo listing when search is unavailable.
    """

    def __init__(self, github: GitHubClient, login: str, strategy: str = 'auto'):
        if strategy not in PR_STRATEGIES:
            raise ValueError(f"Unknown pull request strategy: {strategy!r}")
        self.github = github
        self.login = login
        self.strategy = strategy

    def collect(self, since_days: int, handles: Optional[Iterable[RepositoryHandle]] = None, now: Optional[datetime] = None, max_workers: int = 8, call_timeout: Optional[float] = None) -> List[PullRequest]:
        return [pr for res in self.collect_results(since_days, handles, now, max_workers, call_timeout) for pr in res.items]

    def collect_results(self, since_days: int, handles: Optional[Iterable[RepositoryHandle]] = None, now: Optional[datetime] = None, max_workers: int = 8, call_timeout: Optional[float] = None) -> List[CollectionResult]:
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=since_days)
        if self.strategy in ('auto', 'search'):
            try:
                return [CollectionResult(None, items=self._via_search(cutoff, now))]
            except Exception as ex:
                error = as_source_error('search/issues', ex)
                if self.strategy == 'search':
                    log.warning("pull request search failed: %s", error)
                    return [CollectionResult(None, error=error)]
                log.info("pull request search failed (%s); listing per repository", error)
        remote = [h for h in ordered_handles(handles or []) if not h.is_local]
        results = fan_out(remote, lambda h: self._for_repository(h, cutoff, now), max_workers, call_timeout)
        for res in results:
            if not res.ok:
                log.debug("no pull requests from %s: %s", res.handle.identity, res.error)
        return results

    def _keep(self, pr: PullRequest, cutoff: datetime, now: datetime) -> bool:
        return cutoff < pr.created_at <= now or cutoff < pr.updated_at <= now

    def _normalize_all(self, raw_items, cutoff: datetime, now: datetime, repository_identity: Optional[str] = None) -> List[PullRequest]:
        prs: List[PullRequest] = []
        for raw in raw_items:
            try:
                pr = normalize_pull_request(raw, repository_identity)
            except MalformedRecord as ex:
                log.debug("skipping malformed pull request: %s", ex)
                continue
            # list endpoints ignore the window; never trust them
            if self._keep(pr, cutoff, now):
                prs.append(pr)
        return prs

    def _via_search(self, cutoff: datetime, now: datetime) -> List[PullRequest]:
        raw_items = self.github.search_pull_requests(self.login, cutoff.date())
        mine = [raw for raw in raw_items if pr_author_login(raw) in ('', self.login)]
        return self._normalize_all(mine, cutoff, now)

    def _for_repository(self, handle: RepositoryHandle, cutoff: datetime, now: datetime) -> List[PullRequest]:
        raw_items = self.github.list_pull_requests(handle.identity)
        mine = [raw for raw in raw_items if pr_author_login(raw) == self.login]
        return self._normalize_all(mine, cutoff, now, handle.project_key)
