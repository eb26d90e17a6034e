"""
Repository discovery across the hosting API (owned + recently active) and local filesystem roots.
"""
import logging
from typing import Optional, Sequence, Set
from ingest.errors import SourceUnavailable, DiscoveryFailure
from ingest.github import GitHubClient
from ingest.local_git import GitRunner, SkipPredicate, find_local_repositories, resolve_local_identity, make_skip_predicate, VCS_DIR
from normalize.models import RepositoryHandle, REMOTE, LOCAL

log = logging.getLogger(__name__)


class RepositoryDiscoverer:
    """Enumerates candidate repository handles for one identity."""

    def __init__(self, github: Optional[GitHubClient], runner: Optional[GitRunner] = None, skip: Optional[SkipPredicate] = None, vcs_dir: str = VCS_DIR):
        self.github = github
        self.runner = runner or GitRunner()
        self.skip = skip or make_skip_predicate()
        self.vcs_dir = vcs_dir

    def discover_remote(self, login: str) -> Set[RepositoryHandle]:
        """
        Union of owned repositories and repositories from the public activity feed, deduplicated by identity.

        A failing feed falls back to owned-only (and vice versa); only when both fail is DiscoveryFailure raised.
        """
        if self.github is None:
            raise DiscoveryFailure("remote discovery requested without a GitHub client")
        handles = {}
        failures = []

        try:
            for repo in self.github.list_owned_repositories():
                name = repo.get('full_name')
                if name:
                    handles[name] = RepositoryHandle(name, REMOTE, default_branch=repo.get('default_branch'))
        except SourceUnavailable as ex:
            log.warning("owned repository listing failed: %s", ex)
            failures.append(ex)

        try:
            for name in self.github.list_event_repositories(login):
                if name not in handles:
                    handles[name] = RepositoryHandle(name, REMOTE)
        except SourceUnavailable as ex:
            log.info("activity feed unavailable, using owned repositories only: %s", ex)
            failures.append(ex)

        if len(failures) == 2:
            raise DiscoveryFailure(f"all remote discovery sources failed: {'; '.join(str(f) for f in failures)}")
        log.debug("discovered %d remote repositories", len(handles))
        return set(handles.values())

    def discover_local(self, roots: Sequence[str]) -> Set[RepositoryHandle]:
        """
        One handle per repository boundary found under the given roots.

        Checkouts that resolve to the same identity each get a handle; their activity meets under one project key.
        """
        handles = set()
        for path in find_local_repositories(roots, skip=self.skip, vcs_dir=self.vcs_dir):
            identity = resolve_local_identity(path, self.runner)
            handles.add(RepositoryHandle(identity, LOCAL, local_path=path))
        log.debug("discovered %d local repositories", len(handles))
        return handles
