"""
Per-project activity accumulator produced by one aggregation run.
"""

from typing import List
from normalize.models import Commit, PullRequest


class ActivityBucket:
    """
    Commits and pull requests for one repository identity, kept in insertion (discovery) order.
    """

    def __init__(self, repository_identity: str):
        self.repository_identity = repository_identity
        self.commits: List[Commit] = []
        self.pull_requests: List[PullRequest] = []

    def add_commit(self, commit: Commit):
        self.commits.append(commit)

    def add_pull_request(self, pr: PullRequest):
        self.pull_requests.append(pr)

    @property
    def has_commits(self) -> bool:
        return bool(self.commits)

    def __len__(self):
        return len(self.commits) + len(self.pull_requests)

    def __repr__(self):
        return f"ActivityBucket({self.repository_identity!r}, commits={len(self.commits)}, pull_requests={len(self.pull_requests)})"
