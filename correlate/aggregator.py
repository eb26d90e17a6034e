"""
Regroups collected commits and pull requests into one ActivityBucket per project.
Runs on a single thread after collection finishes, so the bucket map has exactly one writer.
"""
from typing import Dict, Iterable, List, Tuple
from normalize.models import Commit, PullRequest, CollectionResult
from correlate.models import ActivityBucket


def _bucket_for(buckets: Dict[str, ActivityBucket], identity: str) -> ActivityBucket:
    bucket = buckets.get(identity)
    if bucket is None:
        bucket = ActivityBucket(identity)
        buckets[identity] = bucket
    return bucket


def aggregate(commits: Iterable[Commit], pull_requests: Iterable[PullRequest]) -> Dict[str, ActivityBucket]:
    """
    Map repository identity -> ActivityBucket. Commits are placed first, then pull requests,
    each in input order; buckets appear in first-contribution order.
    """
    buckets: Dict[str, ActivityBucket] = {}
    for commit in commits:
        _bucket_for(buckets, commit.repository_identity).add_commit(commit)
    for pr in pull_requests:
        _bucket_for(buckets, pr.repository_identity).add_pull_request(pr)
    return buckets


def flatten_results(results: Iterable[CollectionResult]) -> Tuple[List, List[CollectionResult]]:
    """Split collection results into (all items in result order, failed results)."""
    items: List = []
    failures: List[CollectionResult] = []
    for res in results:
        if res.ok:
            items.extend(res.items)
        else:
            failures.append(res)
    return items, failures


class ActivityAggregator:
    """Object wrapper so the orchestrator can swap aggregation strategies in tests."""

    def aggregate(self, commits: Iterable[Commit], pull_requests: Iterable[PullRequest]) -> Dict[str, ActivityBucket]:
        return aggregate(commits, pull_requests)
