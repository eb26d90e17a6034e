"""
Turns per-project activity into suggested time entries.

Suggestions are proposals only: hours stay at 0 and nothing is written to the Ledger here.
An existing ledger entry for the same project and day flags a suggestion but never removes it,
since several entries per project per day (separate tasks) are legitimate.
"""
from typing import Dict, Iterable, List
from correlate.models import ActivityBucket
from normalize.models import SuggestedEntry, TimeEntry

TASK_DEVELOPMENT = 'Development'
TASK_CODE_REVIEW = 'Code Review'


def task_for(bucket: ActivityBucket) -> str:
    # commits win over pull requests when a project has both
    return TASK_DEVELOPMENT if bucket.has_commits else TASK_CODE_REVIEW


def commit_notes(bucket: ActivityBucket) -> str:
    return '\n'.join(f"- {c.first_line}" for c in bucket.commits)


def pr_notes(bucket: ActivityBucket) -> str:
    return '\n'.join(f"- PR #{pr.number}: {pr.title}" for pr in bucket.pull_requests)


def synthesize(buckets: Dict[str, ActivityBucket], date_stamp: str) -> List[SuggestedEntry]:
    """One SuggestedEntry per bucket, in bucket order."""
    suggestions: List[SuggestedEntry] = []
    for identity, bucket in buckets.items():
        if not len(bucket):
            continue
        suggestions.append(
            SuggestedEntry(
                date=date_stamp,
                project=identity,
                task=task_for(bucket),
                commit_notes=commit_notes(bucket),
                pr_notes=pr_notes(bucket),
            )
        )
    return suggestions


def flag_logged(suggestions: Iterable[SuggestedEntry], logged: Iterable[TimeEntry]) -> List[SuggestedEntry]:
    """Mark suggestions whose project already has a ledger entry on the same date. Returns the same list."""
    logged_keys = {(e.date, e.project) for e in logged}
    flagged = list(suggestions)
    for s in flagged:
        s.already_logged = (s.date, s.project) in logged_keys
    return flagged


class SuggestionSynthesizer:
    def synthesize(self, buckets: Dict[str, ActivityBucket], date_stamp: str) -> List[SuggestedEntry]:
        return synthesize(buckets, date_stamp)
