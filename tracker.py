"""
Run orchestration: discover -> collect -> aggregate -> synthesize, plus ledger-backed summaries.
"""
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional
from ingest.collectors import CommitCollector, PullRequestCollector, end_of_day_utc
from ingest.discovery import RepositoryDiscoverer
from ingest.errors import DiscoveryFailure, FatalConfiguration
from ingest.github import GitHubClient
from ingest.local_git import GitRunner, make_skip_predicate
from correlate.aggregator import ActivityAggregator, flatten_results
from correlate.models import ActivityBucket
from correlate.suggest import SuggestionSynthesizer, flag_logged
from normalize.models import Commit, PullRequest, LoggedEntry, SuggestedEntry, CollectionResult, TimeEntry
from storage.cache import Cache
from storage.ledger import Ledger, open_ledger

log = logging.getLogger(__name__)

# run states
IDLE = 'idle'
DISCOVERING = 'discovering'
COLLECTING = 'collecting'
AGGREGATING = 'aggregating'
SYNTHESIZED = 'synthesized'


class DailySummary:
    def __init__(
        self,
        date: str,
        commits: List[Commit],
        pull_requests: List[PullRequest],
        buckets: Dict[str, ActivityBucket],
        existing_entries: List[LoggedEntry],
        suggestions: List[SuggestedEntry],
        failures: List[CollectionResult],
    ):
        self.date = date
        self.commits = commits
        self.pull_requests = pull_requests
        self.buckets = buckets
        self.existing_entries = existing_entries
        self.suggestions = suggestions
        self.failures = failures


def week_bounds(day: date):
    """Sunday..Saturday week containing `day`."""
    start = day - timedelta(days=(day.weekday() + 1) % 7)
    return start, start + timedelta(days=6)


def week_totals(ledger: Ledger, day: Optional[date] = None) -> Dict[str, float]:
    """Logged hours per project for the week containing `day`."""
    start, end = week_bounds(day or date.today())
    totals: Dict[str, float] = {}
    for entry in ledger.read_range(start, end):
        totals[entry.project] = totals.get(entry.project, 0.0) + entry.hours
    return totals


class ActivityTracker:
    """
    Wires discovery, collection, aggregation and synthesis for one identity.

    `state` follows idle -> discovering -> collecting -> aggregating -> synthesized for each run.
    """

    def __init__(
        self,
        login: str,
        discoverer: RepositoryDiscoverer,
        commit_collector: CommitCollector,
        pr_collector: Optional[PullRequestCollector],
        ledger: Ledger,
        roots: Optional[List[str]] = None,
        include_remote: bool = True,
        include_local: bool = True,
        pr_days: int = 1,
        max_workers: int = 8,
        call_timeout: Optional[float] = None,
        aggregator: Optional[ActivityAggregator] = None,
        synthesizer: Optional[SuggestionSynthesizer] = None,
    ):
        self.login = login
        self.discoverer = discoverer
        self.commit_collector = commit_collector
        self.pr_collector = pr_collector
        self.ledger = ledger
        self.roots = roots or []
        self.include_remote = include_remote
        self.include_local = include_local
        self.pr_days = pr_days
        self.max_workers = max_workers
        self.call_timeout = call_timeout
        self.aggregator = aggregator or ActivityAggregator()
        self.synthesizer = synthesizer or SuggestionSynthesizer()
        self.state = IDLE

    def discover(self):
        """Union of remote and local handles. Remote failure is tolerated while local discovery found something."""
        handles = set()
        remote_error = None
        if self.include_remote:
            try:
                handles |= self.discoverer.discover_remote(self.login)
            except DiscoveryFailure as ex:
                remote_error = ex
                log.warning("remote discovery failed: %s", ex)
        if self.include_local:
            handles |= self.discoverer.discover_local(self.roots)
        if remote_error is not None and not handles:
            raise remote_error
        return handles

    def daily_summary(self, day: Optional[date] = None, now: Optional[datetime] = None) -> DailySummary:
        """
        Activity for one day. Commits are bounded to that local day; the pull request window
        ends at `now`, which defaults to the end of the day (or the current time for today).
        """
        day = day or date.today()
        date_stamp = day.isoformat()
        now = now or min(datetime.now(timezone.utc), end_of_day_utc(day))

        self.state = DISCOVERING
        handles = self.discover()

        self.state = COLLECTING
        commit_results = self.commit_collector.collect_all(handles, day, self.max_workers, self.call_timeout, until=day)
        pr_results: List[CollectionResult] = []
        if self.pr_collector is not None and self.include_remote:
            pr_results = self.pr_collector.collect_results(self.pr_days, handles, now=now, max_workers=self.max_workers, call_timeout=self.call_timeout)
        commits, commit_failures = flatten_results(commit_results)
        prs, pr_failures = flatten_results(pr_results)

        self.state = AGGREGATING
        buckets = self.aggregator.aggregate(commits, prs)

        existing = self.ledger.read_day(day)
        suggestions = flag_logged(self.synthesizer.synthesize(buckets, date_stamp), existing)
        self.state = SYNTHESIZED
        log.info("%d commits, %d pull requests, %d suggestions, %d failed sources", len(commits), len(prs), len(suggestions), len(commit_failures) + len(pr_failures))
        return DailySummary(date_stamp, commits, prs, buckets, existing, suggestions, commit_failures + pr_failures)

    def week_summary(self, day: Optional[date] = None) -> Dict[str, float]:
        return week_totals(self.ledger, day)

    def add_entry(self, entry: TimeEntry):
        self.ledger.append(entry)

    def accept(self, suggestion: SuggestedEntry, hours: float, description: str = '') -> LoggedEntry:
        """Turn a suggestion into a logged entry with human-supplied hours and append it."""
        if hours is None or float(hours) <= 0:
            raise ValueError("hours must be greater than zero")
        entry = LoggedEntry(
            suggestion.date, suggestion.project, suggestion.task, float(hours), description, suggestion.commit_notes, suggestion.pr_notes
        )
        self.add_entry(entry)
        return entry


def build_tracker(settings, session=None, ledger: Optional[Ledger] = None, runner: Optional[GitRunner] = None) -> ActivityTracker:
    """Build a tracker from Settings. Resolves the identity up front; failures there are fatal."""
    cache = Cache(settings.cache_path, ttl_seconds=settings.cache_ttl) if settings.cache_path else None
    github = GitHubClient(settings.github_token, base_url=settings.api_base_url, cache=cache, session=session, timeout=settings.call_timeout)
    if not settings.include_remote and settings.local_author:
        # local-only runs can attribute commits without asking the API who we are
        login = settings.local_author
    else:
        login = github.get_authenticated_login()
    if not login:
        raise FatalConfiguration("No identity resolved")
    runner = runner or GitRunner(timeout=settings.call_timeout)
    discoverer = RepositoryDiscoverer(github, runner=runner, skip=make_skip_predicate(settings.skip_dirs))
    return ActivityTracker(
        login=login,
        discoverer=discoverer,
        commit_collector=CommitCollector(github, login, runner=runner, local_author=settings.local_author, fallback_branch=settings.fallback_branch),
        pr_collector=PullRequestCollector(github, login, strategy=settings.pr_strategy),
        ledger=ledger or open_ledger(settings.ledger_path),
        roots=settings.roots,
        include_remote=settings.include_remote,
        include_local=settings.include_local,
        pr_days=settings.pr_days,
        max_workers=settings.max_workers,
        call_timeout=settings.call_timeout,
    )
