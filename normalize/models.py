"""
Unified data models for discovered repositories, activity items and time entries.
"""

from datetime import datetime
from typing import List, Optional, Dict, Any

REMOTE = 'remote'
LOCAL = 'local'

LOCAL_MARKER = ' (local)'

PR_STATES = ('open', 'closed', 'merged')


class RepositoryHandle:
    """
    A discovered unit of source history, either hosted (remote) or on the filesystem (local).

    Remote handles are equal when their identities match. Local handles are also told apart by
    path: two checkouts resolving to the same identity are both collected and share one project key.
    A remote and a local handle for the same owner/name are never equal.
    """

    def __init__(self, identity: str, origin: str, default_branch: Optional[str] = None, local_path: Optional[str] = None):
        if origin not in (REMOTE, LOCAL):
            raise ValueError(f"Unknown repository origin: {origin!r}")
        self.identity = identity
        self.origin = origin
        self.default_branch = default_branch
        self.local_path = local_path

    @property
    def is_local(self) -> bool:
        return self.origin == LOCAL

    @property
    def project_key(self) -> str:
        """Key under which this handle's activity is bucketed."""
        if self.origin == REMOTE or self.identity.endswith(LOCAL_MARKER):
            return self.identity
        return self.identity + LOCAL_MARKER

    def sort_key(self):
        return (self.identity, self.origin, self.local_path or '')

    def _key(self):
        return (self.identity, self.origin, self.local_path if self.origin == LOCAL else None)

    def __eq__(self, other):
        if not isinstance(other, RepositoryHandle):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self):
        return hash(self._key())

    def __repr__(self):
        return f"RepositoryHandle({self.identity!r}, {self.origin!r})"


class Commit:
    """
    A commit authored by the tracked identity. Created once per discovered commit.
    """

    __slots__ = ('sha', 'message', 'url', 'repository_identity', 'authored_at')

    def __init__(self, sha: str, message: str, url: str, repository_identity: str, authored_at: datetime):
        object.__setattr__(self, 'sha', sha)
        object.__setattr__(self, 'message', message)
        object.__setattr__(self, 'url', url)
        object.__setattr__(self, 'repository_identity', repository_identity)
        object.__setattr__(self, 'authored_at', authored_at)

    def __setattr__(self, name, value):
        raise AttributeError(f"Commit is immutable; cannot set {name}")

    @property
    def short_sha(self) -> str:
        return self.sha[:7]

    @property
    def first_line(self) -> str:
        return (self.message or '').split('\n', 1)[0].strip()

    def __repr__(self):
        return f"Commit({self.short_sha!r}, {self.repository_identity!r}, {self.first_line!r})"


class PullRequest:
    """
    Normalized pull request entity.
    """

    def __init__(self, number: int, title: str, url: str, repository_identity: str, state: str, created_at: datetime, updated_at: datetime):
        self.number = number
        self.title = title
        self.url = url
        self.repository_identity = repository_identity
        self.state = state  # open/closed/merged
        self.created_at = created_at
        self.updated_at = updated_at

    def __repr__(self):
        return f"PullRequest({self.repository_identity!r}, #{self.number}, {self.state!r})"


LEDGER_COLUMNS = ('date', 'project', 'task', 'hours', 'description', 'commit_notes', 'pr_notes')


class TimeEntry:
    """
    A time-log record as stored by the Ledger (7 ordered fields).
    """

    def __init__(self, date: str, project: str, task: str, hours: float = 0.0, description: str = '', commit_notes: str = '', pr_notes: str = ''):
        self.date = date  # YYYY-MM-DD
        self.project = project
        self.task = task
        self.hours = float(hours or 0.0)
        self.description = description or ''
        self.commit_notes = commit_notes or ''
        self.pr_notes = pr_notes or ''

    def to_row(self) -> List[Any]:
        return [self.date, self.project, self.task, self.hours, self.description, self.commit_notes, self.pr_notes]

    def to_dict(self) -> Dict[str, Any]:
        return dict(zip(LEDGER_COLUMNS, self.to_row()))

    @classmethod
    def from_row(cls, row: List[Any]) -> 'TimeEntry':
        padded = list(row) + [''] * (len(LEDGER_COLUMNS) - len(row))
        return cls(*padded[:len(LEDGER_COLUMNS)])

    def __eq__(self, other):
        if not isinstance(other, TimeEntry):
            return NotImplemented
        return self.to_row() == other.to_row()

    def __repr__(self):
        return f"{type(self).__name__}({self.date!r}, {self.project!r}, {self.task!r}, hours={self.hours})"


class LoggedEntry(TimeEntry):
    """An entry already committed to the Ledger."""


class SuggestedEntry(TimeEntry):
    """
    A proposed entry built from activity. Hours stay at 0 until a human fills them in.

    already_logged is display-only: it is set when the Ledger already holds an entry
    for the same project and date.
    """

    def __init__(self, date: str, project: str, task: str, commit_notes: str = '', pr_notes: str = ''):
        super().__init__(date, project, task, 0.0, '', commit_notes, pr_notes)
        self.already_logged = False

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['already_logged'] = self.already_logged
        return data


class CollectionResult:
    """
    Outcome of collecting one repository handle: either items or the SourceUnavailable error.
    """

    def __init__(self, handle: Optional[RepositoryHandle], items: Optional[List[Any]] = None, error: Optional[Exception] = None):
        self.handle = handle
        self.items = items or []
        self.error = error

    @property
    def ok(self) -> bool:
        return self.error is None

    def __repr__(self):
        status = 'ok' if self.ok else f"error={self.error}"
        return f"CollectionResult({self.handle!r}, items={len(self.items)}, {status})"
