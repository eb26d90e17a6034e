"""
Normalization utility helpers.
Small helpers to turn raw GitHub payloads and git log lines into normalize.models entities.
"""
import re
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from normalize.models import Commit, PullRequest, LOCAL_MARKER
from ingest.errors import MalformedRecord

# git@github.com:owner/name.git, ssh://git@github.com/owner/name, https://github.com/owner/name.git
_HOSTED_URL_PATTERN = re.compile(r"github\.com[:/]+(?P<path>[^\s?#]+?)/?$")

LOG_FORMAT = '%H|%s|%aI'


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (with 'Z' or an offset) into an aware UTC datetime."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def first_line(message: Optional[str]) -> str:
    return (message or '').split('\n', 1)[0].strip()


def identity_from_remote_url(url: Optional[str]) -> Optional[str]:
    """Extract owner/name from a hosted origin URL, or None when the URL is not recognised."""
    if not url:
        return None
    match = _HOSTED_URL_PATTERN.search(url.strip())
    if not match:
        return None
    path = match.group('path')
    if path.endswith('.git'):
        path = path[:-4]
    parts = [p for p in path.split('/') if p]
    if len(parts) != 2:
        return None
    return '/'.join(parts)


def local_fallback_identity(path: str) -> str:
    """Directory base name with the local-origin marker."""
    base = path.rstrip('/\\').replace('\\', '/').rsplit('/', 1)[-1]
    return base + LOCAL_MARKER


def nested_object(value: Any, what: str) -> Dict[str, Any]:
    """A nested payload object. Missing means empty; any other non-object is malformed."""
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise MalformedRecord(f"{what} is not an object: {value!r}")
    return value


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ''


def _login(value: Any) -> str:
    if isinstance(value, dict):
        return _text(value.get('login'))
    return ''


def normalize_remote_commit(raw: Dict[str, Any], repository_identity: str) -> Commit:
    """Create a Commit from a REST commit item (GET /repos/{repo}/commits)."""
    if not isinstance(raw, dict):
        raise MalformedRecord(f"commit item is not an object: {raw!r}")
    sha = raw.get('sha')
    body = nested_object(raw.get('commit'), 'commit')
    authored = parse_timestamp(nested_object(body.get('author'), 'commit.author').get('date'))
    if not sha or not isinstance(sha, str) or authored is None:
        raise MalformedRecord(f"commit item missing sha or author date in {repository_identity}")
    return Commit(
        sha=sha,
        message=_text(body.get('message')),
        url=_text(raw.get('html_url')),
        repository_identity=repository_identity,
        authored_at=authored,
    )


def commit_author_login(raw: Dict[str, Any]) -> str:
    """Return the platform login attributed to a REST commit item, or ''."""
    return _login(raw.get('author')) if isinstance(raw, dict) else ''


def pr_author_login(raw: Dict[str, Any]) -> str:
    return _login(raw.get('user')) if isinstance(raw, dict) else ''


def normalize_pr_state(raw: Dict[str, Any]) -> str:
    """Map REST/search state fields onto open/closed/merged."""
    state = _text(raw.get('state')).lower()
    merged_at = raw.get('merged_at') or nested_object(raw.get('pull_request'), 'pull_request').get('merged_at')
    if merged_at or state == 'merged':
        return 'merged'
    if state == 'closed':
        return 'closed'
    return 'open'


def repository_from_api_url(url: Optional[str]) -> Optional[str]:
    """https://api.github.com/repos/owner/name -> owner/name"""
    if not url or '/repos/' not in url:
        return None
    tail = url.split('/repos/', 1)[1].strip('/')
    parts = tail.split('/')
    if len(parts) < 2:
        return None
    return f"{parts[0]}/{parts[1]}"


def normalize_pull_request(raw: Dict[str, Any], repository_identity: Optional[str] = None) -> PullRequest:
    """
    Create a PullRequest from either a /pulls item or a /search/issues item.
    The repository identity is taken from the payload when not supplied.
    """
    if not isinstance(raw, dict):
        raise MalformedRecord(f"pull request item is not an object: {raw!r}")
    repo = repository_identity
    if not repo:
        base_repo = nested_object(nested_object(raw.get('base'), 'base').get('repo'), 'base.repo')
        repo = _text(base_repo.get('full_name')) or repository_from_api_url(_text(raw.get('repository_url')))
    number = raw.get('number')
    created = parse_timestamp(raw.get('created_at'))
    updated = parse_timestamp(raw.get('updated_at')) or created
    if not repo or not isinstance(number, int) or created is None:
        raise MalformedRecord(f"pull request item missing repository, number or created_at: {raw.get('html_url')!r}")
    return PullRequest(
        number=number,
        title=_text(raw.get('title')),
        url=_text(raw.get('html_url')),
        repository_identity=repo,
        state=normalize_pr_state(raw),
        created_at=created,
        updated_at=updated,
    )


def parse_log_line(line: str, repository_identity: str, repo_path: str) -> Commit:
    """
    Parse one `git log --pretty=format:%H|%s|%aI` line.
    The subject may itself contain '|', so only the first and last separators matter.
    """
    parts = line.split('|', 1)
    if len(parts) != 2 or '|' not in parts[1]:
        raise MalformedRecord(f"unexpected log line: {line!r}")
    sha = parts[0].strip()
    subject, raw_date = parts[1].rsplit('|', 1)
    authored = parse_timestamp(raw_date)
    if not re.fullmatch(r"[0-9a-fA-F]{7,64}", sha) or authored is None:
        raise MalformedRecord(f"unexpected log line: {line!r}")
    return Commit(
        sha=sha,
        message=first_line(subject),
        url=f"file://{repo_path}/commit/{sha}",
        repository_identity=repository_identity,
        authored_at=authored,
    )
