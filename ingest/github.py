"""
GitHub REST client used for remote discovery and collection.
Every call goes through storage.cache.rate_limited_get so retries, rate limits and caching are handled in one place.
Failures are raised as ingest.errors types; callers decide whether they are fatal.
"""
import hashlib
import logging
from datetime import date
from typing import List, Dict, Any, Optional
import requests
from storage.cache import rate_limited_get, Cache
from storage.retry import RetryPolicy
from ingest.errors import SourceUnavailable, FatalConfiguration

log = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.github.com"

# the public events feed stops at 300 events (3 pages of 100)
EVENT_PAGES = 3
OWNED_REPO_LIMIT = 100

# TTLs for cached metadata; activity queries are never cached
REPO_LIST_MAX_AGE = 60 * 60
DEFAULT_BRANCH_MAX_AGE = 24 * 60 * 60


def is_empty_body(data: Any) -> bool:
    """True for bodies that mean 'no results': None, '', whitespace, 'null', '[]'."""
    if data is None:
        return True
    if isinstance(data, str):
        return data.strip() in ('', '[]', 'null')
    if isinstance(data, (list, dict)):
        return len(data) == 0
    return False


def as_item_list(data: Any, source: str) -> List[Dict[str, Any]]:
    """Coerce a list-endpoint body into a list of dicts, treating empty encodings as zero results."""
    if is_empty_body(data):
        return []
    if isinstance(data, dict) and isinstance(data.get('items'), list):
        data = data['items']
    if not isinstance(data, list):
        raise SourceUnavailable(source, f"unexpected response shape: {type(data).__name__}")
    return [item for item in data if isinstance(item, dict)]


class GitHubClient:
    """Thin client over the GitHub REST API for the authenticated identity."""

    def __init__(
        self,
        token: str,
        base_url: Optional[str] = None,
        cache: Optional[Cache] = None,
        session=None,
        timeout: float = 30.0,
        policy: Optional[RetryPolicy] = None,
    ):
        self.token = token
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip('/')
        self.cache = cache
        self.session = session or requests.Session()
        self.timeout = timeout
        self.policy = policy
        # cached bodies are per token so two identities never share entries
        self._cache_scope = hashlib.sha256((self.token or "").encode("utf-8")).hexdigest()[:12]
        self.headers = {
            "Authorization": f"Bearer {self.token}" if self.token else "",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None, cache_key: Optional[str] = None, max_age: Optional[float] = None):
        url = f"{self.base_url}/{path.lstrip('/')}"
        res = rate_limited_get(
            url,
            headers=self.headers,
            params=params,
            session=self.session,
            cache=self.cache if cache_key else None,
            cache_key=f"{self._cache_scope}:{cache_key}" if cache_key else None,
            max_age=max_age,
            timeout=self.timeout,
            policy=self.policy,
        )
        return res.get('status', 0), res.get('response')

    def _paginate(self, path: str, params: Optional[Dict[str, Any]] = None, per_page: int = 100, max_pages: int = 10, cache_prefix: Optional[str] = None, max_age: Optional[float] = None) -> List[Dict[str, Any]]:
        """Walk page=1..max_pages until a short page. A failing first page raises; later failures stop quietly."""
        items: List[Dict[str, Any]] = []
        for page in range(1, max_pages + 1):
            page_params = dict(params or {}, page=page, per_page=per_page)
            key = f"{cache_prefix}:page:{page}:per:{per_page}" if cache_prefix else None
            status, data = self._get(path, page_params, cache_key=key, max_age=max_age)
            if status != 200:
                if page == 1:
                    raise SourceUnavailable(path, f"HTTP {status}")
                log.debug("stopping pagination of %s at page %d (HTTP %s)", path, page, status)
                break
            batch = as_item_list(data, path)
            items.extend(batch)
            if len(batch) < per_page:
                break
        return items

    def get_authenticated_login(self) -> str:
        """Return the login of the token owner. Without it nothing can be attributed, so failures are fatal."""
        if not self.token:
            raise FatalConfiguration("No GitHub token configured (use --token, GITHUB_TOKEN or TIMETRACKER_GITHUB_TOKEN)")
        status, data = self._get('user')
        login = data.get('login') if status == 200 and isinstance(data, dict) else None
        if not login:
            raise FatalConfiguration(f"Could not resolve the authenticated GitHub identity (HTTP {status})")
        return login

    def list_owned_repositories(self, limit: int = OWNED_REPO_LIMIT) -> List[Dict[str, Any]]:
        """Repositories owned by the authenticated identity, most recently pushed first."""
        per_page = min(limit, 100)
        repos = self._paginate(
            'user/repos',
            {'affiliation': 'owner', 'sort': 'pushed'},
            per_page=per_page,
            max_pages=max(1, -(-limit // per_page)),
            cache_prefix='github:owned-repos',
            max_age=REPO_LIST_MAX_AGE,
        )
        return repos[:limit]

    def list_event_repositories(self, login: str, max_pages: int = EVENT_PAGES) -> List[str]:
        """owner/name of every repository in the identity's public activity feed, first-seen order."""
        events = self._paginate(f'users/{login}/events/public', per_page=100, max_pages=max_pages)
        names: List[str] = []
        seen = set()
        for ev in events:
            name = (ev.get('repo') or {}).get('name')
            if name and name not in seen:
                seen.add(name)
                names.append(name)
        return names

    def get_default_branch(self, repo: str) -> Optional[str]:
        status, data = self._get(f'repos/{repo}', cache_key=f'github:repo:{repo}', max_age=DEFAULT_BRANCH_MAX_AGE)
        if status != 200 or not isinstance(data, dict):
            raise SourceUnavailable(repo, f"repository lookup failed (HTTP {status})")
        return data.get('default_branch') or None

    def list_commits(self, repo: str, branch: str, since_iso: str, author: Optional[str] = None, max_pages: int = 3, until_iso: Optional[str] = None) -> List[Dict[str, Any]]:
        """Raw commit items on one branch between timestamps. The author filter here is advisory only."""
        params = {'sha': branch, 'since': since_iso}
        if until_iso:
            params['until'] = until_iso
        if author:
            params['author'] = author
        try:
            return self._paginate(f'repos/{repo}/commits', params, per_page=100, max_pages=max_pages)
        except SourceUnavailable as ex:
            # the cached default branch may be gone (renamed or deleted); look it up again next time
            self._evict(f'github:repo:{repo}')
            raise SourceUnavailable(repo, ex.reason) from ex

    def _evict(self, cache_key: str):
        if self.cache is not None:
            self.cache.delete_key(f"{self._cache_scope}:{cache_key}")

    def list_pull_requests(self, repo: str, per_page: int = 50) -> List[Dict[str, Any]]:
        """Most recently updated pull requests of a repository, any state."""
        status, data = self._get(f'repos/{repo}/pulls', {'state': 'all', 'sort': 'updated', 'direction': 'desc', 'per_page': per_page})
        if status != 200:
            raise SourceUnavailable(repo, f"pull request listing failed (HTTP {status})")
        return as_item_list(data, repo)

    def search_pull_requests(self, author: str, created_since: date, max_pages: int = 3) -> List[Dict[str, Any]]:
        """Cross-repository search for pull requests by author created on or after a date."""
        query = f"type:pr author:{author} created:>={created_since.isoformat()}"
        items: List[Dict[str, Any]] = []
        for page in range(1, max_pages + 1):
            status, data = self._get('search/issues', {'q': query, 'sort': 'updated', 'order': 'desc', 'per_page': 100, 'page': page})
            if status != 200:
                if page == 1:
                    raise SourceUnavailable('search/issues', f"HTTP {status}")
                break
            batch = as_item_list(data, 'search/issues')
            items.extend(batch)
            if len(batch) < 100:
                break
        return items
