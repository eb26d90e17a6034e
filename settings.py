"""
Runtime configuration.

Resolution order: built-in defaults, then an optional YAML file, then TIMETRACKER_* environment
variables. The CLI applies its own flags on top of the returned Settings.

Environment variables:
- TIMETRACKER_CONFIG: path to a YAML settings file (default .local/timetracker.yaml)
- TIMETRACKER_GITHUB_TOKEN / GITHUB_TOKEN: API token
- TIMETRACKER_API_URL: API base URL
- TIMETRACKER_LOCAL_ROOTS: os.pathsep-separated directories to scan
- TIMETRACKER_SKIP_DIRS: comma-separated directory names the walker skips
- TIMETRACKER_LOCAL_AUTHOR: author filter for local git history (defaults to the GitHub login)
- TIMETRACKER_WORKERS, TIMETRACKER_TIMEOUT, TIMETRACKER_PR_STRATEGY, TIMETRACKER_PR_DAYS
- TIMETRACKER_LEDGER, TIMETRACKER_CACHE, TIMETRACKER_CACHE_TTL, TIMETRACKER_MAPPINGS
"""
import os
from typing import Any, Dict, List, Mapping, Optional
import yaml
from ingest.errors import FatalConfiguration
from ingest.local_git import DEFAULT_SKIP_DIRS, default_roots
from ingest.collectors import PR_STRATEGIES, FALLBACK_BRANCH

DEFAULT_CONFIG_PATH = os.path.join('.local', 'timetracker.yaml')

DEFAULTS: Dict[str, Any] = {
    'github_token': '',
    'api_base_url': 'https://api.github.com',
    'local_roots': None,  # None -> default_roots()
    'skip_dirs': list(DEFAULT_SKIP_DIRS),
    'local_author': None,
    'max_workers': 8,
    'call_timeout': 30.0,
    'pr_strategy': 'auto',
    'pr_days': 1,
    'fallback_branch': FALLBACK_BRANCH,
    'ledger_path': os.path.join('.local', 'timetracker.db'),
    'cache_path': os.path.join('.local', 'api_cache.db'),
    'cache_ttl': 24 * 60 * 60.0,
    'mappings_path': os.path.join('.local', 'client_mappings.json'),
    'include_remote': True,
    'include_local': True,
}

# env var -> (settings key, converter)
_ENV_MAP = {
    'TIMETRACKER_API_URL': ('api_base_url', str),
    'TIMETRACKER_LOCAL_ROOTS': ('local_roots', lambda v: [p for p in v.split(os.pathsep) if p]),
    'TIMETRACKER_SKIP_DIRS': ('skip_dirs', lambda v: [p.strip() for p in v.split(',') if p.strip()]),
    'TIMETRACKER_LOCAL_AUTHOR': ('local_author', str),
    'TIMETRACKER_WORKERS': ('max_workers', int),
    'TIMETRACKER_TIMEOUT': ('call_timeout', float),
    'TIMETRACKER_PR_STRATEGY': ('pr_strategy', str),
    'TIMETRACKER_PR_DAYS': ('pr_days', int),
    'TIMETRACKER_LEDGER': ('ledger_path', str),
    'TIMETRACKER_CACHE': ('cache_path', str),
    'TIMETRACKER_CACHE_TTL': ('cache_ttl', float),
    'TIMETRACKER_MAPPINGS': ('mappings_path', str),
}

_NUMERIC = {'max_workers': int, 'call_timeout': float, 'pr_days': int, 'cache_ttl': float}


class Settings:
    def __init__(self, **values):
        merged = dict(DEFAULTS)
        merged.update({k: v for k, v in values.items() if k in DEFAULTS})
        self.__dict__.update(merged)
        self.validate()

    def validate(self):
        for key, cast in _NUMERIC.items():
            try:
                setattr(self, key, cast(getattr(self, key)))
            except (TypeError, ValueError):
                raise FatalConfiguration(f"Invalid value for {key}: {getattr(self, key)!r}")
        if self.max_workers < 1:
            raise FatalConfiguration("max_workers must be at least 1")
        if self.call_timeout <= 0:
            raise FatalConfiguration("call_timeout must be positive")
        if self.pr_days < 0:
            raise FatalConfiguration("pr_days must not be negative")
        if self.pr_strategy not in PR_STRATEGIES:
            raise FatalConfiguration(f"pr_strategy must be one of {', '.join(PR_STRATEGIES)}")

    @property
    def roots(self) -> List[str]:
        roots = self.local_roots if self.local_roots else default_roots()
        return [os.path.expanduser(r) for r in roots]

    def with_overrides(self, **overrides) -> 'Settings':
        """Copy with non-None overrides applied (used for CLI flags)."""
        values = {k: getattr(self, k) for k in DEFAULTS}
        values.update({k: v for k, v in overrides.items() if v is not None})
        return Settings(**values)

    def as_dict(self) -> Dict[str, Any]:
        data = {k: getattr(self, k) for k in DEFAULTS}
        if data.get('github_token'):
            data['github_token'] = '***'
        return data


def _load_yaml(path: str) -> Dict[str, Any]:
    with open(path, 'r', encoding='utf-8') as fh:
        try:
            doc = yaml.safe_load(fh) or {}
        except yaml.YAMLError as ex:
            raise FatalConfiguration(f"Could not parse settings file {path}: {ex}")
    if not isinstance(doc, dict):
        raise FatalConfiguration(f"Settings file {path} must contain a mapping")
    return doc


def load_settings(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from defaults, an optional YAML file and the environment."""
    env = os.environ if environ is None else environ
    values: Dict[str, Any] = {}

    config_path = path or env.get('TIMETRACKER_CONFIG') or DEFAULT_CONFIG_PATH
    if os.path.exists(config_path):
        values.update(_load_yaml(config_path))
    elif path:
        raise FatalConfiguration(f"Settings file not found: {path}")

    for var, (key, convert) in _ENV_MAP.items():
        raw = env.get(var)
        if raw is None or raw == '':
            continue
        try:
            values[key] = convert(raw)
        except ValueError:
            raise FatalConfiguration(f"Invalid value for {var}: {raw!r}")

    token = env.get('TIMETRACKER_GITHUB_TOKEN') or env.get('GITHUB_TOKEN')
    if token:
        values['github_token'] = token
    return Settings(**values)
