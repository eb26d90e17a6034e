"""
Repository-to-client mappings stored as a small JSON file.

Layout:
    {"repos": {"acme/api": {"client": "Acme", "description": ""}},
     "clients": {"Acme": {"active": true, "spreadsheet_tab": "Acme", "rate": 120.0}}}
"""
import json
import os
from typing import Dict, Any, Iterable, List, Optional, Tuple
from normalize.models import LOCAL_MARKER


def parse_mapping(text: str) -> Tuple[str, str]:
    """Parse 'repo=client' into (repo, client)."""
    parts = (text or '').split('=')
    if len(parts) != 2 or not parts[0].strip() or not parts[1].strip():
        raise ValueError(f"Invalid mapping {text!r}; expected repo=client")
    return parts[0].strip(), parts[1].strip()


class ClientMappings:
    def __init__(self, repos: Optional[Dict[str, Dict[str, Any]]] = None, clients: Optional[Dict[str, Dict[str, Any]]] = None, path: Optional[str] = None):
        self.repos = repos or {}
        self.clients = clients or {}
        self.path = path

    @classmethod
    def load(cls, path: str) -> 'ClientMappings':
        """Load mappings; a missing or unreadable file gives empty mappings."""
        try:
            with open(path, 'r', encoding='utf-8') as fh:
                data = json.load(fh)
        except (OSError, ValueError):
            return cls(path=path)
        if not isinstance(data, dict):
            return cls(path=path)
        return cls(repos=data.get('repos') or {}, clients=data.get('clients') or {}, path=path)

    def save(self, path: Optional[str] = None):
        target = path or self.path
        if not target:
            raise ValueError("No path to save client mappings to")
        out_dir = os.path.dirname(target)
        if out_dir:
            os.makedirs(out_dir, exist_ok=True)
        with open(target, 'w', encoding='utf-8') as fh:
            json.dump({'repos': self.repos, 'clients': self.clients}, fh, indent=2, sort_keys=True)
        self.path = target

    def map_repo(self, repo: str, client: str):
        previous = self.repos.get(repo) or {}
        self.repos[repo] = {'client': client, 'description': previous.get('description', '')}

    def client_for(self, project: str) -> Optional[str]:
        info = self.repos.get(project)
        if info is None and project.endswith(LOCAL_MARKER):
            info = self.repos.get(project[: -len(LOCAL_MARKER)])
        return (info or {}).get('client') or None

    def rate_for(self, client: str) -> float:
        return float((self.clients.get(client) or {}).get('rate') or 0.0)

    def is_active(self, client: str) -> bool:
        """Clients without an entry in "clients" count as active."""
        return bool((self.clients.get(client) or {}).get('active', True))

    def describe(self, client: str) -> str:
        """'active, $120.00/hr' style status for listings."""
        parts = ['active' if self.is_active(client) else 'inactive']
        rate = self.rate_for(client)
        if rate > 0:
            parts.append(f"${rate:.2f}/hr")
        return ', '.join(parts)

    def unmapped(self, projects: Iterable[str]) -> List[str]:
        """Projects with no client, in input order without repeats."""
        out: List[str] = []
        for p in projects:
            if self.client_for(p) is None and p not in out:
                out.append(p)
        return out

    def by_client(self) -> Dict[str, List[str]]:
        grouped: Dict[str, List[str]] = {}
        for repo, info in sorted(self.repos.items()):
            grouped.setdefault(info.get('client') or '', []).append(repo)
        return grouped
