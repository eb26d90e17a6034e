"""
Report renderer: daily activity summaries and weekly hour totals as text, Markdown, CSV, JSON or HTML.
Markdown and HTML go through the Jinja2 templates in report/templates/.
"""

import csv
import io
import json
import os
from typing import Any, Dict, List, Optional
from jinja2 import Environment, FileSystemLoader, select_autoescape
from correlate.clients import ClientMappings
from normalize.models import Commit, LEDGER_COLUMNS

TEMPLATE_DIR = os.path.join(os.path.dirname(__file__), 'templates')

# commit first lines longer than this are cut and end in '...'
MAX_MESSAGE_WIDTH = 60

DAILY_FORMATS = ('text', 'md', 'csv', 'json', 'html')
WEEK_FORMATS = ('text', 'md', 'csv', 'json')

_ALIASES = {'markdown': 'md', 'htm': 'html', 'txt': 'text', 'js': 'json'}


def normalize_format(fmt: Optional[str]) -> str:
    fmt_l = (fmt or 'text').lower()
    return _ALIASES.get(fmt_l, fmt_l)


def truncate_message(message: str, width: int = MAX_MESSAGE_WIDTH) -> str:
    line = (message or '').split('\n', 1)[0]
    if len(line) > width:
        return line[: width - 3] + '...'
    return line


def _environment() -> Environment:
    return Environment(
        loader=FileSystemLoader(TEMPLATE_DIR),
        autoescape=select_autoescape(['html', 'xml', 'html.j2']),
        trim_blocks=True,
        lstrip_blocks=True,
    )


def group_commits(commits: List[Commit]) -> Dict[str, List[Commit]]:
    """Commits by repository in first-seen order."""
    grouped: Dict[str, List[Commit]] = {}
    for commit in commits:
        grouped.setdefault(commit.repository_identity, []).append(commit)
    return grouped


def _client_label(project: str, mappings: Optional[ClientMappings]) -> str:
    if mappings is None:
        return ''
    return mappings.client_for(project) or ''


def _client_rate(client: str, mappings: Optional[ClientMappings]) -> float:
    if mappings is None or not client:
        return 0.0
    return mappings.rate_for(client)


def unmapped_projects(summary, mappings: Optional[ClientMappings]) -> List[str]:
    """Suggested projects without a client; empty when no repository is mapped at all."""
    if mappings is None or not mappings.repos:
        return []
    return mappings.unmapped(s.project for s in summary.suggestions)


def failure_rows(failures) -> List[Dict[str, str]]:
    rows = []
    for res in failures:
        source = res.handle.identity if res.handle else getattr(res.error, 'source', 'search')
        rows.append({'source': source, 'reason': getattr(res.error, 'reason', None) or str(res.error)})
    return rows


def _context(summary, mappings: Optional[ClientMappings]) -> Dict[str, Any]:
    commit_groups = [
        (repo, [truncate_message(c.message) for c in commits]) for repo, commits in group_commits(summary.commits).items()
    ]
    suggestions = []
    for s in summary.suggestions:
        client = _client_label(s.project, mappings)
        suggestions.append({'entry': s, 'client': client, 'rate': _client_rate(client, mappings)})
    failures = failure_rows(summary.failures)
    return {
        'date': summary.date,
        'existing': summary.existing_entries,
        'commit_groups': commit_groups,
        'pull_requests': summary.pull_requests,
        'suggestions': suggestions,
        'unmapped': unmapped_projects(summary, mappings),
        'failures': failures,
    }


def _indent_notes(notes: str) -> List[str]:
    return [f"     {line}" for line in notes.split('\n') if line]


def _text_suggestions(out: List[str], suggestions: List[Dict[str, Any]]):
    out.append("Suggested Time Entries:")
    for i, item in enumerate(suggestions, start=1):
        entry = item['entry']
        flag = ' (already logged)' if entry.already_logged else ''
        out.append(f"{i}. Project: {entry.project}{flag}")
        if item['client']:
            rate = f" (${item['rate']:.2f}/hr)" if item['rate'] > 0 else ''
            out.append(f"   Client: {item['client']}{rate}")
        out.append(f"   Task: {entry.task}")
        if entry.commit_notes:
            out.append("   Commits:")
            out.extend(_indent_notes(entry.commit_notes))
        if entry.pr_notes:
            out.append("   PRs:")
            out.extend(_indent_notes(entry.pr_notes))
        out.append("")


def render_daily_text(summary, mappings: Optional[ClientMappings] = None) -> str:
    ctx = _context(summary, mappings)
    out = [f"=== Time Tracking Summary for {ctx['date']} ===", ""]

    if ctx['existing']:
        out.append("Existing Entries:")
        for entry in ctx['existing']:
            out.append(f"  * {entry.project} - {entry.task} ({entry.hours:.1f} hours)")
        out.append("")

    if ctx['commit_groups']:
        out.append("Commits:")
        for repo, lines in ctx['commit_groups']:
            out.append(f"  {repo}:")
            out.extend(f"    - {line}" for line in lines)
        out.append("")

    if ctx['pull_requests']:
        out.append("Pull Requests:")
        for pr in ctx['pull_requests']:
            out.append(f"  * {pr.repository_identity} PR #{pr.number}: {pr.title} [{pr.state}]")
        out.append("")

    if ctx['suggestions']:
        _text_suggestions(out, ctx['suggestions'])
    else:
        out.append("No suggested entries for this day.")
        out.append("")

    _text_notices(out, ctx)
    return "\n".join(out)


def _text_notices(out: List[str], ctx: Dict[str, Any]):
    if ctx['unmapped']:
        out.append("Projects without a client:")
        out.extend(f"  ? {project}" for project in ctx['unmapped'])
        out.append("")

    if ctx['failures']:
        out.append("Unavailable sources:")
        out.extend(f"  ! {f['source']}: {f['reason']}" for f in ctx['failures'])
        out.append("")


def render_daily_csv(summary) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(list(LEDGER_COLUMNS) + ['already_logged'])
    for entry in summary.suggestions:
        writer.writerow(entry.to_row() + [entry.already_logged])
    return output.getvalue()


def render_daily_json(summary, mappings: Optional[ClientMappings] = None) -> str:
    suggestions = []
    for entry in summary.suggestions:
        data = entry.to_dict()
        client = _client_label(entry.project, mappings)
        data['client'] = client or None
        data['rate'] = _client_rate(client, mappings) or None
        suggestions.append(data)
    doc = {
        'date': summary.date,
        'existing_entries': [e.to_dict() for e in summary.existing_entries],
        'commits': [
            {
                'sha': c.sha,
                'repository': c.repository_identity,
                'message': c.first_line,
                'url': c.url,
                'authored_at': c.authored_at.isoformat() if c.authored_at else None,
            }
            for c in summary.commits
        ],
        'pull_requests': [
            {'number': p.number, 'repository': p.repository_identity, 'title': p.title, 'state': p.state, 'url': p.url}
            for p in summary.pull_requests
        ],
        'suggestions': suggestions,
        'unmapped': unmapped_projects(summary, mappings),
        'failures': failure_rows(summary.failures),
    }
    return json.dumps(doc, indent=2, default=str)


def render_daily(summary, fmt: str = 'text', mappings: Optional[ClientMappings] = None) -> str:
    """Render a DailySummary. Unknown formats raise ValueError."""
    fmt_l = normalize_format(fmt)
    if fmt_l == 'text':
        return render_daily_text(summary, mappings)
    if fmt_l == 'csv':
        return render_daily_csv(summary)
    if fmt_l == 'json':
        return render_daily_json(summary, mappings)
    if fmt_l in ('md', 'html'):
        tmpl = _environment().get_template(f'daily.{fmt_l}.j2')
        return tmpl.render(**_context(summary, mappings))
    raise ValueError(f"Unsupported format {fmt!r}; expected one of {', '.join(DAILY_FORMATS)}")


def week_rows(hours_by_project: Dict[str, float]):
    rows = sorted(hours_by_project.items())
    return rows, sum(hours for _, hours in rows)


def render_week(hours_by_project: Dict[str, float], fmt: str = 'text', start: Optional[str] = None, end: Optional[str] = None) -> str:
    """Render weekly per-project totals, projects sorted by name, with a grand total."""
    fmt_l = normalize_format(fmt)
    rows, total = week_rows(hours_by_project)
    if fmt_l == 'text':
        title = "=== Weekly Summary ==="
        if start and end:
            title = f"=== Weekly Summary {start} .. {end} ==="
        out = [title]
        out.extend(f"{project:<40}: {hours:.1f} hours" for project, hours in rows)
        out.append("")
        out.append(f"Total: {total:.1f} hours")
        return "\n".join(out)
    if fmt_l == 'md':
        return _environment().get_template('week.md.j2').render(rows=rows, total=total, start=start, end=end)
    if fmt_l == 'csv':
        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow(['project', 'hours'])
        writer.writerows(rows)
        writer.writerow(['Total', total])
        return output.getvalue()
    if fmt_l == 'json':
        return json.dumps({'start': start, 'end': end, 'projects': dict(rows), 'total': total}, indent=2)
    raise ValueError(f"Unsupported format {fmt!r}; expected one of {', '.join(WEEK_FORMATS)}")
