"""
CLI entry point for timetracker. Wires the run: discover -> collect -> aggregate -> synthesize -> report,
plus the ledger, client-mapping and cache maintenance commands.
"""

import argparse
import json
import logging
import os
import sys
import webbrowser
from datetime import date, datetime
from typing import List, Optional
from correlate.clients import ClientMappings, parse_mapping
from ingest.errors import DiscoveryFailure, FatalConfiguration
from normalize.models import LoggedEntry
from report.renderer import render_daily, render_week, normalize_format, DAILY_FORMATS, WEEK_FORMATS
from settings import load_settings, Settings
from storage.cache import Cache
from storage.ledger import LedgerError, open_ledger
from storage.retry import configure_retry
from tracker import build_tracker, week_bounds, week_totals

log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2


def _print_json(obj):
    print(json.dumps(obj, indent=2, default=str))


def _parse_date(value: Optional[str]) -> date:
    if not value:
        return date.today()
    try:
        return datetime.strptime(value, '%Y-%m-%d').date()
    except ValueError:
        raise FatalConfiguration(f"Invalid date {value!r}; expected YYYY-MM-DD")


def _prompt(label: str, default: str = '') -> str:
    suffix = f" [{default}]" if default else ''
    answer = input(f"{label}{suffix}: ").strip()
    return answer or default


def _check_format(fmt: str, allowed) -> str:
    fmt_l = normalize_format(fmt)
    if fmt_l not in allowed:
        raise FatalConfiguration(f"Unsupported format {fmt!r}; expected one of {', '.join(allowed)}")
    return fmt_l


def _parse_hours(text: str) -> Optional[float]:
    try:
        hours = float(text)
    except (TypeError, ValueError):
        return None
    return hours if hours > 0 else None


def _clear_cache(cache: Cache, force: bool):
    if not force:
        confirm = input(f"Are you sure you want to clear the cache at {cache.path}? [y/N]: ")
        if confirm.strip().lower() not in ("y", "yes"):
            print("Aborted cache clear.")
            return
    removed = cache.clear()
    print(f"Cache cleared ({removed} entries): {cache.path}")


def handle_cache_actions(args, settings: Settings) -> bool:
    """Run --cache-info / --cache-clear. Returns True when a cache action was handled."""
    if not (args.cache_info or args.cache_clear):
        return False
    with Cache(settings.cache_path) as cache:
        if args.cache_info:
            _print_json(cache.stats())
        if args.cache_clear:
            _clear_cache(cache, args.force)
    return True


def handle_mapping_actions(args, settings: Settings) -> bool:
    """Run --map / --show-mappings. Returns True when a mapping action was handled."""
    if not (args.map or args.show_mappings):
        return False
    mappings = ClientMappings.load(settings.mappings_path)
    if args.map:
        try:
            repo, client = parse_mapping(args.map)
        except ValueError as ex:
            raise FatalConfiguration(str(ex))
        mappings.map_repo(repo, client)
        mappings.save()
        print(f"Mapped {repo} -> {client}")
    if args.show_mappings:
        grouped = mappings.by_client()
        if not grouped:
            print("No client mappings configured.")
        for client, repos in grouped.items():
            if client:
                print(f"{client} ({mappings.describe(client)}):")
            else:
                print("(no client):")
            for repo in repos:
                print(f"  - {repo}")
    return True


def write_output(rendered: str, fmt: str, out_file: str = '', open_browser: bool = False):
    """Write output to a file or stdout and optionally open HTML in the browser."""
    if not out_file:
        print(rendered)
        return
    out_dir = os.path.dirname(out_file)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    with open(out_file, 'w', encoding='utf-8') as fh:
        fh.write(rendered)
    print(f"Wrote {fmt} report to {out_file}")
    if open_browser and fmt == 'html':
        webbrowser.open("file://" + os.path.abspath(out_file))


def show_week(args, settings: Settings):
    day = _parse_date(args.date)
    start, end = week_bounds(day)
    totals = week_totals(open_ledger(settings.ledger_path), day)
    fmt = _check_format(args.format, WEEK_FORMATS)
    write_output(render_week(totals, fmt, start.isoformat(), end.isoformat()), fmt, args.out_file)


def add_entry(args, settings: Settings):
    """Prompt for a manual entry and append it to the ledger."""
    day = _parse_date(args.date)
    project = _prompt("Project")
    task = _prompt("Task")
    hours = _parse_hours(_prompt("Hours"))
    description = _prompt("Description")
    if not project or hours is None:
        raise LedgerError("A project and a positive number of hours are required")
    entry = LoggedEntry(day.isoformat(), project, task, hours, description)
    open_ledger(settings.ledger_path).append(entry)
    print("Time entry added successfully!")


def suggest_entries(tracker, summary, mappings: Optional[ClientMappings] = None) -> int:
    """Interactive accept loop over today's suggestions. Returns the number of entries added."""
    if not summary.suggestions:
        print("No suggested entries based on this day's activity.")
        return 0
    print(render_daily(summary, 'text', mappings))
    if _prompt("Would you like to add any of these entries? (y/n)").lower() not in ('y', 'yes'):
        return 0
    added = 0
    for i, suggestion in enumerate(summary.suggestions, start=1):
        print(f"\n--- Entry {i} ---")
        print(f"Project: {suggestion.project}")
        print(f"Task: {suggestion.task}")
        if suggestion.already_logged:
            print("Note: this project already has an entry for this day.")
        answer = _prompt("Hours worked (or 'skip')")
        if answer.lower() == 'skip':
            continue
        hours = _parse_hours(answer)
        if hours is None:
            print("Invalid hours, skipping...")
            continue
        description = _prompt("Additional description (optional)")
        try:
            tracker.accept(suggestion, hours, description)
        except (ValueError, LedgerError) as ex:
            print(f"Failed to add entry: {ex}")
            continue
        added += 1
        print("Entry added successfully!")
    return added


def settings_from_args(args) -> Settings:
    settings = load_settings(args.config or None)
    roots = [r for r in args.roots.split(os.pathsep) if r] if args.roots else None
    return settings.with_overrides(
        github_token=args.token,
        local_roots=roots,
        include_remote=False if args.no_remote else None,
        include_local=False if args.no_local else None,
        pr_strategy=args.pr_strategy,
        pr_days=args.days,
        max_workers=args.workers,
        call_timeout=args.timeout,
        ledger_path=args.ledger,
        cache_path=args.cache,
    )


def run(args) -> int:
    configure_retry(max_retries=args.max_retries, backoff_base=args.backoff_base, backoff_jitter=args.backoff_jitter, max_backoff=args.max_backoff)
    settings = settings_from_args(args)
    log.debug("settings: %s", settings.as_dict())

    if handle_cache_actions(args, settings) or handle_mapping_actions(args, settings):
        return EXIT_OK
    if args.week:
        show_week(args, settings)
        return EXIT_OK
    if args.add:
        add_entry(args, settings)
        return EXIT_OK

    fmt = _check_format(args.format, DAILY_FORMATS)
    tracker = build_tracker(settings)
    mappings = ClientMappings.load(settings.mappings_path)
    summary = tracker.daily_summary(_parse_date(args.date))
    if args.suggest:
        suggest_entries(tracker, summary, mappings)
        return EXIT_OK
    write_output(render_daily(summary, fmt, mappings), fmt, args.out_file, args.open)
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Daily time tracking from GitHub and local git activity")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--summary", action="store_true", help="Show the daily summary (default)")
    mode.add_argument("--week", action="store_true", help="Show logged hours per project for the week")
    mode.add_argument("--suggest", action="store_true", help="Walk through suggested entries and log hours interactively")
    mode.add_argument("--add", action="store_true", help="Add a time entry interactively")
    mode.add_argument("--map", type=str, default="", metavar="REPO=CLIENT", help="Map a repository to a client")
    mode.add_argument("--show-mappings", action="store_true", help="List repository-to-client mappings")
    parser.add_argument("--date", type=str, default="", help="Day to report on (YYYY-MM-DD, default today)")
    parser.add_argument("--days", type=int, default=None, help="Pull request look-back window in days")
    parser.add_argument("--format", type=str, default="text", help=f"Output format ({', '.join(DAILY_FORMATS)}; week supports {', '.join(WEEK_FORMATS)})")
    parser.add_argument("--out-file", type=str, default="", help="Write the report to this file instead of stdout")
    parser.add_argument("--open", action="store_true", help="Open a written HTML report in the default browser")
    parser.add_argument("--token", type=str, default=None, help="GitHub token (overrides GITHUB_TOKEN / TIMETRACKER_GITHUB_TOKEN)")
    parser.add_argument("--roots", type=str, default="", help=f"Directories to scan for local repositories, separated by '{os.pathsep}'")
    parser.add_argument("--no-remote", action="store_true", help="Skip the GitHub API")
    parser.add_argument("--no-local", action="store_true", help="Skip local repositories")
    parser.add_argument("--pr-strategy", type=str, default=None, choices=["auto", "search", "per-repo"], help="How pull requests are collected")
    parser.add_argument("--workers", type=int, default=None, help="Concurrent collection workers")
    parser.add_argument("--timeout", type=float, default=None, help="Per-call timeout in seconds")
    parser.add_argument("--ledger", type=str, default=None, help="Ledger path (.csv for a CSV ledger, otherwise SQLite)")
    parser.add_argument("--cache", type=str, default=None, help="Path to the SQLite API cache")
    parser.add_argument("--config", type=str, default="", help="Path to a YAML settings file")
    parser.add_argument("--max-retries", type=int, default=None, help="Maximum retry attempts for HTTP requests (overrides TIMETRACKER_MAX_RETRIES env)")
    parser.add_argument("--backoff-base", type=float, default=None, help="Base backoff seconds (overrides TIMETRACKER_BACKOFF_BASE env)")
    parser.add_argument("--backoff-jitter", type=float, default=None, help="Jitter seconds added to backoff (overrides TIMETRACKER_BACKOFF_JITTER env)")
    parser.add_argument("--max-backoff", type=float, default=None, help="Maximum backoff cap in seconds (overrides TIMETRACKER_MAX_BACKOFF env)")
    parser.add_argument("--cache-info", action="store_true", help="Show cache statistics")
    parser.add_argument("--cache-clear", action="store_true", help="Clear the API cache")
    parser.add_argument("--force", action="store_true", help="Do not ask for confirmation (use with --cache-clear)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    try:
        return run(args)
    except (FatalConfiguration, DiscoveryFailure) as ex:
        print(f"Error: {ex}", file=sys.stderr)
        return EXIT_CONFIG
    except LedgerError as ex:
        print(f"Error: {ex}", file=sys.stderr)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
