import json
from datetime import date
from unittest.mock import Mock, patch

import pytest

import cli
from cli import main, suggest_entries, EXIT_CONFIG, EXIT_FAILURE, EXIT_OK
from correlate.clients import ClientMappings
from normalize.models import LoggedEntry, SuggestedEntry
from storage.ledger import SqliteLedger, LedgerError
from tracker import DailySummary


@pytest.fixture(autouse=True)
def isolated_cwd(tmp_path, monkeypatch):
    """Keep .local/ state inside the test directory and ignore the caller's environment."""
    monkeypatch.chdir(tmp_path)
    for var in ('GITHUB_TOKEN', 'TIMETRACKER_GITHUB_TOKEN', 'TIMETRACKER_CONFIG', 'TIMETRACKER_LEDGER', 'TIMETRACKER_CACHE', 'TIMETRACKER_MAPPINGS'):
        monkeypatch.delenv(var, raising=False)
    return tmp_path


def _inputs(monkeypatch, answers):
    it = iter(answers)
    monkeypatch.setattr('builtins.input', lambda prompt='': next(it))


def test_add_then_week(tmp_path, monkeypatch, capsys):
    ledger = str(tmp_path / 'ledger.csv')
    _inputs(monkeypatch, ['acme/api', 'Development', '2.5', 'pairing'])
    assert main(['--add', '--date', '2024-03-04', '--ledger', ledger]) == EXIT_OK
    assert 'Time entry added successfully!' in capsys.readouterr().out

    assert main(['--week', '--date', '2024-03-06', '--ledger', ledger]) == EXIT_OK
    out = capsys.readouterr().out
    assert '=== Weekly Summary 2024-03-03 .. 2024-03-09 ===' in out
    assert 'Total: 2.5 hours' in out


def test_add_rejects_bad_hours(tmp_path, monkeypatch, capsys):
    _inputs(monkeypatch, ['acme/api', 'Development', 'lots', ''])
    assert main(['--add', '--ledger', str(tmp_path / 'l.db')]) == EXIT_FAILURE
    assert 'positive number of hours' in capsys.readouterr().err


def test_week_json_output_file(tmp_path):
    ledger = tmp_path / 'ledger.db'
    with SqliteLedger(str(ledger)) as db:
        db.append(LoggedEntry('2024-03-04', 'acme/api', 'Development', 1.0))
    out_file = tmp_path / 'out' / 'week.json'
    assert main(['--week', '--date', '2024-03-04', '--ledger', str(ledger), '--format', 'json', '--out-file', str(out_file)]) == EXIT_OK
    assert json.loads(out_file.read_text(encoding='utf-8'))['projects'] == {'acme/api': 1.0}


def test_map_and_show_mappings(capsys):
    assert main(['--map', 'acme/api=Acme']) == EXIT_OK
    assert main(['--show-mappings']) == EXIT_OK
    out = capsys.readouterr().out
    assert 'Mapped acme/api -> Acme' in out
    assert 'Acme (active):\n  - acme/api' in out


def test_show_mappings_reports_status_and_rate(tmp_path, monkeypatch, capsys):
    path = tmp_path / 'client_mappings.json'
    ClientMappings(
        repos={'acme/api': {'client': 'Acme'}, 'old/site': {'client': 'Oldco'}},
        clients={'Acme': {'active': True, 'rate': 120}, 'Oldco': {'active': False}},
    ).save(str(path))
    monkeypatch.setenv('TIMETRACKER_MAPPINGS', str(path))
    assert main(['--show-mappings']) == EXIT_OK
    out = capsys.readouterr().out
    assert 'Acme (active, $120.00/hr):\n  - acme/api' in out
    assert 'Oldco (inactive):\n  - old/site' in out


def test_bad_mapping_is_a_configuration_error(capsys):
    assert main(['--map', 'nonsense']) == EXIT_CONFIG


def test_missing_token_exits_with_configuration_status(capsys):
    assert main(['--summary', '--no-local', '--cache', '']) == EXIT_CONFIG
    assert 'No GitHub token' in capsys.readouterr().err


def test_bad_date(capsys):
    assert main(['--week', '--date', '04/03/2024']) == EXIT_CONFIG


def test_unsupported_week_format(capsys):
    assert main(['--week', '--format', 'html']) == EXIT_CONFIG


def test_cache_info_and_forced_clear(tmp_path, capsys):
    cache_path = str(tmp_path / 'cache.db')
    assert main(['--cache-info', '--cache', cache_path]) == EXIT_OK
    assert json.loads(capsys.readouterr().out)['count'] == 0
    assert main(['--cache-clear', '--force', '--cache', cache_path]) == EXIT_OK
    assert 'Cache cleared' in capsys.readouterr().out


def test_cache_clear_can_be_aborted(tmp_path, monkeypatch, capsys):
    _inputs(monkeypatch, ['n'])
    assert main(['--cache-clear', '--cache', str(tmp_path / 'cache.db')]) == EXIT_OK
    assert 'Aborted cache clear.' in capsys.readouterr().out


def test_summary_renders_tracker_output(tmp_path, capsys):
    summary = DailySummary('2024-03-04', [], [], {}, [], [SuggestedEntry('2024-03-04', 'acme/api', 'Development', '- fix bug')], [])
    tracker = Mock()
    tracker.daily_summary.return_value = summary
    with patch('cli.build_tracker', return_value=tracker) as build:
        assert main(['--date', '2024-03-04', '--token', 't', '--workers', '2', '--pr-strategy', 'search']) == EXIT_OK
    settings = build.call_args[0][0]
    assert settings.github_token == 't'
    assert settings.max_workers == 2
    assert settings.pr_strategy == 'search'
    assert tracker.daily_summary.call_args[0][0] == date(2024, 3, 4)
    assert '1. Project: acme/api' in capsys.readouterr().out


def test_suggest_loop_accepts_and_skips(monkeypatch, capsys):
    suggestions = [
        SuggestedEntry('2024-03-04', 'acme/api', 'Development', '- fix bug'),
        SuggestedEntry('2024-03-04', 'acme/web', 'Code Review', '', '- PR #7: Add feature'),
        SuggestedEntry('2024-03-04', 'acme/docs', 'Development', '- typo'),
    ]
    summary = DailySummary('2024-03-04', [], [], {}, [], suggestions, [])
    tracker = Mock()
    _inputs(monkeypatch, ['y', '1.5', 'bug bash', 'skip', 'abc'])
    assert suggest_entries(tracker, summary) == 1
    tracker.accept.assert_called_once_with(suggestions[0], 1.5, 'bug bash')
    assert 'Invalid hours, skipping...' in capsys.readouterr().out


def test_suggest_loop_reports_ledger_errors(monkeypatch, capsys):
    summary = DailySummary('2024-03-04', [], [], {}, [], [SuggestedEntry('2024-03-04', 'acme/api', 'Development')], [])
    tracker = Mock()
    tracker.accept.side_effect = LedgerError('disk full')
    _inputs(monkeypatch, ['y', '2', ''])
    assert suggest_entries(tracker, summary) == 0
    assert 'Failed to add entry: disk full' in capsys.readouterr().out


def test_suggest_loop_reports_rejected_hours(monkeypatch, capsys):
    summary = DailySummary('2024-03-04', [], [], {}, [], [SuggestedEntry('2024-03-04', 'acme/api', 'Development')], [])
    tracker = Mock()
    tracker.accept.side_effect = ValueError('hours must be greater than zero')
    _inputs(monkeypatch, ['y', '2', ''])
    assert suggest_entries(tracker, summary) == 0
    assert 'Failed to add entry: hours must be greater than zero' in capsys.readouterr().out


def test_suggest_with_nothing_to_do(capsys):
    summary = DailySummary('2024-03-04', [], [], {}, [], [], [])
    assert suggest_entries(Mock(), summary) == 0
    assert 'No suggested entries' in capsys.readouterr().out


def test_retry_flags_are_applied():
    with patch('cli.configure_retry') as configure, patch('cli.build_tracker', side_effect=cli.FatalConfiguration('stop')):
        assert main(['--max-retries', '5', '--backoff-base', '0.1']) == EXIT_CONFIG
    configure.assert_called_once_with(max_retries=5, backoff_base=0.1, backoff_jitter=None, max_backoff=None)
