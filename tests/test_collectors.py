import time
import unittest
from datetime import date, datetime, timedelta, timezone
from unittest.mock import Mock

from ingest.collectors import CommitCollector, PullRequestCollector, fan_out, since_timestamp, until_timestamp
from ingest.errors import SourceUnavailable
from normalize.models import RepositoryHandle, REMOTE, LOCAL

NOW = datetime(2024, 3, 4, 18, 0, tzinfo=timezone.utc)
SHA1 = 'a' * 40
SHA2 = 'b' * 40


def _remote_commit(sha, login, message, when='2024-03-04T10:00:00Z'):
    return {
        'sha': sha,
        'html_url': f'https://github.com/x/commit/{sha}',
        'author': {'login': login} if login else None,
        'commit': {'message': message, 'author': {'date': when}},
    }


def _pr(number, login, created, updated=None, repo='acme/web', title='Add feature'):
    return {
        'number': number,
        'title': title,
        'html_url': f'https://github.com/{repo}/pull/{number}',
        'user': {'login': login},
        'state': 'open',
        'created_at': created.strftime('%Y-%m-%dT%H:%M:%SZ'),
        'updated_at': (updated or created).strftime('%Y-%m-%dT%H:%M:%SZ'),
        'repository_url': f'https://api.github.com/repos/{repo}',
    }


class TestCommitCollector(unittest.TestCase):
    def test_remote_commits_are_post_filtered_by_login(self):
        github = Mock()
        github.list_commits.return_value = [
            _remote_commit(SHA1, 'alice', 'fix bug'),
            _remote_commit(SHA2, 'bob', 'co-authored change'),
            _remote_commit('c' * 40, None, 'email-only author'),
        ]
        collector = CommitCollector(github, 'alice')
        handle = RepositoryHandle('acme/api', REMOTE, default_branch='main')
        commits = collector.collect(handle, date(2024, 3, 4))
        self.assertEqual([c.sha for c in commits], [SHA1])
        self.assertEqual(commits[0].repository_identity, 'acme/api')
        github.get_default_branch.assert_not_called()
        self.assertEqual(github.list_commits.call_args[0][1], 'main')

    def test_default_branch_is_looked_up_then_falls_back(self):
        github = Mock()
        github.list_commits.return_value = []
        github.get_default_branch.side_effect = SourceUnavailable('acme/api', 'HTTP 404')
        collector = CommitCollector(github, 'alice', fallback_branch='main')
        collector.collect(RepositoryHandle('acme/api', REMOTE), date(2024, 3, 4))
        self.assertEqual(github.list_commits.call_args[0][1], 'main')

        github.get_default_branch.side_effect = None
        github.get_default_branch.return_value = 'develop'
        collector.collect(RepositoryHandle('acme/api', REMOTE), date(2024, 3, 4))
        self.assertEqual(github.list_commits.call_args[0][1], 'develop')

    def test_unreachable_repository_yields_empty_and_error(self):
        github = Mock()
        github.list_commits.side_effect = SourceUnavailable('acme/api', 'HTTP 409')
        collector = CommitCollector(github, 'alice')
        handle = RepositoryHandle('acme/api', REMOTE, default_branch='main')
        self.assertEqual(collector.collect(handle, date(2024, 3, 4)), [])
        result = collector.collect_result(handle, date(2024, 3, 4))
        self.assertFalse(result.ok)
        self.assertIs(result.handle, handle)

    def test_local_commits_skip_malformed_lines(self):
        runner = Mock()
        runner.run.return_value = '\n'.join([
            f'{SHA1}|fix bug|2024-03-04T10:00:00+00:00',
            'this line is garbage',
            '',
            f'{SHA2}|refactor | cleanup|2024-03-04T11:00:00+00:00',
        ])
        collector = CommitCollector(None, 'alice', runner=runner, local_author='Alice Example')
        handle = RepositoryHandle('acme/api', LOCAL, local_path='/src/api')
        commits = collector.collect(handle, date(2024, 3, 4))
        self.assertEqual([c.message for c in commits], ['fix bug', 'refactor | cleanup'])
        self.assertEqual({c.repository_identity for c in commits}, {'acme/api (local)'})
        self.assertIn('--author=Alice Example', runner.run.call_args[0][0])

    def test_failed_git_log_is_isolated(self):
        runner = Mock()
        runner.run.side_effect = [SourceUnavailable('/src/broken', 'fatal'), f'{SHA1}|ok|2024-03-04T10:00:00Z']
        collector = CommitCollector(None, 'alice', runner=runner)
        handles = [
            RepositoryHandle('broken (local)', LOCAL, local_path='/src/broken'),
            RepositoryHandle('good (local)', LOCAL, local_path='/src/good'),
        ]
        results = collector.collect_all(handles, date(2024, 3, 4), max_workers=1)
        self.assertFalse(results[0].ok)
        self.assertEqual(len(results[1].items), 1)

    def test_remote_without_client_is_unavailable(self):
        collector = CommitCollector(None, 'alice')
        result = collector.collect_result(RepositoryHandle('acme/api', REMOTE), date(2024, 3, 4))
        self.assertFalse(result.ok)

    def test_malformed_commit_is_skipped_and_siblings_survive(self):
        github = Mock()

        def commits(repo, branch, since_iso, author=None, until_iso=None):
            if repo == 'acme/bad':
                return [{'sha': SHA2, 'commit': 'garbage', 'author': {'login': 'alice'}}, _remote_commit(SHA1, 'alice', 'still fine')]
            return [_remote_commit('c' * 40, 'alice', 'good repo')]

        github.list_commits.side_effect = commits
        handles = [RepositoryHandle('acme/bad', REMOTE, default_branch='main'), RepositoryHandle('acme/good', REMOTE, default_branch='main')]
        results = CommitCollector(github, 'alice').collect_all(handles, date(2024, 3, 4))
        self.assertTrue(all(r.ok for r in results))
        self.assertEqual([[c.first_line for c in r.items] for r in results], [['still fine'], ['good repo']])

    def test_unexpected_error_becomes_an_error_result(self):
        github = Mock()

        def commits(repo, *args, **kwargs):
            if repo == 'acme/bad':
                raise RuntimeError('connection reset mid-page')
            return []

        github.list_commits.side_effect = commits
        handles = [RepositoryHandle('acme/bad', REMOTE, default_branch='main'), RepositoryHandle('acme/good', REMOTE, default_branch='main')]
        collector = CommitCollector(github, 'alice')
        results = collector.collect_all(handles, date(2024, 3, 4))
        self.assertFalse(results[0].ok)
        self.assertIsInstance(results[0].error, SourceUnavailable)
        self.assertEqual(results[0].error.source, 'acme/bad')
        self.assertTrue(results[1].ok)
        self.assertFalse(collector.collect_result(handles[0], date(2024, 3, 4)).ok)

    def test_upper_bound_drops_later_commits(self):
        github = Mock()
        github.list_commits.return_value = [
            _remote_commit(SHA1, 'alice', 'that day', when='2024-03-04T10:00:00Z'),
            _remote_commit(SHA2, 'alice', 'a week later', when='2024-03-11T10:00:00Z'),
        ]
        handle = RepositoryHandle('acme/api', REMOTE, default_branch='main')
        commits = CommitCollector(github, 'alice').collect(handle, date(2024, 3, 4), until=date(2024, 3, 4))
        self.assertEqual([c.first_line for c in commits], ['that day'])
        self.assertEqual(github.list_commits.call_args.kwargs['until_iso'], until_timestamp(date(2024, 3, 4)))

    def test_clones_sharing_a_project_key_report_each_commit_once(self):
        runner = Mock()
        runner.run.side_effect = lambda args, cwd: {
            '/work/api': f'{SHA1}|fix bug|2024-03-04T10:00:00Z',
            '/copy/api': f'{SHA1}|fix bug|2024-03-04T10:00:00Z\n{SHA2}|only here|2024-03-04T11:00:00Z',
        }[cwd]
        handles = [
            RepositoryHandle('acme/api', LOCAL, local_path='/work/api'),
            RepositoryHandle('acme/api', LOCAL, local_path='/copy/api'),
        ]
        results = CommitCollector(None, 'alice', runner=runner).collect_all(handles, date(2024, 3, 4), max_workers=2)
        self.assertEqual(sorted(c.sha for r in results for c in r.items), [SHA1, SHA2])


class TestPullRequestCollector(unittest.TestCase):
    def test_window_filter_ignores_what_the_server_returns(self):
        github = Mock()
        # the search ignores dates entirely in this fake
        github.search_pull_requests.return_value = [
            _pr(7, 'alice', NOW - timedelta(hours=3)),
            _pr(3, 'alice', NOW - timedelta(days=30)),
            _pr(4, 'alice', NOW - timedelta(days=30), updated=NOW - timedelta(hours=1)),
        ]
        collector = PullRequestCollector(github, 'alice', strategy='search')
        prs = collector.collect(1, now=NOW)
        self.assertEqual(sorted(p.number for p in prs), [4, 7])

    def test_search_results_from_other_authors_are_dropped(self):
        github = Mock()
        github.search_pull_requests.return_value = [_pr(7, 'alice', NOW), _pr(8, 'mallory', NOW)]
        prs = PullRequestCollector(github, 'alice', strategy='search').collect(1, now=NOW)
        self.assertEqual([p.number for p in prs], [7])

    def test_auto_falls_back_to_per_repository_listing(self):
        github = Mock()
        github.search_pull_requests.side_effect = SourceUnavailable('search/issues', 'HTTP 422')
        github.list_pull_requests.return_value = [_pr(7, 'alice', NOW), _pr(9, 'bob', NOW)]
        handles = [
            RepositoryHandle('acme/web', REMOTE),
            RepositoryHandle('acme/web', LOCAL, local_path='/src/web'),
        ]
        prs = PullRequestCollector(github, 'alice', strategy='auto').collect(1, handles, now=NOW)
        self.assertEqual([p.number for p in prs], [7])
        github.list_pull_requests.assert_called_once_with('acme/web')

    def test_search_strategy_reports_failure(self):
        github = Mock()
        github.search_pull_requests.side_effect = SourceUnavailable('search/issues', 'HTTP 500')
        results = PullRequestCollector(github, 'alice', strategy='search').collect_results(1, now=NOW)
        self.assertEqual(len(results), 1)
        self.assertFalse(results[0].ok)
        github.list_pull_requests.assert_not_called()

    def test_per_repo_strategy_skips_search(self):
        github = Mock()
        github.list_pull_requests.return_value = []
        PullRequestCollector(github, 'alice', strategy='per-repo').collect(1, [RepositoryHandle('acme/web', REMOTE)], now=NOW)
        github.search_pull_requests.assert_not_called()

    def test_window_ends_at_now(self):
        github = Mock()
        github.search_pull_requests.return_value = [
            _pr(7, 'alice', NOW - timedelta(hours=3)),
            _pr(8, 'alice', NOW + timedelta(days=5)),
            _pr(9, 'alice', NOW - timedelta(days=30), updated=NOW + timedelta(days=5)),
        ]
        prs = PullRequestCollector(github, 'alice', strategy='search').collect(1, now=NOW)
        self.assertEqual([p.number for p in prs], [7])

    def test_malformed_search_items_are_skipped(self):
        github = Mock()
        github.search_pull_requests.return_value = [
            dict(_pr(8, 'alice', NOW), user='alice', repository_url=None, base='main'),
            _pr(7, 'alice', NOW),
        ]
        results = PullRequestCollector(github, 'alice', strategy='search').collect_results(1, now=NOW)
        self.assertTrue(results[0].ok)
        self.assertEqual([p.number for p in results[0].items], [7])

    def test_unexpected_search_error_falls_back(self):
        github = Mock()
        github.search_pull_requests.side_effect = RuntimeError('boom')
        github.list_pull_requests.return_value = [_pr(7, 'alice', NOW)]
        prs = PullRequestCollector(github, 'alice', strategy='auto').collect(1, [RepositoryHandle('acme/web', REMOTE)], now=NOW)
        self.assertEqual([p.number for p in prs], [7])
        results = PullRequestCollector(github, 'alice', strategy='search').collect_results(1, now=NOW)
        self.assertIsInstance(results[0].error, SourceUnavailable)

    def test_unknown_strategy(self):
        with self.assertRaises(ValueError):
            PullRequestCollector(Mock(), 'alice', strategy='guess')


class TestFanOut(unittest.TestCase):
    def test_results_keep_input_order(self):
        handles = [RepositoryHandle(f'acme/r{i}', REMOTE) for i in range(6)]

        def work(handle):
            time.sleep(0.01 * (6 - int(handle.identity[-1])))
            return [handle.identity]

        results = fan_out(handles, work, max_workers=3)
        self.assertEqual([r.items[0] for r in results], [h.identity for h in handles])

    def test_slow_calls_time_out(self):
        handles = [RepositoryHandle('acme/fast', REMOTE), RepositoryHandle('acme/slow', REMOTE)]

        def work(handle):
            if handle.identity == 'acme/slow':
                time.sleep(1.0)
            return ['done']

        started = time.monotonic()
        results = fan_out(handles, work, max_workers=2, call_timeout=0.2)
        self.assertLess(time.monotonic() - started, 0.9)
        self.assertTrue(results[0].ok)
        self.assertFalse(results[1].ok)
        self.assertIn('timed out', str(results[1].error))

    def test_empty_input(self):
        self.assertEqual(fan_out([], lambda h: []), [])


def test_since_timestamp_is_utc():
    stamp = since_timestamp(date(2024, 3, 4))
    assert stamp.endswith('Z')
    parsed = datetime.strptime(stamp, '%Y-%m-%dT%H:%M:%SZ').replace(tzinfo=timezone.utc)
    local_midnight = datetime(2024, 3, 4).astimezone()
    assert parsed == local_midnight
