import os

import pytest

from ingest.errors import FatalConfiguration
from settings import load_settings, Settings, DEFAULTS


def test_defaults_without_file_or_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    settings = load_settings(environ={})
    assert settings.max_workers == 8
    assert settings.call_timeout == 30.0
    assert settings.pr_strategy == 'auto'
    assert settings.github_token == ''


def test_yaml_then_env_then_overrides(tmp_path):
    cfg = tmp_path / 'timetracker.yaml'
    cfg.write_text('max_workers: 4\npr_strategy: per-repo\nlocal_roots:\n  - ~/code\nunknown_key: 1\n', encoding='utf-8')
    env = {'TIMETRACKER_WORKERS': '6', 'GITHUB_TOKEN': 'abc'}
    settings = load_settings(str(cfg), environ=env)
    assert settings.max_workers == 6
    assert settings.pr_strategy == 'per-repo'
    assert settings.github_token == 'abc'
    assert settings.roots == [os.path.expanduser('~/code')]

    overridden = settings.with_overrides(max_workers=2, pr_strategy=None)
    assert overridden.max_workers == 2
    assert overridden.pr_strategy == 'per-repo'


def test_config_path_from_environment(tmp_path):
    cfg = tmp_path / 'custom.yaml'
    cfg.write_text('pr_days: 3\n', encoding='utf-8')
    assert load_settings(environ={'TIMETRACKER_CONFIG': str(cfg)}).pr_days == 3


def test_dedicated_token_variable_wins(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    settings = load_settings(environ={'GITHUB_TOKEN': 'generic', 'TIMETRACKER_GITHUB_TOKEN': 'dedicated'})
    assert settings.github_token == 'dedicated'
    assert settings.as_dict()['github_token'] == '***'


def test_roots_from_environment(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    settings = load_settings(environ={'TIMETRACKER_LOCAL_ROOTS': os.pathsep.join(['/a', '/b'])})
    assert settings.roots == ['/a', '/b']


def test_missing_explicit_file(tmp_path):
    with pytest.raises(FatalConfiguration):
        load_settings(str(tmp_path / 'missing.yaml'), environ={})


def test_malformed_yaml(tmp_path):
    cfg = tmp_path / 'bad.yaml'
    cfg.write_text('max_workers: [1, 2\n', encoding='utf-8')
    with pytest.raises(FatalConfiguration):
        load_settings(str(cfg), environ={})


def test_yaml_must_be_a_mapping(tmp_path):
    cfg = tmp_path / 'list.yaml'
    cfg.write_text('- a\n- b\n', encoding='utf-8')
    with pytest.raises(FatalConfiguration):
        load_settings(str(cfg), environ={})


@pytest.mark.parametrize('env', [{'TIMETRACKER_WORKERS': 'many'}, {'TIMETRACKER_TIMEOUT': 'soon'}])
def test_bad_numeric_env(tmp_path, monkeypatch, env):
    monkeypatch.chdir(tmp_path)
    with pytest.raises(FatalConfiguration):
        load_settings(environ=env)


@pytest.mark.parametrize('values', [{'max_workers': 0}, {'call_timeout': 0}, {'pr_days': -1}, {'pr_strategy': 'guess'}])
def test_validation(values):
    with pytest.raises(FatalConfiguration):
        Settings(**values)


def test_every_default_is_exposed():
    settings = Settings()
    for key in DEFAULTS:
        assert hasattr(settings, key)
