import logging

import pytest

import n8n_upgrade
from n8n_upgrade import N8nUpgrader
from updater_core.config_utils import Settings
from updater_core.models import UpgradeError


@pytest.fixture
def restore_root_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture(autouse=True)
def docker_on_path(monkeypatch):
    monkeypatch.setattr('n8n_upgrade.shutil.which', lambda cmd: f"/usr/bin/{cmd}")


def make_upgrader(tmp_path, client, tag='1.109.0'):
    return N8nUpgrader(Settings(grace_period=0), desired_tag=tag, project_dir=str(tmp_path), docker_client=client)


def up_calls(fake_compose):
    return [c for c in fake_compose.calls if 'up' in c and '--help' not in c]


def test_upgrade_rewrites_pulls_and_recreates(tmp_path, fake_compose, fake_docker):
    compose = tmp_path / 'docker-compose.yml'
    original = "services:\n  n8n:\n    image: n8nio/n8n:1.108.0\n"
    compose.write_text(original)
    client = fake_docker([(0, b'1.108.0\n'), (0, b'1.109.0\n')])

    outcome = make_upgrader(tmp_path, client).run()

    assert 'image: n8nio/n8n:1.109.0' in compose.read_text()
    backups = list(tmp_path.glob('docker-compose.yml.bak-*'))
    assert len(backups) == 1
    assert backups[0].read_text() == original
    assert client.images.pulled == ['n8nio/n8n:1.109.0']
    assert outcome.before == '1.108.0'
    assert outcome.after == '1.109.0'
    assert outcome.changed is True
    assert outcome.direction == 'upgrade'


def test_recreate_twice_when_wait_supported(tmp_path, fake_compose, fake_docker):
    compose = tmp_path / 'compose.yml'
    compose.write_text("services:\n  db:\n    image: postgres:16\n  flows:\n    image: n8nio/n8n:1.0.0\n")

    make_upgrader(tmp_path, fake_docker([(0, b'1.0.0'), (0, b'1.1.0')])).run()

    calls = up_calls(fake_compose)
    base = ['docker', 'compose', '-f', str(compose), 'up', '-d', '--no-deps']
    assert calls == [base + ['flows'], base + ['--wait', 'flows']]


def test_recreate_once_without_wait(tmp_path, fake_compose, fake_docker):
    fake_compose.wait_supported = False
    (tmp_path / 'docker-compose.yml').write_text("services:\n  n8n:\n    image: n8nio/n8n:1.0.0\n")

    make_upgrader(tmp_path, fake_docker([(0, b'1.0.0'), (0, b'1.1.0')])).run()

    calls = up_calls(fake_compose)
    assert len(calls) == 1
    assert '--wait' not in calls[0]


def test_ghcr_repository_is_prefetched(tmp_path, fake_compose, fake_docker):
    (tmp_path / 'docker-compose.yml').write_text(
        "services:\n  postgres:\n    image: postgres:16\n  n8n:\n    image: ghcr.io/n8n-io/n8n:1.0.0\n"
    )
    client = fake_docker([(0, b'1.0.0'), (0, b'1.1.0')])
    make_upgrader(tmp_path, client, tag='1.1.0').run()
    assert client.images.pulled == ['ghcr.io/n8n-io/n8n:1.1.0']


def test_missing_services_section_fails_before_mutation(tmp_path, fake_compose, fake_docker):
    compose = tmp_path / 'docker-compose.yml'
    original = "version: '3'\nn8n:\n  image: n8nio/n8n:1.0.0\n"
    compose.write_text(original)
    client = fake_docker()

    with pytest.raises(UpgradeError, match='Could not detect the n8n service'):
        make_upgrader(tmp_path, client).run()

    assert compose.read_text() == original
    assert list(tmp_path.glob('*.bak-*')) == []
    assert client.images.pulled == []
    assert up_calls(fake_compose) == []


def test_service_without_image_uses_default_repository(tmp_path, fake_compose, fake_docker):
    compose = tmp_path / 'docker-compose.yml'
    original = "services:\n  n8n:\n    build: .\n"
    compose.write_text(original)
    client = fake_docker([(0, b'1.0.0'), (0, b'1.0.0')])

    make_upgrader(tmp_path, client, tag='latest').run()

    assert compose.read_text() == original
    assert client.images.pulled == ['n8nio/n8n:latest']


def test_not_running_before_upgrade(tmp_path, fake_compose, fake_docker):
    fake_compose.container_id = ''
    (tmp_path / 'docker-compose.yml').write_text("services:\n  n8n:\n    image: n8nio/n8n:1.0.0\n")
    upgrader = make_upgrader(tmp_path, fake_docker())

    upgrader.probe_environment()
    upgrader.locate_service()
    assert upgrader.inspect_version() == ('', 'not running')


def test_recreate_failure_is_fatal(tmp_path, fake_compose, fake_docker):
    fake_compose.fail_on = '--no-deps'
    (tmp_path / 'docker-compose.yml').write_text("services:\n  n8n:\n    image: n8nio/n8n:1.0.0\n")
    with pytest.raises(UpgradeError, match='Compose command failed'):
        make_upgrader(tmp_path, fake_docker([(0, b'1.0.0')])).run()


def test_main_unchanged_version_warns_and_exits_zero(tmp_path, monkeypatch, capsys, fake_compose, fake_docker, restore_root_logging):
    monkeypatch.setenv('N8N_UPGRADE_ENV_FILE', str(tmp_path / 'missing.env'))
    for var in ('LOG_FORMAT', 'LOG_FILE', 'LOG_LEVEL', 'WEBHOOK_URL'):
        monkeypatch.delenv(var, raising=False)
    (tmp_path / 'docker-compose.yml').write_text("services:\n  n8n:\n    image: n8nio/n8n:1.0.0\n")
    client = fake_docker([(1, b''), (1, b''), (1, b''), (1, b'')])
    monkeypatch.setattr('n8n_upgrade.du.init_docker_client', lambda logger: client)

    rc = n8n_upgrade.main(['1.1.0', '--project-dir', str(tmp_path), '--grace-period', '0'])

    assert rc == 0
    err = capsys.readouterr().err
    assert '[WARN] Version appears unchanged' in err
    assert '[ERROR]' not in err


def test_main_fatal_error_exits_one(tmp_path, monkeypatch, capsys, fake_compose, restore_root_logging):
    monkeypatch.setenv('N8N_UPGRADE_ENV_FILE', str(tmp_path / 'missing.env'))
    for var in ('LOG_FORMAT', 'LOG_FILE', 'LOG_LEVEL', 'WEBHOOK_URL'):
        monkeypatch.delenv(var, raising=False)

    rc = n8n_upgrade.main(['--project-dir', str(tmp_path)])

    assert rc == 1
    assert '[ERROR] No docker-compose.yml' in capsys.readouterr().err


def test_override_file_is_passed_to_compose(tmp_path, fake_compose, fake_docker):
    compose = tmp_path / 'docker-compose.yml'
    override = tmp_path / 'docker-compose.override.yml'
    compose.write_text("services:\n  n8n:\n    image: n8nio/n8n:1.0.0\n")
    override.write_text("services:\n  n8n:\n    environment:\n      - N8N_HOST=flows.example.com\n")

    make_upgrader(tmp_path, fake_docker([(0, b'1.0.0'), (0, b'1.1.0')])).run()

    files = ['-f', str(compose), '-f', str(override)]
    calls = up_calls(fake_compose)
    assert calls == [
        ['docker', 'compose', *files, 'up', '-d', '--no-deps', 'n8n'],
        ['docker', 'compose', *files, 'up', '-d', '--no-deps', '--wait', 'n8n'],
    ]
    ps_calls = [c for c in fake_compose.calls if 'ps' in c]
    assert ps_calls and all(c[2:6] == files for c in ps_calls)
    assert 'N8N_HOST' in override.read_text()


def test_main_handles_non_utf8_compose_file(tmp_path, monkeypatch, capsys, fake_compose, fake_docker, restore_root_logging):
    monkeypatch.setenv('N8N_UPGRADE_ENV_FILE', str(tmp_path / 'missing.env'))
    for var in ('LOG_FORMAT', 'LOG_FILE', 'LOG_LEVEL', 'WEBHOOK_URL'):
        monkeypatch.delenv(var, raising=False)
    compose = tmp_path / 'docker-compose.yml'
    compose.write_bytes(b"# caf\xe9 workflows\nservices:\n  n8n:\n    image: n8nio/n8n:1.0.0\n")
    client = fake_docker([(0, b'1.0.0'), (0, b'1.1.0')])
    monkeypatch.setattr('n8n_upgrade.du.init_docker_client', lambda logger: client)

    rc = n8n_upgrade.main(['1.1.0', '--project-dir', str(tmp_path), '--grace-period', '0'])

    assert rc == 0
    assert compose.read_bytes() == b"# caf\xe9 workflows\nservices:\n  n8n:\n    image: n8nio/n8n:1.1.0\n"
    assert client.images.pulled == ['n8nio/n8n:1.1.0']


def test_main_unwritable_log_file_falls_back_to_console(tmp_path, monkeypatch, capsys, fake_compose, restore_root_logging):
    monkeypatch.setenv('N8N_UPGRADE_ENV_FILE', str(tmp_path / 'missing.env'))
    for var in ('LOG_FORMAT', 'LOG_LEVEL', 'WEBHOOK_URL'):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv('LOG_FILE', str(tmp_path / 'no-such-dir' / 'upgrade.log'))

    rc = n8n_upgrade.main(['--project-dir', str(tmp_path)])

    assert rc == 1
    err = capsys.readouterr().err
    assert '[WARN] Cannot write log file' in err
    assert '[ERROR] No docker-compose.yml' in err
