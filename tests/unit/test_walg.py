"""
Unit tests for the wal-g command wrapper (walg_runner/backup/walg.py).

Uses a shell script standing in for the wal-g binary.
"""

from dataclasses import replace

import pytest

from walg_runner.backup.walg import WalgClient, WalgError


@pytest.fixture
def client_factory(settings, fake_walg_binary):
    def factory(**tool_env):
        return WalgClient(replace(settings, walg_binary=str(fake_walg_binary), tool_env=tool_env))
    return factory


class TestWalgClient:
    """Test wal-g invocation."""

    def test_storage_prefix_passed_to_tool(self, client_factory, settings):
        result = client_factory().backup_list()

        assert result.ok
        assert 'args: backup-list' in result.output
        assert f'prefix: {settings.storage_prefix}' in result.output

    def test_backup_push_keeps_delta_setting(self, client_factory, settings):
        result = client_factory(WALG_DELTA_MAX_STEPS='6').backup_push(settings.pgdata)

        assert f'args: backup-push {settings.pgdata}' in result.output
        assert '--full' not in result.output
        assert 'delta steps: 6' in result.output

    def test_forced_full_push_drops_delta_setting(self, client_factory, settings):
        client = client_factory(WALG_DELTA_MAX_STEPS='6')

        result = client.backup_push(settings.pgdata, force_full=True)

        assert f'args: backup-push {settings.pgdata} --full' in result.output
        assert 'delta steps: unset' in result.output
        # The client's own environment is untouched
        assert client.base_env['WALG_DELTA_MAX_STEPS'] == '6'

    def test_delete_commands(self, client_factory):
        client = client_factory()

        assert 'args: delete before base_20240106T000000Z --confirm' in \
            client.delete_before('base_20240106T000000Z').output
        assert 'args: delete retain FULL 3 --confirm' in client.delete_retain_full(3).output

    def test_non_zero_exit(self, client_factory):
        result = client_factory(FAKE_WALG_EXIT='1').backup_list()

        assert result.returncode == 1
        assert not result.ok

    def test_output_appended_to_log(self, client_factory, tmp_path):
        log_path = tmp_path / 'backup.log'
        log_path.write_text('earlier run\n')

        result = client_factory().delete_retain_full(2, log_path=str(log_path))

        content = log_path.read_text()
        assert content.startswith('earlier run\n')
        assert content.endswith(result.output)

    def test_missing_binary(self, settings):
        client = WalgClient(replace(settings, walg_binary='/nonexistent/wal-g'))

        assert client.is_available() is False
        with pytest.raises(WalgError):
            client.backup_list()

    def test_is_available(self, client_factory):
        assert client_factory().is_available() is True

    def test_unwritable_log_path(self, client_factory, tmp_path):
        client = client_factory()

        with pytest.raises(WalgError) as exc_info:
            client.delete_retain_full(2, log_path=str(tmp_path / 'missing' / 'run.log'))

        assert 'Cannot open log file' in str(exc_info.value)
