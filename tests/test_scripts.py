# tests/test_scripts.py
"""Tests for the operator scripts: migrations and the snapshot CLI."""

from pathlib import Path

import pytest
from sqlalchemy import create_engine, inspect

from webhook_relay.core.settings import settings
from webhook_relay.scripts import snapshot as snapshot_cli
from webhook_relay.scripts.migrate import run_upgrade_head


@pytest.fixture
def cli_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Point the CLI at a throwaway database and snapshot directory."""
    monkeypatch.setattr(settings, "database_url", f"sqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setattr(settings, "snapshot_dir", str(tmp_path / "snapshots"))
    monkeypatch.setattr(settings, "github_token", None)
    monkeypatch.setattr(settings, "github_repo", None)
    return tmp_path


def test_upgrade_head_creates_registry_tables(tmp_path: Path) -> None:
    """Migrations produce the same tables the models describe."""
    url = f"sqlite:///{tmp_path / 'migrated.db'}"

    run_upgrade_head(url)

    engine = create_engine(url)
    try:
        tables = set(inspect(engine).get_table_names())
        columns = {c["name"] for c in inspect(engine).get_columns("channel_webhooks")}
    finally:
        engine.dispose()
    assert {"server_admins", "guilds", "channel_webhooks"} <= tables
    assert {"webhook_url", "guild_id", "send_bot_messages", "registered_by_admin_id"} <= columns


def test_upgrade_prefers_the_injected_url(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """An explicit URL wins over ALEMBIC_URL from the environment."""
    monkeypatch.setenv("ALEMBIC_URL", f"sqlite:///{tmp_path / 'ambient.db'}")
    url = f"sqlite:///{tmp_path / 'explicit.db'}"

    run_upgrade_head(url)

    engine = create_engine(url)
    try:
        assert "channel_webhooks" in inspect(engine).get_table_names()
    finally:
        engine.dispose()
    assert not (tmp_path / "ambient.db").exists()


def test_cli_backup_and_list(cli_settings: Path, capsys: pytest.CaptureFixture[str]) -> None:
    """A backup from the CLI shows up in the listing."""
    assert snapshot_cli.main(["backup"]) == 0
    created = capsys.readouterr().out

    assert snapshot_cli.main(["list"]) == 0
    listing = capsys.readouterr().out

    assert "[snapshot] created backup-" in created
    assert "1 snapshots in local storage" in listing
    assert len(list((cli_settings / "snapshots").iterdir())) == 1


def test_cli_restore_latest(cli_settings: Path, capsys: pytest.CaptureFixture[str]) -> None:
    """Restoring without a name picks the newest snapshot."""
    snapshot_cli.main(["backup"])
    capsys.readouterr()

    assert snapshot_cli.main(["restore"]) == 0
    out = capsys.readouterr().out
    assert "(merge)" in out
    assert "channel_webhooks: 0 inserted" in out


def test_cli_replace_requires_yes(cli_settings: Path, capsys: pytest.CaptureFixture[str]) -> None:
    """Replace restores are refused without --yes."""
    assert snapshot_cli.main(["restore", "--replace"]) == 2
    assert "--yes" in capsys.readouterr().err


def test_cli_reports_missing_snapshot(
    cli_settings: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    """Relay errors are printed and turned into a non-zero exit code."""
    assert snapshot_cli.main(["details", "backup-2020-01-01T00-00-00-000Z"]) == 1
    assert "[snapshot] ERROR" in capsys.readouterr().err


def test_cli_remote_without_configuration(
    cli_settings: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    """Remote commands fail cleanly when GitHub storage is not configured."""
    assert snapshot_cli.main(["list", "--remote"]) == 1
    assert "not configured" in capsys.readouterr().err


def test_parser_requires_a_command() -> None:
    """Running without a subcommand is a usage error."""
    with pytest.raises(SystemExit):
        snapshot_cli.build_parser().parse_args([])
