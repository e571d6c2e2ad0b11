"""Tests for the kindling CLI."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from conftest import FakeClient
from typer.testing import CliRunner

from kindling.__main__ import app
from kindling.config import load_config
from kindling.models import KindlingConfig, RoomInfo
from kindling.session import Session

runner = CliRunner()


def _client(session: Session, subdomain: str = "acme") -> FakeClient:
    client = session.accounts[subdomain].client
    assert isinstance(client, FakeClient)
    return client


@pytest.fixture
def configured(
    config: KindlingConfig, session: Session, kindling_home: Path
) -> Iterator[MagicMock]:
    """Serve the shared config and session to the CLI; yields the builder mock."""
    with (
        patch("kindling.__main__.load_config", return_value=config),
        patch("kindling.__main__.build_session", return_value=session) as build,
    ):
        yield build


class TestVersion:
    def test_prints_version(self) -> None:
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert result.output.startswith("kindling ")


class TestSay:
    def test_default_room(self, configured: MagicMock, session: Session) -> None:
        result = runner.invoke(app, ["say", "hi"])
        assert result.exit_code == 0, result.output
        assert "Sent to acme/watercooler." in result.output
        assert _client(session).posts == [("message", "watercooler", "hi")]
        assert _client(session, "globex").posts == []
        assert configured.call_args.kwargs == {"with_handlers": False}

    def test_joins_words(self, configured: MagicMock, session: Session) -> None:
        result = runner.invoke(app, ["say", "lunch", "at", "noon?"])
        assert result.exit_code == 0
        assert _client(session).posts == [("message", "watercooler", "lunch at noon?")]

    def test_exactly_one_post(self, configured: MagicMock, session: Session) -> None:
        result = runner.invoke(app, ["say", "-s", "acme", "-r", "watercooler", "hi"])
        assert result.exit_code == 0, result.output
        assert _client(session).posts == [("message", "watercooler", "hi")]
        assert _client(session, "globex").posts == []

    def test_explicit_room(self, configured: MagicMock, session: Session) -> None:
        result = runner.invoke(app, ["say", "-s", "globex", "-r", "lobby", "hello"])
        assert result.exit_code == 0
        assert "Sent to globex/lobby." in result.output
        assert _client(session, "globex").posts == [("message", "lobby", "hello")]
        assert _client(session).posts == []

    def test_subdomain_alone_uses_default(
        self, configured: MagicMock, session: Session
    ) -> None:
        result = runner.invoke(app, ["say", "--subdomain", "globex", "hi"])
        assert result.exit_code == 0
        assert _client(session).posts == [("message", "watercooler", "hi")]

    def test_unknown_account(self, configured: MagicMock, session: Session) -> None:
        result = runner.invoke(app, ["say", "-s", "initech", "-r", "lobby", "hi"])
        assert result.exit_code == 1
        assert "Error: No account configured for subdomain 'initech'" in result.output
        assert _client(session).closed

    def test_missing_config(self, kindling_home: Path) -> None:
        result = runner.invoke(app, ["say", "hi"])
        assert result.exit_code == 1
        assert "kindling setup" in result.output


class TestPaste:
    def test_from_stdin(self, configured: MagicMock, session: Session) -> None:
        result = runner.invoke(app, ["paste", "--from", "stdin"], input="2+2 => 4")
        assert result.exit_code == 0, result.output
        assert _client(session).posts == [("paste", "watercooler", "2+2 => 4")]
        assert "Pasted 1 line(s) to acme/watercooler." in result.output

    def test_from_file(
        self, configured: MagicMock, session: Session, tmp_path: Path
    ) -> None:
        path = tmp_path / "trace.txt"
        path.write_text("one\ntwo\nthree\n")
        result = runner.invoke(
            app, ["paste", "--from", "file", str(path), "-s", "acme", "-r", "ops"]
        )
        assert result.exit_code == 0, result.output
        assert _client(session).posts == [("paste", "ops", "one\ntwo\nthree\n")]
        assert "Pasted 3 line(s) to acme/ops." in result.output

    def test_empty_stdin(self, configured: MagicMock, session: Session) -> None:
        result = runner.invoke(app, ["paste", "--from", "stdin"], input="\n")
        assert result.exit_code == 1
        assert "Nothing to paste from stdin" in result.output
        assert _client(session).posts == []

    def test_bad_source(self, configured: MagicMock) -> None:
        result = runner.invoke(app, ["paste", "--from", "carrier-pigeon"])
        assert result.exit_code == 2


class TestRooms:
    def test_all_accounts(self, configured: MagicMock, session: Session) -> None:
        kitchen = RoomInfo(id=9, name="kitchen", topic="snacks")
        _client(session).room_infos.append(kitchen)
        result = runner.invoke(app, ["rooms"])
        assert result.exit_code == 0, result.output
        assert result.output.splitlines() == [
            "acme",
            "  * watercooler",
            "  * ops",
            "    kitchen  snacks",
            "globex",
            "  * lobby",
        ]
        assert _client(session).closed

    def test_one_account(self, configured: MagicMock, session: Session) -> None:
        result = runner.invoke(app, ["rooms", "globex"])
        assert result.exit_code == 0
        assert result.output.splitlines() == ["globex", "  * lobby"]

    def test_unknown_account(self, configured: MagicMock) -> None:
        result = runner.invoke(app, ["rooms", "initech"])
        assert result.exit_code == 1
        assert "initech" in result.output


class TestAccountList:
    def test_lists_accounts(self, configured: MagicMock, session: Session) -> None:
        result = runner.invoke(app, ["account", "list"])
        assert result.exit_code == 0, result.output
        assert result.output.splitlines() == [
            "acme  https://acme.campfirenow.com",
            "  * watercooler",
            "    ops",
            "globex  https://globex.campfirenow.com",
            "    lobby",
        ]
        assert _client(session).closed

    def test_no_accounts(self, kindling_home: Path) -> None:
        empty = Session({})
        with (
            patch("kindling.__main__.load_config", return_value=KindlingConfig()),
            patch("kindling.__main__.build_session", return_value=empty),
        ):
            result = runner.invoke(app, ["account", "list"])
        assert result.exit_code == 0
        assert "No accounts configured" in result.output


class TestStartStop:
    def test_start_detached(self, configured: MagicMock, kindling_home: Path) -> None:
        with patch("kindling.__main__.start_detached", return_value=4321) as start:
            result = runner.invoke(app, ["start"])
        assert result.exit_code == 0, result.output
        assert "Daemon started (pid 4321)" in result.output
        start.assert_called_once_with(
            kindling_home / "kindling.pid",
            kindling_home / "kindling.log",
            config_path=None,
            verbose=False,
        )

    def test_start_foreground(
        self,
        configured: MagicMock,
        session: Session,
        config: KindlingConfig,
        kindling_home: Path,
    ) -> None:
        with patch("kindling.__main__.Daemon") as daemon_cls:
            daemon_cls.return_value.run = AsyncMock()
            result = runner.invoke(app, ["start", "--no-detach"])
        assert result.exit_code == 0, result.output
        configured.assert_called_once_with(config)
        args, kwargs = daemon_cls.call_args
        assert args[0] is session
        assert args[1].path == kindling_home / "kindling.pid"
        assert kwargs == {"interval": 1.0, "max_backoff": 8.0}
        daemon_cls.return_value.run.assert_awaited_once()
        assert (kindling_home / "kindling.log").exists()

    def test_start_without_config(self, kindling_home: Path) -> None:
        with patch("kindling.__main__.start_detached") as start:
            result = runner.invoke(app, ["start"])
        assert result.exit_code == 1
        assert "kindling setup" in result.output
        start.assert_not_called()

    def test_stop(self, kindling_home: Path) -> None:
        with patch("kindling.__main__.stop_daemon", return_value=4321):
            result = runner.invoke(app, ["stop"])
        assert result.exit_code == 0
        assert "Daemon stopped (pid 4321)." in result.output

    def test_stop_not_running(self, kindling_home: Path) -> None:
        result = runner.invoke(app, ["stop"])
        assert result.exit_code == 1
        assert "Error: Daemon is not running." in result.output


class TestSetup:
    def test_creates_config(self, kindling_home: Path) -> None:
        answers = "acme\nsecret\n\nwatercooler, ops\nn\ntranscript, confetti\n"
        result = runner.invoke(app, ["setup"], input=answers)
        assert result.exit_code == 0, result.output
        path = kindling_home / "config.toml"
        assert f"Created {path}" in result.output
        assert "Ignoring unknown plugin(s): confetti" in result.output
        config = load_config(path)
        assert config.accounts[0].subdomain == "acme"
        assert config.accounts[0].token == "secret"
        assert config.accounts[0].rooms == ("watercooler", "ops")
        assert config.default_account == "acme"
        assert config.default_room == "watercooler"
        assert config.plugins == ("transcript",)

    def test_retries_invalid_account(self, kindling_home: Path) -> None:
        answers = "acme.evil\nsecret\n\n\nacme\nsecret\nn\nlobby\nn\n\n"
        result = runner.invoke(app, ["setup"], input=answers)
        assert result.exit_code == 0, result.output
        assert "Invalid account" in result.output
        config = load_config(kindling_home / "config.toml")
        assert [a.subdomain for a in config.accounts] == ["acme"]
        assert config.accounts[0].ssl is False

    def test_refuses_to_overwrite(self, kindling_home: Path) -> None:
        kindling_home.mkdir(parents=True)
        (kindling_home / "config.toml").write_text("# mine\n")
        result = runner.invoke(app, ["setup"])
        assert result.exit_code == 1
        assert "already exists" in result.output
        assert (kindling_home / "config.toml").read_text() == "# mine\n"


class TestLog:
    def test_tail(self, kindling_home: Path) -> None:
        kindling_home.mkdir(parents=True)
        log = kindling_home / "kindling.log"
        log.write_text("one\ntwo\nthree\n")
        result = runner.invoke(app, ["log", "tail", "-n", "2", "--no-follow"])
        assert result.exit_code == 0
        assert result.output.splitlines() == ["two", "three"]

    def test_view(self, kindling_home: Path) -> None:
        kindling_home.mkdir(parents=True)
        (kindling_home / "kindling.log").write_text("started\nstopped\n")
        result = runner.invoke(app, ["log", "view"])
        assert result.exit_code == 0
        assert "started\nstopped" in result.output

    def test_no_log(self, kindling_home: Path) -> None:
        result = runner.invoke(app, ["log", "tail", "--no-follow"])
        assert result.exit_code == 1
        assert "No log at" in result.output
