from datetime import datetime, timezone

from typer.testing import CliRunner

from client.chat_cli import app, format_message, status_table
from client.manager import ConnectionManager
from shared.protocol import ChatMessage, MessageKind

runner = CliRunner()

CLEAN_ENV = {"KABAW_USERNAME": None, "KABAW_CHANNEL": None, "KABAW_SERVER": None}


def test_endpoint_command_prints_encoded_url(tmp_path):
    result = runner.invoke(
        app,
        ["endpoint", "--username", "alice smith", "--channel", "general",
         "--server", "ws://localhost:8080/ws", "--config", str(tmp_path / "none.yaml")],
        env=CLEAN_ENV,
    )
    assert result.exit_code == 0
    assert "ws://localhost:8080/ws?username=alice%20smith&channel=general" in result.output


def test_endpoint_reads_username_from_config(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("username: bob\nchannel: ops\n")
    result = runner.invoke(app, ["endpoint", "--config", str(path)], env=CLEAN_ENV)
    assert result.exit_code == 0
    assert "username=bob&channel=ops" in result.output


def test_username_is_required(tmp_path):
    result = runner.invoke(app, ["endpoint", "--config", str(tmp_path / "none.yaml")], env=CLEAN_ENV)
    assert result.exit_code != 0

    result = runner.invoke(
        app, ["endpoint", "--username", "   ", "--config", str(tmp_path / "none.yaml")], env=CLEAN_ENV
    )
    assert result.exit_code != 0


def test_format_message():
    when = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
    system = ChatMessage(kind=MessageKind.SYSTEM, content="[b]maintenance[/b]", timestamp=when)
    assert "\\[b]maintenance" in format_message(system)

    mine = ChatMessage(kind=MessageKind.CHAT, content="hi", timestamp=when, username="alice", user_id="u-1")
    assert "(you)" in format_message(mine, own_id="u-1")
    assert "(you)" not in format_message(mine, own_id="u-2")


def test_status_table_lists_connection():
    manager = ConnectionManager("ws://localhost:8080/ws", "alice", "general")
    table = status_table(manager)
    assert table.row_count == 7
