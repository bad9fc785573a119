"""Tests for the scripts/send_broadcast.py operator CLI."""
import argparse
import importlib.util
import textwrap
import time
from pathlib import Path

import pytest

import broadcast.service as service_module
from conftest import FakeSender

_SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "send_broadcast.py"


def _load_cli():
    spec = importlib.util.spec_from_file_location("send_broadcast", _SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class TimedSender(FakeSender):
    def __init__(self):
        super().__init__()
        self.times: list[float] = []

    async def send(self, chat_id, text, media=None):
        self.times.append(time.monotonic())
        return await super().send(chat_id, text, media)


@pytest.fixture
def cli():
    return _load_cli()


@pytest.fixture
def sender(monkeypatch):
    fake = TimedSender()

    class StubTelegram:
        @classmethod
        def from_settings(cls, *args, **kwargs):
            return fake

    monkeypatch.setattr(service_module, "TelegramSender", StubTelegram)
    return fake


@pytest.fixture
def make_args(tmp_path):
    def _make(ids, config="", **overrides):
        ids_file = tmp_path / "ids.txt"
        ids_file.write_text("# vip list\n" + "\n".join(str(i) for i in ids) + "\n")
        config_file = tmp_path / "settings.yaml"
        config_file.write_text(textwrap.dedent(config) or "app_name: cli\n")
        values = dict(ids_file=str(ids_file), text="hello", media=None, media_kind="photo",
                      chunk_size=None, pause_ms=None, rps=0, timeout=5, config=str(config_file))
        values.update(overrides)
        return argparse.Namespace(**values)
    return _make


class TestSendBroadcastCli:
    def test_read_ids_skips_comments(self, cli, tmp_path):
        path = tmp_path / "ids.txt"
        path.write_text("1\n\n# skip\n2  # trailing\n")
        assert cli.read_ids(str(path)) == [1, 2]

    @pytest.mark.asyncio
    async def test_sends_and_reports(self, cli, sender, make_args, capsys):
        code = await cli.run_broadcast(make_args([1, 2, 3], chunk_size=2, pause_ms=0))

        out = capsys.readouterr().out
        assert code == 0
        assert "Planned 3 recipients in 2 chunks." in out
        assert "Done: 3 sent, 0 failed." in out
        assert [chat_id for chat_id, _, _ in sender.sent] == [1, 2, 3]
        assert sender.closed

    @pytest.mark.asyncio
    async def test_pause_spaces_chunk_sends(self, cli, sender, make_args):
        code = await cli.run_broadcast(make_args([1, 2, 3], chunk_size=1, pause_ms=100))

        assert code == 0
        assert len(sender.times) == 3
        assert sender.times[-1] - sender.times[0] >= 0.15

    @pytest.mark.asyncio
    async def test_queue_full_is_reported_not_raised(self, cli, sender, make_args, capsys):
        config = """
            queue:
              max_depth: 1
        """
        code = await cli.run_broadcast(make_args([1, 2, 3], config=config, chunk_size=1, pause_ms=0))

        assert code == 2
        assert "Rejected: Ready queue is full" in capsys.readouterr().out
        assert sender.sent == []

    @pytest.mark.asyncio
    async def test_disabled_flag(self, cli, sender, make_args, capsys):
        config = """
            flags:
              broadcasts_enabled: false
        """
        code = await cli.run_broadcast(make_args([1], config=config))

        assert code == 2
        assert "disabled" in capsys.readouterr().out
