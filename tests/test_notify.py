from __future__ import annotations

import asyncio
import logging
import shlex
import sys
from pathlib import Path

import pytest

from mergewatch.notify import CommandSink, LoggingSink, NotificationEvent, Notifier


class RecordingSink:
    def __init__(self) -> None:
        self.events: list[NotificationEvent] = []

    def notify(self, event: NotificationEvent) -> None:
        self.events.append(event)


class BrokenSink:
    def notify(self, event: NotificationEvent) -> None:
        raise RuntimeError("relay down")


def test_failing_sink_does_not_stop_delivery() -> None:
    recorder = RecordingSink()
    notifier = Notifier([BrokenSink(), recorder])

    event = notifier.emit("completed", run_id="1")

    assert recorder.events == [event]
    assert notifier.events == [event]


def test_history_keeps_only_recent_events() -> None:
    recorder = RecordingSink()
    notifier = Notifier([recorder], history_limit=3)

    for index in range(5):
        notifier.emit(f"event-{index}")

    assert [event.type for event in notifier.events] == ["event-2", "event-3", "event-4"]
    assert len(recorder.events) == 5


def test_event_level_and_message() -> None:
    assert NotificationEvent("merge_failed", {"summary": "MERGE_FAILED run=1"}).level == "error"
    assert NotificationEvent("merge_failed", {"summary": "MERGE_FAILED run=1"}).message == (
        "mergewatch: MERGE_FAILED run=1"
    )
    assert NotificationEvent("completed").level == "info"
    assert NotificationEvent("completed").message == "mergewatch: completed"


def test_logging_sink_handles_reserved_keys(caplog: pytest.LogCaptureFixture) -> None:
    sink = LoggingSink()

    with caplog.at_level(logging.DEBUG, logger="mergewatch.events"):
        sink.notify(NotificationEvent("timeout", {"name": "CI", "args": "x", "elapsed": 3.0}))
        sink.notify(NotificationEvent("status", {"status": "running"}))

    timeout, status = caplog.records
    assert timeout.levelno == logging.WARNING
    assert timeout.event_name == "CI"
    assert timeout.elapsed == 3.0
    assert status.levelno == logging.DEBUG


def test_command_sink_substitutes_placeholders() -> None:
    sink = CommandSink("notify-send --urgency={level} '{event}' \"{message}\"")
    event = NotificationEvent("merge_success", {"summary": "SUCCESS run=1"})

    assert sink.build_args(event) == [
        "notify-send",
        "--urgency=info",
        "merge_success",
        "mergewatch: SUCCESS run=1",
    ]


def test_command_sink_appends_message_without_placeholders() -> None:
    sink = CommandSink("npx claude-flow hooks notify --message")

    assert sink.build_args(NotificationEvent("timeout"))[-2:] == ["--message", "mergewatch: timeout"]


def test_command_sink_rejects_empty_command() -> None:
    with pytest.raises(ValueError):
        CommandSink("   ")


def test_command_sink_without_loop_is_skipped() -> None:
    CommandSink("true").notify(NotificationEvent("completed"))


def test_command_sink_runs_command(tmp_path: Path) -> None:
    output = tmp_path / "out.txt"
    script = tmp_path / "relay.py"
    script.write_text(
        "import sys\n"
        f"open({str(output)!r}, 'a').write(' '.join(sys.argv[1:]) + '\\n')\n",
        encoding="utf-8",
    )
    sink = CommandSink(
        f"{shlex.quote(sys.executable)} {shlex.quote(str(script))} {{event}}", events=["completed"]
    )

    async def scenario() -> None:
        notifier = Notifier([sink])
        notifier.emit("status")
        notifier.emit("completed")
        await notifier.drain()

    asyncio.run(scenario())

    assert output.read_text(encoding="utf-8") == "completed\n"


def test_command_sink_missing_executable_is_logged(tmp_path: Path) -> None:
    sink = CommandSink(str(tmp_path / "missing-binary"))

    async def scenario() -> None:
        sink.notify(NotificationEvent("completed"))
        await sink.drain()

    asyncio.run(scenario())
