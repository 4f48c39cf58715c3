"""Fire-and-forget event delivery."""

from __future__ import annotations

import asyncio
import logging
import shlex
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Protocol

from .gh.utils import sanitize_environment

logger = logging.getLogger(__name__)

_EVENT_LEVELS = {
    "timeout": "warning",
    "source_failed": "error",
    "cancelled": "warning",
    "completion_failure": "error",
    "merge_blocked": "warning",
    "merge_failed": "error",
}

# High-frequency events stay at debug so the console shows transitions only.
_QUIET_EVENTS = {"status"}


@dataclass(slots=True)
class NotificationEvent:
    type: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def level(self) -> str:
        return _EVENT_LEVELS.get(self.type, "info")

    @property
    def message(self) -> str:
        summary = self.payload.get("summary")
        return f"mergewatch: {summary}" if summary else f"mergewatch: {self.type}"


class NotificationSink(Protocol):
    def notify(self, event: NotificationEvent) -> None:
        ...


class Notifier:
    """Synchronous observer list invoked after each state transition.

    Sink failures are logged and dropped; delivery never interrupts the
    caller. Only the most recent ``history_limit`` events are kept.
    """

    def __init__(
        self,
        sinks: Iterable[NotificationSink] | None = None,
        *,
        history_limit: int = 200,
    ) -> None:
        self._sinks: list[NotificationSink] = list(sinks or [])
        self._history: deque[NotificationEvent] = deque(maxlen=history_limit)

    def subscribe(self, sink: NotificationSink) -> None:
        self._sinks.append(sink)

    @property
    def events(self) -> list[NotificationEvent]:
        return list(self._history)

    def emit(self, event_type: str, **payload: Any) -> NotificationEvent:
        event = NotificationEvent(type=event_type, payload=payload)
        self._history.append(event)
        for sink in self._sinks:
            try:
                sink.notify(event)
            except Exception as exc:  # sinks are untrusted relays
                logger.warning(
                    "Notification sink failed",
                    extra={"sink": type(sink).__name__, "event": event_type, "error": str(exc)},
                )
        return event

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait for sinks with in-flight deliveries."""

        for sink in self._sinks:
            drain = getattr(sink, "drain", None)
            if drain is not None:
                await drain(timeout)


class LoggingSink:
    """Relays events to the module logger."""

    def __init__(self, name: str = "mergewatch.events") -> None:
        self._logger = logging.getLogger(name)

    def notify(self, event: NotificationEvent) -> None:
        level = logging.DEBUG if event.type in _QUIET_EVENTS else getattr(
            logging, event.level.upper(), logging.INFO
        )
        self._logger.log(level, event.message, extra={"event": event.type, **_flatten(event.payload)})


class CommandSink:
    """Runs an external notify command per event without waiting for it.

    Tokens ``{event}``, ``{message}`` and ``{level}`` in the command are
    substituted; without any placeholder the message is appended.
    """

    def __init__(self, command: str, *, events: Iterable[str] | None = None) -> None:
        self._argv = shlex.split(command)
        if not self._argv:
            raise ValueError("notify command must not be empty")
        self._events = set(events) if events is not None else None
        self._pending: set[asyncio.Task[None]] = set()

    def build_args(self, event: NotificationEvent) -> list[str]:
        has_placeholder = any("{" in token for token in self._argv)
        args = [
            token.replace("{event}", event.type)
            .replace("{message}", event.message)
            .replace("{level}", event.level)
            for token in self._argv
        ]
        if not has_placeholder:
            args.append(event.message)
        return args

    def notify(self, event: NotificationEvent) -> None:
        if self._events is not None and event.type not in self._events:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; notify command skipped", extra={"event": event.type})
            return
        task = loop.create_task(self._run(self.build_args(event)))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _run(self, args: list[str]) -> None:
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                env=sanitize_environment(),
            )
            _, stderr = await process.communicate()
        except OSError as exc:
            logger.warning("Notify command could not start", extra={"command": args[0], "error": str(exc)})
            return
        if process.returncode:
            logger.warning(
                "Notify command failed",
                extra={
                    "command": args[0],
                    "returncode": process.returncode,
                    "stderr": stderr.decode("utf-8", errors="replace")[:400],
                },
            )

    async def drain(self, timeout: float = 5.0) -> None:
        if not self._pending:
            return
        _, still_pending = await asyncio.wait(set(self._pending), timeout=timeout)
        for task in still_pending:
            task.cancel()


def _flatten(payload: dict[str, Any]) -> dict[str, Any]:
    # LogRecord attributes cannot be overwritten through ``extra``.
    reserved = set(logging.makeLogRecord({}).__dict__) | {"message", "asctime", "event"}
    return {
        (f"event_{key}" if key in reserved else key): value
        for key, value in payload.items()
        if isinstance(value, (str, int, float, bool, type(None)))
    }


__all__ = ["CommandSink", "LoggingSink", "NotificationEvent", "NotificationSink", "Notifier"]
