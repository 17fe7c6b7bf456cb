"""
Message Sink Module

Operator-facing output for lifecycle operations. The controller only ever
calls info/warn/error; where the text ends up is the host's decision.

Public API (the "studs"):
    MessageSink: Protocol the controller depends on
    ConsoleMessageSink: Rich console output, prefixed with the machine name
    RecordingMessageSink: Collects messages in memory
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from rich.console import Console
from rich.markup import escape

logger = logging.getLogger(__name__)


class MessageSink(Protocol):
    """Fire-and-forget operator messages."""

    def info(self, message: str) -> None: ...

    def warn(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...


class MessageLevel(Enum):
    """Message severity."""

    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class ConsoleMessageSink:
    """
    Console output for lifecycle messages.

    Info goes to stdout, warnings and errors to stderr in color:

        ==> default: Creating new machine...
        ==> default: Error deleting machine from OrbStack: ...
    """

    STYLES = {
        MessageLevel.INFO: None,
        MessageLevel.WARN: "yellow",
        MessageLevel.ERROR: "red",
    }

    def __init__(
        self,
        machine_name: str = "default",
        console: Console | None = None,
        err_console: Console | None = None,
    ):
        self.machine_name = machine_name
        self.console = console or Console(highlight=False)
        self.err_console = err_console or Console(stderr=True, highlight=False)

    def info(self, message: str) -> None:
        self._print(MessageLevel.INFO, message)

    def warn(self, message: str) -> None:
        self._print(MessageLevel.WARN, message)

    def error(self, message: str) -> None:
        self._print(MessageLevel.ERROR, message)

    def _print(self, level: MessageLevel, message: str) -> None:
        text = f"==> {escape(self.machine_name)}: {escape(message)}"
        style = self.STYLES[level]
        if style is None:
            self.console.print(text)
        else:
            self.err_console.print(f"[{style}]{text}[/{style}]")


@dataclass
class RecordingMessageSink:
    """Message sink that keeps every message, for quiet mode and tests."""

    messages: list[tuple[MessageLevel, str]] = field(default_factory=list)

    def info(self, message: str) -> None:
        self.messages.append((MessageLevel.INFO, message))

    def warn(self, message: str) -> None:
        logger.debug(f"Recorded warning: {message}")
        self.messages.append((MessageLevel.WARN, message))

    def error(self, message: str) -> None:
        logger.debug(f"Recorded error: {message}")
        self.messages.append((MessageLevel.ERROR, message))

    def of_level(self, level: MessageLevel) -> list[str]:
        return [text for lvl, text in self.messages if lvl == level]

    @property
    def infos(self) -> list[str]:
        return self.of_level(MessageLevel.INFO)

    @property
    def warnings(self) -> list[str]:
        return self.of_level(MessageLevel.WARN)

    @property
    def errors(self) -> list[str]:
        return self.of_level(MessageLevel.ERROR)


__all__ = ["ConsoleMessageSink", "MessageLevel", "MessageSink", "RecordingMessageSink"]
