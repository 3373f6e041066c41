"""Operator interaction used by the engine for notices and confirmations."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol


class Operator(Protocol):
    """The person driving the launcher.

    ``confirm`` may block waiting for an answer; the engine only calls it
    from worker threads.
    """

    def notify(self, message: str, title: str = "") -> None: ...

    def confirm(self, message: str, title: str = "") -> bool: ...

    def reveal(self, path: Path) -> None: ...
