"""Observable per-version installation state.

An ``InstallState`` is attached to a version while an operation runs on
it and discarded when the operation ends, successfully or not. Its
presence is the busy signal; its phase and byte counters drive progress
display.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum

from mclauncher_tools.core.guards import CancellationHandle


class InstallPhase(Enum):
    """Phase of a running operation."""

    initializing = "initializing"
    downloading = "downloading"
    extracting = "extracting"
    staging = "staging"
    decrypting = "decrypting"
    moving = "moving"
    moving_data = "moving_data"
    registering = "registering"
    launching = "launching"
    unregistering = "unregistering"
    cleaning_up = "cleaning_up"


_PHASE_TEXT = {
    InstallPhase.initializing: "Preparing...",
    InstallPhase.extracting: "Extracting...",
    InstallPhase.staging: "Staging package...",
    InstallPhase.decrypting: "Decrypting...",
    InstallPhase.moving: "Moving files...",
    InstallPhase.moving_data: "Moving save data...",
    InstallPhase.registering: "Registering package...",
    InstallPhase.launching: "Launching...",
    InstallPhase.unregistering: "Uninstalling...",
    InstallPhase.cleaning_up: "Cleaning up...",
}


class InstallState:
    """Mutable progress of one running operation.

    Args:
        phase: Initial phase
        cancel: Optional cancellation handle for cancellable operations
    """

    def __init__(
        self,
        phase: InstallPhase = InstallPhase.initializing,
        cancel: CancellationHandle | None = None,
    ) -> None:
        self._phase = phase
        self.cancel = cancel
        self.downloaded_bytes: int = 0
        self.total_bytes: int = 0
        self._observers: list[Callable[[InstallState], None]] = []

    @property
    def phase(self) -> InstallPhase:
        return self._phase

    @phase.setter
    def phase(self, value: InstallPhase) -> None:
        self._phase = value
        self._changed()

    @property
    def is_indeterminate(self) -> bool:
        """True unless a transfer with a known size is running."""
        if self._phase != InstallPhase.downloading:
            return True
        return self.total_bytes == 0 and self.downloaded_bytes == 0

    @property
    def display_status(self) -> str:
        if self._phase == InstallPhase.downloading:
            return (
                f"Downloading... {self.downloaded_bytes // 1024 // 1024}MiB/"
                f"{self.total_bytes // 1024 // 1024}MiB"
            )
        return _PHASE_TEXT[self._phase]

    def update_progress(self, downloaded: int, total: int | None) -> None:
        """Record transfer progress, switching to the downloading phase."""
        if self._phase != InstallPhase.downloading:
            self._phase = InstallPhase.downloading
            if total is not None:
                self.total_bytes = total
        self.downloaded_bytes = downloaded
        self._changed()

    def request_cancel(self) -> None:
        if self.cancel is not None:
            self.cancel.cancel()

    def subscribe(self, observer: Callable[[InstallState], None]) -> None:
        self._observers.append(observer)

    def _changed(self) -> None:
        for observer in list(self._observers):
            observer(self)
