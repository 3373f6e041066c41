"""Tests for mclauncher_tools.core.install_state module."""

from mclauncher_tools.core.guards import CancellationHandle
from mclauncher_tools.core.install_state import InstallPhase, InstallState


class TestInstallState:
    """Test InstallState class."""

    def test_defaults(self):
        state = InstallState()
        assert state.phase == InstallPhase.initializing
        assert state.downloaded_bytes == 0
        assert state.total_bytes == 0
        assert state.is_indeterminate
        assert state.display_status == "Preparing..."

    def test_observers_notified_on_phase_change(self):
        state = InstallState()
        seen = []
        state.subscribe(lambda s: seen.append(s.phase))

        state.phase = InstallPhase.extracting
        state.phase = InstallPhase.registering

        assert seen == [InstallPhase.extracting, InstallPhase.registering]

    def test_update_progress_switches_to_downloading(self):
        """The first progress report sets the phase and the total size."""
        state = InstallState()

        state.update_progress(0, 4 * 1024 * 1024)
        state.update_progress(1024 * 1024, 999)

        assert state.phase == InstallPhase.downloading
        assert state.total_bytes == 4 * 1024 * 1024
        assert state.downloaded_bytes == 1024 * 1024
        assert not state.is_indeterminate
        assert state.display_status == "Downloading... 1MiB/4MiB"

    def test_unknown_total_is_indeterminate(self):
        state = InstallState()
        state.update_progress(0, None)
        assert state.is_indeterminate

    def test_request_cancel(self):
        handle = CancellationHandle()
        state = InstallState(cancel=handle)

        state.request_cancel()

        assert handle.cancelled

    def test_request_cancel_without_handle(self):
        InstallState().request_cancel()
