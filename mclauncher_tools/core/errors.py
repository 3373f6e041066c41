"""Exception hierarchy for download, deployment and data migration.

Every failure the engine reports to the operator derives from
``LauncherError``. The subclasses follow how the operator can react:

1. Transport errors are retried by re-running the command
2. Unresolvable update identities need a different account entitlement
3. OS deployment and helper process failures carry the vendor text and a
   remediation hint
4. Data conflicts are never resolved automatically
5. Cancellation is not a failure and is not reported
"""

from __future__ import annotations

from pathlib import Path


class LauncherError(Exception):
    """Base class for all engine errors.

    Attributes:
        hint: Optional remediation hint shown to the operator
    """

    def __init__(self, message: str, *, hint: str | None = None):
        self.hint = hint
        super().__init__(message)

    @property
    def operator_message(self) -> str:
        """Message text followed by the remediation hint, if any."""
        if self.hint:
            return f"{self}\n\n{self.hint}"
        return str(self)


class OperationCancelledError(LauncherError):
    """Raised when a cancellable operation was cancelled by the operator."""


class OperationInProgressError(LauncherError):
    """Raised when a single-flight operation is already running."""


class TransportError(LauncherError):
    """Network failure or unexpected HTTP status.

    Attributes:
        url: The URL being requested
        status_code: HTTP status code if a response was received
    """

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        status_code: int | None = None,
        hint: str | None = None,
    ):
        self.url = url
        self.status_code = status_code
        super().__init__(message, hint=hint)


class BadUpdateIdentityError(LauncherError):
    """The update service returned no acceptable download URL.

    Attributes:
        update_id: The update identity that could not be resolved
    """

    def __init__(self, update_id: str, *, hint: str | None = None):
        self.update_id = update_id
        super().__init__(f"Unable to fetch download URL for update {update_id}", hint=hint)


class AuthenticationError(LauncherError):
    """The native token helper failed to produce a user ticket.

    Attributes:
        code: HRESULT returned by the helper
        reason: Human readable reason
    """

    def __init__(self, reason: str, *, code: int | None = None):
        self.code = code
        self.reason = reason
        text = f"Failed to authenticate: {reason}"
        if code is not None:
            text += f" (0x{code & 0xFFFFFFFF:08x})"
        super().__init__(text)


class DeploymentError(LauncherError):
    """OS package subsystem failure, carrying the vendor error text."""

    def __init__(self, message: str, *, error_text: str = "", hint: str | None = None):
        self.error_text = error_text
        super().__init__(message, hint=hint)


class StagingError(DeploymentError):
    """Container staging failed."""


class MultipleLocationsError(StagingError):
    """More than one (or no) staged location exists for a package family.

    Attributes:
        locations: The locations found
    """

    def __init__(self, family: str, locations: list[str]):
        self.locations = locations
        if locations:
            message = (
                f"Found {len(locations)} staged locations for {family}: "
                + ", ".join(locations)
            )
        else:
            message = f"No staged location found for {family}"
        super().__init__(
            message,
            hint="The game may be installed for another Windows user account. "
            "Uninstall it there and try again.",
        )


class HelperProcessError(LauncherError):
    """External helper process failed or never produced its output.

    Attributes:
        exit_code: Process exit status, None on timeout
        stdout: Captured standard output
        stderr: Captured standard error
    """

    def __init__(
        self,
        message: str,
        *,
        exit_code: int | None = None,
        stdout: str = "",
        stderr: str = "",
        hint: str | None = None,
    ):
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(message, hint=hint)


class InvalidPackageError(LauncherError):
    """The package file is not a valid archive."""


class DataConflictError(LauncherError):
    """Save data cannot be moved without risking data loss.

    Attributes:
        path: The directory that blocks the operation
    """

    def __init__(self, message: str, *, path: Path | None = None, hint: str | None = None):
        self.path = path
        super().__init__(message, hint=hint)


class MigrationConflictError(DataConflictError):
    """More than one location holds save data.

    Attributes:
        candidates: (location, world count) pairs with save data
    """

    def __init__(self, candidates: list[tuple[Path, int]]):
        self.candidates = candidates
        listing = "\n".join(f"  {path}: {count} world(s)" for path, count in candidates)
        super().__init__(
            "Save data was found in more than one location:\n" + listing,
            hint="Merge or remove the extra copies by hand, then try again.",
        )
