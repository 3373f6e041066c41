"""Bridge to the native helper that fetches the update service user ticket.

``WUTokenHelper.dll`` exports ``GetWUToken(LPWSTR *token)`` returning an
HRESULT. It asks the Windows account broker for a token of the signed-in
Microsoft account, which may show an interactive prompt.
"""

from __future__ import annotations

import ctypes
import sys
from pathlib import Path

import structlog

from mclauncher_tools.core.errors import AuthenticationError

logger = structlog.get_logger()

HELPER_DLL = "WUTokenHelper.dll"

WU_NO_ACCOUNT = 0x80040200
WU_TOKEN_FETCH_ERROR_BASE = 0x80040400
WU_TOKEN_FETCH_ERROR_END = 0x800404FF

# WebTokenRequestStatus values reported on top of WU_TOKEN_FETCH_ERROR_BASE
_TOKEN_FETCH_REASONS = {
    1: "sign-in was cancelled",
    2: "the account was switched during sign-in",
    3: "interactive sign-in required",
    4: "account provider not available",
    5: "account provider error",
}


def describe_status(code: int) -> str:
    """Map a helper HRESULT to a human readable reason."""
    code &= 0xFFFFFFFF
    if code == WU_NO_ACCOUNT:
        return "no eligible Microsoft account is signed in"
    if WU_TOKEN_FETCH_ERROR_BASE <= code <= WU_TOKEN_FETCH_ERROR_END:
        status = code - WU_TOKEN_FETCH_ERROR_BASE
        return _TOKEN_FETCH_REASONS.get(status, f"token service unavailable (status {status})")
    return "unknown error"


def check_status(code: int, token: str | None) -> str:
    """Turn a helper result into a ticket or an AuthenticationError."""
    if code != 0:
        raise AuthenticationError(describe_status(code), code=code)
    if not token:
        raise AuthenticationError("token helper returned an empty ticket", code=code)
    return token


def fetch_user_ticket(helper_path: Path | None = None) -> str:
    """Fetch the user ticket from the native token helper.

    Blocking; may display an account prompt.

    Args:
        helper_path: Location of the helper DLL, searched on the DLL path if None

    Returns:
        Opaque ticket string

    Raises:
        AuthenticationError: If the helper is unavailable or reports a failure
    """
    if sys.platform != "win32":
        raise AuthenticationError("the token helper is only available on Windows")

    try:
        library = ctypes.WinDLL(str(helper_path) if helper_path else HELPER_DLL)
    except OSError as e:
        raise AuthenticationError(f"could not load {HELPER_DLL}: {e}") from e

    get_token = library.GetWUToken
    get_token.argtypes = [ctypes.POINTER(ctypes.c_wchar_p)]
    get_token.restype = ctypes.c_long

    token = ctypes.c_wchar_p()
    code = get_token(ctypes.byref(token))
    logger.debug("token_helper_returned", code=f"0x{code & 0xFFFFFFFF:08x}")
    return check_status(code, token.value)
