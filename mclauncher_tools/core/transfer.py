"""Streaming package downloads with progress and cancellation."""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable
from pathlib import Path

import httpx
import structlog

from mclauncher_tools.core.config import ProtocolConfig, TransferConfig
from mclauncher_tools.core.errors import (
    BadUpdateIdentityError,
    OperationCancelledError,
    TransportError,
)
from mclauncher_tools.core.guards import CancellationHandle
from mclauncher_tools.core.token_helper import fetch_user_ticket
from mclauncher_tools.core.wu_protocol import ProtocolClient

logger = structlog.get_logger()

ProgressCallback = Callable[[int, int | None], None]


def _remove_partial(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("partial_file_cleanup_failed", path=str(path), error=str(e))


class VersionDownloader:
    """Resolves update identities and streams packages to disk.

    An anonymous downloader only sends the anonymous ticket. A user
    downloader additionally sends the user ticket obtained by
    ``enable_user_authorization``.

    Args:
        transfer_config: Chunk size and HTTP settings
        protocol_config: Update service settings
        http_client: Optional async HTTP client, also used for update
            service requests
        token_fetcher: Callable returning the user ticket
    """

    def __init__(
        self,
        transfer_config: TransferConfig | None = None,
        protocol_config: ProtocolConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
        token_fetcher: Callable[[], str] = fetch_user_ticket,
    ):
        self.config = transfer_config or TransferConfig()
        self._client = http_client
        self.protocol = ProtocolClient(protocol_config, client_source=lambda: self.client)
        self._token_fetcher = token_fetcher

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.config.timeout,
                verify=self.config.verify_ssl,
                follow_redirects=True,
            )
        return self._client

    def enable_user_authorization(self) -> None:
        """Fetch the user ticket and attach it to future requests. Blocking."""
        self.protocol.set_user_ticket(self._token_fetcher())
        logger.info("user_authorization_enabled")

    async def resolve_download_url(
        self, update_id: str, revision: str = "1", cancel: CancellationHandle | None = None
    ) -> str | None:
        return await self.protocol.resolve_download_url(update_id, revision, cancel)

    async def download_file(
        self,
        url: str,
        destination: Path,
        progress: ProgressCallback | None = None,
        cancel: CancellationHandle | None = None,
    ) -> int:
        """Stream ``url`` into ``destination``.

        The destination is deleted if the transfer fails or is cancelled.

        Args:
            url: Source URL
            destination: Target file path
            progress: Called with (transferred, total or None) after each chunk
            cancel: Cancellation handle checked at every chunk boundary

        Returns:
            Number of bytes written

        Raises:
            TransportError: On network failure or HTTP error status
            OperationCancelledError: If cancelled
        """
        task = asyncio.current_task()
        remove_callback = cancel.cancel_task_on_cancel(task) if cancel and task else (lambda: None)
        transferred = 0
        try:
            if cancel:
                cancel.raise_if_cancelled()
            async with self.client.stream("GET", url) as response:
                if response.status_code >= 400:
                    raise TransportError(
                        f"Download failed with HTTP {response.status_code}",
                        url=url,
                        status_code=response.status_code,
                    )
                length = response.headers.get("Content-Length")
                total = int(length) if length and length.isdigit() else None
                if progress:
                    progress(0, total)

                destination.parent.mkdir(parents=True, exist_ok=True)
                with open(destination, "wb") as out:
                    async for chunk in response.aiter_bytes(self.config.chunk_size):
                        if cancel:
                            cancel.raise_if_cancelled()
                        out.write(chunk)
                        transferred += len(chunk)
                        if progress:
                            progress(transferred, total)
        except asyncio.CancelledError:
            _remove_partial(destination)
            if cancel is None or not cancel.cancelled:
                raise
            if task is not None:
                task.uncancel()
            raise OperationCancelledError("Download cancelled") from None
        except httpx.HTTPError as e:
            _remove_partial(destination)
            raise TransportError(f"Download failed: {e}", url=url) from e
        except BaseException:
            _remove_partial(destination)
            raise
        finally:
            remove_callback()

        logger.debug("download_file_complete", url=url, path=str(destination), size=transferred)
        return transferred

    async def download(
        self,
        update_id: str,
        revision: str,
        destination: Path,
        progress: ProgressCallback | None = None,
        cancel: CancellationHandle | None = None,
    ) -> int:
        """Resolve an update identity and download it.

        Raises:
            BadUpdateIdentityError: If no acceptable URL was returned
        """
        link = await self.resolve_download_url(update_id, revision, cancel)
        if link is None:
            raise BadUpdateIdentityError(update_id)
        logger.info("download_link_resolved", update_id=update_id, url=link)
        return await self.download_file(link, destination, progress, cancel)

    async def download_any(
        self,
        urls: list[str],
        destination: Path,
        progress: ProgressCallback | None = None,
        cancel: CancellationHandle | None = None,
    ) -> int:
        """Download from the first pre-resolved URL that works.

        Raises:
            TransportError: From the last URL if all of them fail
        """
        if not urls:
            raise TransportError("No download URLs available")

        last_error: TransportError | None = None
        for url in urls:
            try:
                return await self.download_file(url, destination, progress, cancel)
            except TransportError as e:
                last_error = e
                logger.debug("download_mirror_failed", url=url, error=str(e))
        assert last_error is not None
        raise last_error

    async def aclose(self) -> None:
        await self.protocol.aclose()
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class SharedAuthorization:
    """Runs a blocking authorization step once and shares its result.

    The first caller starts the step on a worker thread; every concurrent
    caller awaits the same pending future. A successful result is kept for
    the process lifetime. A failed attempt is forgotten once it settles so
    that an operator-initiated retry can start a new one.

    Args:
        authorize: Blocking callable performing the authorization
    """

    def __init__(self, authorize: Callable[[], None]):
        self._authorize = authorize
        self._lock = threading.Lock()
        self._future: asyncio.Future[None] | None = None

    @property
    def completed(self) -> bool:
        future = self._future
        return future is not None and future.done() and not future.cancelled() and future.exception() is None

    def start(self) -> asyncio.Future[None]:
        """Start the authorization if nobody did, and return the shared future."""
        with self._lock:
            if self._future is None:
                logger.debug("authorization_started")
                self._future = asyncio.ensure_future(asyncio.to_thread(self._authorize))
                self._future.add_done_callback(self._forget_failure)
            return self._future

    def _forget_failure(self, future: asyncio.Future[None]) -> None:
        if future.cancelled() or future.exception() is not None:
            with self._lock:
                if self._future is future:
                    self._future = None

    async def wait(self) -> None:
        """Wait for the shared authorization, starting it if needed."""
        await asyncio.shield(self.start())
