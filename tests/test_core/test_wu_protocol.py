"""Tests for mclauncher_tools.core.wu_protocol module."""

import asyncio
import time
from datetime import UTC, datetime

import httpx
import lxml.etree as ET
import pytest

from mclauncher_tools.core.config import ProtocolConfig
from mclauncher_tools.core.errors import OperationCancelledError, TransportError
from mclauncher_tools.core.guards import CancellationHandle
from mclauncher_tools.core.wu_protocol import (
    SECUTIL_NS,
    SOAP_NS,
    WUCLIENT_NS,
    ProtocolClient,
    UrlFilter,
)

UPDATE_ID = "d25f4b4a-1b2c-4d3e-8f90-123456789abc"


def _response(*urls: str) -> str:
    locations = "".join(
        f"<FileLocation><FileDigest>x</FileDigest><Url>{url}</Url></FileLocation>" for url in urls
    )
    return (
        f'<s:Envelope xmlns:s="{SOAP_NS}"><s:Body>'
        f'<GetExtendedUpdateInfo2Response xmlns="{WUCLIENT_NS}">'
        "<GetExtendedUpdateInfo2Result>"
        f"<FileLocations>{locations}</FileLocations>"
        "</GetExtendedUpdateInfo2Result>"
        "</GetExtendedUpdateInfo2Response>"
        "</s:Body></s:Envelope>"
    )


def _client(handler, **config) -> ProtocolClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ProtocolClient(ProtocolConfig(**config), http_client=http_client)


class TestUrlFilter:
    """Test UrlFilter policies."""

    def test_any_http(self):
        url_filter = UrlFilter("any_http")
        assert url_filter.select(["ftp://a/b", "https://cdn/x.appx"]) == "https://cdn/x.appx"
        assert url_filter.select(["file:///c/x"]) is None

    def test_host_prefix(self):
        url_filter = UrlFilter("host_prefix", "http://tlu.dl.delivery.mp.microsoft.com/")
        urls = ["https://other.example.com/x", "http://tlu.dl.delivery.mp.microsoft.com/filestreamingservice/x"]
        assert url_filter.select(urls) == urls[1]
        assert url_filter.select(urls[:1]) is None


class TestRequestBuilding:
    """Test SOAP request construction."""

    def test_anonymous_request_has_only_aad_ticket(self):
        client = ProtocolClient()
        envelope = client.build_download_request(UPDATE_ID, "1")

        names = [t.get("Name") for t in envelope.iter("TicketType")]
        assert names == ["AAD"]

    def test_user_request_has_msa_ticket(self):
        client = ProtocolClient()
        client.set_user_ticket("t=secret")
        envelope = client.build_download_request(UPDATE_ID, "1")

        tickets = list(envelope.iter("TicketType"))
        assert [t.get("Name") for t in tickets] == ["MSA", "AAD"]
        assert tickets[0].find("User").text == "t=secret"
        assert client.has_user_ticket

    def test_update_identity_and_timestamps(self):
        client = ProtocolClient()
        now = datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)
        envelope = client.build_download_request(UPDATE_ID, "7", now=now)

        assert envelope.find(f".//{{{WUCLIENT_NS}}}UpdateID").text == UPDATE_ID
        assert envelope.find(f".//{{{WUCLIENT_NS}}}RevisionNumber").text == "7"
        assert envelope.find(f".//{{{SECUTIL_NS}}}Created").text == "2024-01-02T03:04:05.000000Z"
        assert envelope.find(f".//{{{SECUTIL_NS}}}Expires").text == "2024-01-02T03:09:05.000000Z"

    def test_serializes(self):
        payload = ET.tostring(ProtocolClient().build_download_request(UPDATE_ID, "1"), encoding="unicode")
        assert "GetExtendedUpdateInfo2" in payload
        assert payload.startswith("<s:Envelope")
        assert "<wsu:Timestamp>" in payload


class TestResponseParsing:
    """Test URL extraction."""

    def test_extract_urls(self):
        document = ET.fromstring(_response("http://a/1", "http://b/2"))
        assert ProtocolClient.extract_download_urls(document) == ["http://a/1", "http://b/2"]

    def test_missing_result(self):
        document = ET.fromstring(f'<s:Envelope xmlns:s="{SOAP_NS}"><s:Body/></s:Envelope>')
        assert ProtocolClient.extract_download_urls(document) == []

    def test_not_an_envelope(self):
        assert ProtocolClient.extract_download_urls(ET.fromstring("<html/>")) == []


class TestResolveDownloadUrl:
    """Test resolve_download_url against a mocked service."""

    def test_resolves_first_acceptable_url(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, text=_response("ftp://skip", "http://tlu.dl.delivery.mp.microsoft.com/f"))

        async def _run() -> str | None:
            client = _client(handler)
            try:
                return await client.resolve_download_url(UPDATE_ID)
            finally:
                await client.aclose()

        assert asyncio.run(_run()) == "http://tlu.dl.delivery.mp.microsoft.com/f"
        assert requests[0].headers["Content-Type"].startswith("application/soap+xml")
        assert UPDATE_ID.encode() in requests[0].content

    def test_no_acceptable_url(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text=_response("https://other.example.com/f"))

        async def _run() -> str | None:
            client = _client(handler, url_filter="host_prefix")
            return await client.resolve_download_url(UPDATE_ID)

        assert asyncio.run(_run()) is None

    def test_invalid_response(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="not xml <")

        async def _run() -> None:
            client = _client(handler)
            with pytest.raises(TransportError) as exc_info:
                await client.resolve_download_url(UPDATE_ID)
            assert exc_info.value.status_code == 500

        asyncio.run(_run())

    def test_network_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async def _run() -> None:
            client = _client(handler)
            with pytest.raises(TransportError, match="connection refused"):
                await client.resolve_download_url(UPDATE_ID)

        asyncio.run(_run())

    def test_cancel_interrupts_request(self):
        """Cancelling a pending request returns promptly instead of waiting for the reply."""

        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(5)
            return httpx.Response(200, text=_response("http://a/1"))

        cancel = CancellationHandle()

        async def _run() -> None:
            client = _client(handler)
            asyncio.get_running_loop().call_later(0.1, cancel.cancel)
            try:
                with pytest.raises(OperationCancelledError):
                    await client.resolve_download_url(UPDATE_ID, cancel=cancel)
                assert not asyncio.current_task().cancelling()
            finally:
                await client.aclose()

        started = time.monotonic()
        asyncio.run(_run())
        assert time.monotonic() - started < 2

    def test_already_cancelled(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        cancel = CancellationHandle()
        cancel.cancel()

        async def _run() -> None:
            with pytest.raises(OperationCancelledError):
                await _client(handler).resolve_download_url(UPDATE_ID, cancel=cancel)

        asyncio.run(_run())

    def test_response_with_declaration(self):
        def handler(request: httpx.Request) -> httpx.Response:
            body = '<?xml version="1.0" encoding="utf-8"?>' + _response("http://a/1")
            return httpx.Response(200, content=body.encode("utf-8"))

        async def _run() -> str | None:
            return await _client(handler).resolve_download_url(UPDATE_ID)

        assert asyncio.run(_run()) == "http://a/1"
