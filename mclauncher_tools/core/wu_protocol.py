"""Client for the update delivery SOAP service.

The service maps an update identity and revision to the CDN URLs of the
package files. Requests carry a WS-Security header with a short
timestamp window and a tickets token: an anonymous ticket is always sent,
and a user ticket is added when one was obtained from the native token
helper. Beta and preview packages are only resolved for user tickets of
entitled accounts.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import httpx
import lxml.etree as ET
import structlog

from mclauncher_tools.core.config import ProtocolConfig
from mclauncher_tools.core.errors import OperationCancelledError, TransportError
from mclauncher_tools.core.guards import CancellationHandle

logger = structlog.get_logger()

SOAP_NS = "http://www.w3.org/2003/05/soap-envelope"
ADDRESSING_NS = "http://www.w3.org/2005/08/addressing"
SECEXT_NS = "http://docs.oasis-open.org/wss/2004/01/oasis-200401-wss-wssecurity-secext-1.0.xsd"
SECUTIL_NS = "http://docs.oasis-open.org/wss/2004/01/oasis-200401-wss-wssecurity-utility-1.0.xsd"
WUWS_NS = "http://schemas.microsoft.com/msus/2014/10/WindowsUpdateAuthorization"
WUCLIENT_NS = "http://www.microsoft.com/SoftwareDistribution/Server/ClientWebService"

ENVELOPE_NSMAP = {
    "s": SOAP_NS,
    "a": ADDRESSING_NS,
    "o": SECEXT_NS,
    "wsu": SECUTIL_NS,
    "wuws": WUWS_NS,
}

MESSAGE_ID = "urn:uuid:5754a03d-d8d5-489f-b24d-efc31b3fd32d"
TIMESTAMP_WINDOW = timedelta(minutes=5)

# The service picks the returned package flavour from these attributes.
DEVICE_ATTRIBUTES = (
    "E:BranchReadinessLevel=CBB&DchuNvidiaGrfxExists=1&ProcessorIdentifier=Intel64%20Family%206%20Model%2063"
    "%20Stepping%202&CurrentBranch=rs4_release&DataVer_RS5=1942&FlightRing=Retail&AttrDataVer=57"
    "&InstallLanguage=en-US&DchuAmdGrfxExists=1&OSUILocale=en-US&InstallationType=Client"
    "&FlightingBranchName=&Version_RS5=10&UpgEx_RS5=Green&GStatus_RS5=2&OSSkuId=48&App=WU"
    "&InstallDate=1529700913&ProcessorManufacturer=GenuineIntel&AppVer=10.0.17134.471&OSArchitecture=AMD64"
    "&UpdateManagementGroup=2&IsDeviceRetailDemo=0&HidOverGattReg=C%3A%5CWINDOWS%5CSystem32%5CDriverStore"
    "%5CFileRepository%5Chidbthle.inf_amd64_467f181075371c89%5CMicrosoft.Bluetooth.Profiles.HidOverGatt.dll"
    "&IsFlightingEnabled=0&DchuIntelGrfxExists=1&TelemetryLevel=1&DefaultUserRegion=244"
    "&DeferFeatureUpdatePeriodInDays=365&Bios=Unknown&WuClientVer=10.0.17134.471&PausedFeatureStatus=1"
    "&Steam=URL%3Asteam%20protocol&Free=8to16&OSVersion=10.0.17134.472&DeviceFamily=Windows.Desktop"
)

_RESPONSE_NAMESPACES = {"s": SOAP_NS, "wu": WUCLIENT_NS}
_RESPONSE_PARSER = ET.XMLParser(resolve_entities=False, no_network=True)


def _q(namespace: str, tag: str) -> str:
    return f"{{{namespace}}}{tag}"


def _format_timestamp(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class UrlFilter:
    """Policy choosing which returned file URL to download.

    ``any_http`` accepts the first http or https URL. ``host_prefix``
    accepts only URLs starting with ``expected_prefix``.
    """

    def __init__(self, policy: str = "any_http", expected_prefix: str = ""):
        self.policy = policy
        self.expected_prefix = expected_prefix

    @classmethod
    def from_config(cls, config: ProtocolConfig) -> UrlFilter:
        return cls(config.url_filter, config.expected_host_prefix)

    def accepts(self, url: str) -> bool:
        if self.policy == "host_prefix":
            return url.startswith(self.expected_prefix)
        return url.startswith("http://") or url.startswith("https://")

    def select(self, urls: list[str]) -> str | None:
        """Return the first acceptable URL, or None."""
        for url in urls:
            if self.accepts(url):
                return url
        return None


class ProtocolClient:
    """Builds, sends and parses ``GetExtendedUpdateInfo2`` requests.

    Args:
        config: Protocol configuration
        http_client: Optional async HTTP client, created lazily otherwise
        client_source: Returns a client owned by someone else, such as the
            downloader sharing its connection pool
    """

    def __init__(
        self,
        config: ProtocolConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
        client_source: Callable[[], httpx.AsyncClient] | None = None,
    ):
        self.config = config or ProtocolConfig()
        self.url_filter = UrlFilter.from_config(self.config)
        self._user_ticket: str | None = None
        self._client = http_client
        self._client_source = client_source

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None and self._client_source is not None:
            return self._client_source()
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout)
        return self._client

    @property
    def has_user_ticket(self) -> bool:
        return self._user_ticket is not None

    def set_user_ticket(self, ticket: str | None) -> None:
        self._user_ticket = ticket

    def _build_tickets(self, security: ET._Element) -> ET._Element:
        tickets = ET.SubElement(
            security, _q(WUWS_NS, "WindowsUpdateTicketsToken"), {_q(SECUTIL_NS, "id"): "ClientMSA"}
        )
        if self._user_ticket is not None:
            msa = ET.SubElement(tickets, "TicketType", {"Name": "MSA", "Version": "1.0", "Policy": "MBI_SSL"})
            ET.SubElement(msa, "User").text = self._user_ticket
        aad = ET.SubElement(tickets, "TicketType", {"Name": "AAD", "Version": "1.0", "Policy": "MBI_SSL"})
        aad.text = ""
        return tickets

    def _build_header(self, envelope: ET._Element, url: str, method_name: str, now: datetime) -> ET._Element:
        must_understand = {_q(SOAP_NS, "mustUnderstand"): "1"}
        header = ET.SubElement(envelope, _q(SOAP_NS, "Header"))
        action = ET.SubElement(header, _q(ADDRESSING_NS, "Action"), must_understand)
        action.text = f"{WUCLIENT_NS}/{method_name}"
        ET.SubElement(header, _q(ADDRESSING_NS, "MessageID")).text = MESSAGE_ID
        ET.SubElement(header, _q(ADDRESSING_NS, "To"), must_understand).text = url

        security = ET.SubElement(header, _q(SECEXT_NS, "Security"), must_understand)
        timestamp = ET.SubElement(security, _q(SECUTIL_NS, "Timestamp"))
        ET.SubElement(timestamp, _q(SECUTIL_NS, "Created")).text = _format_timestamp(now)
        ET.SubElement(timestamp, _q(SECUTIL_NS, "Expires")).text = _format_timestamp(now + TIMESTAMP_WINDOW)
        self._build_tickets(security)
        return header

    def build_download_request(
        self, update_id: str, revision: str, now: datetime | None = None
    ) -> ET._Element:
        """Build the SOAP envelope requesting file URLs for an update.

        Args:
            update_id: Update identity GUID
            revision: Revision number
            now: Timestamp to use, defaults to the current UTC time

        Returns:
            Envelope element
        """
        envelope = ET.Element(_q(SOAP_NS, "Envelope"), nsmap=ENVELOPE_NSMAP)
        self._build_header(envelope, self.config.endpoint, "GetExtendedUpdateInfo2", now or datetime.now(UTC))

        body = ET.SubElement(envelope, _q(SOAP_NS, "Body"))
        request = ET.SubElement(body, _q(WUCLIENT_NS, "GetExtendedUpdateInfo2"))
        update_ids = ET.SubElement(request, _q(WUCLIENT_NS, "updateIDs"))
        identity = ET.SubElement(update_ids, _q(WUCLIENT_NS, "UpdateIdentity"))
        ET.SubElement(identity, _q(WUCLIENT_NS, "UpdateID")).text = update_id
        ET.SubElement(identity, _q(WUCLIENT_NS, "RevisionNumber")).text = revision
        info_types = ET.SubElement(request, _q(WUCLIENT_NS, "infoTypes"))
        ET.SubElement(info_types, _q(WUCLIENT_NS, "XmlUpdateFragmentType")).text = "FileUrl"
        ET.SubElement(request, _q(WUCLIENT_NS, "deviceAttributes")).text = DEVICE_ATTRIBUTES
        return envelope

    @staticmethod
    def extract_download_urls(document: ET._Element) -> list[str]:
        """Extract every file URL from a ``GetExtendedUpdateInfo2`` response.

        Args:
            document: Parsed response envelope

        Returns:
            URLs in response order, empty if the result element is missing
        """
        if document.tag != _q(SOAP_NS, "Envelope"):
            return []
        result = document.find(
            "s:Body/wu:GetExtendedUpdateInfo2Response/wu:GetExtendedUpdateInfo2Result",
            _RESPONSE_NAMESPACES,
        )
        if result is None:
            return []
        return [
            (url.text or "").strip()
            for url in result.findall("wu:FileLocations/wu:FileLocation/wu:Url", _RESPONSE_NAMESPACES)
        ]

    async def post_xml(
        self, url: str, document: ET._Element, cancel: CancellationHandle | None = None
    ) -> ET._Element:
        """POST a SOAP document and parse the XML response.

        Cancelling ``cancel`` interrupts the pending request.

        Raises:
            TransportError: On network failure or a malformed response
            OperationCancelledError: If cancelled
        """
        payload = ET.tostring(document, encoding="utf-8")
        task = asyncio.current_task()
        remove_callback = cancel.cancel_task_on_cancel(task) if cancel and task else (lambda: None)
        try:
            if cancel:
                cancel.raise_if_cancelled()
            response = await self.client.post(
                url,
                content=payload,
                headers={"Content-Type": "application/soap+xml; charset=utf-8"},
                timeout=self.config.timeout,
            )
        except asyncio.CancelledError:
            if cancel is None or not cancel.cancelled:
                raise
            if task is not None:
                task.uncancel()
            raise OperationCancelledError("Update service request cancelled") from None
        except httpx.HTTPError as e:
            raise TransportError(f"Update service request failed: {e}", url=url) from e
        finally:
            remove_callback()

        try:
            return ET.fromstring(response.content, parser=_RESPONSE_PARSER)
        except ET.XMLSyntaxError as e:
            raise TransportError(
                f"Update service returned an invalid response (HTTP {response.status_code})",
                url=url,
                status_code=response.status_code,
            ) from e

    async def resolve_download_url(
        self, update_id: str, revision: str = "1", cancel: CancellationHandle | None = None
    ) -> str | None:
        """Resolve an update identity to a direct download URL.

        Returns:
            The first URL accepted by the URL filter, or None
        """
        request = self.build_download_request(update_id, revision)
        response = await self.post_xml(self.config.endpoint, request, cancel)
        urls = self.extract_download_urls(response)
        logger.debug("update_urls_resolved", update_id=update_id, revision=revision, count=len(urls))
        return self.url_filter.select(urls)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
