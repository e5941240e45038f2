"""
HMRC fraud prevention headers.

Every MTD API call has to carry the ``Gov-Client-*`` and ``Gov-Vendor-*``
headers for the WEB_APP_VIA_SERVER connection method. The browser collects
the device-descriptive values and forwards them on the inbound request; the
server adds what only it can observe (public IP, timestamps, user id) and
fills any gap with a best-effort default before validating the full set.
"""

import ipaddress
import logging
import socket
import uuid
from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional
from urllib.parse import quote

from src.utils.date_utils import format_hmrc_timestamp, utc_now

from .exceptions import IncompleteFraudHeadersError

logger = logging.getLogger(__name__)

CONNECTION_METHOD = "WEB_APP_VIA_SERVER"

# Values the browser collects; forwarded on the inbound request
CLIENT_HEADERS = (
    "Gov-Client-Device-ID",
    "Gov-Client-Timezone",
    "Gov-Client-Window-Size",
    "Gov-Client-Screens",
    "Gov-Client-Browser-Plugins",
    "Gov-Client-Browser-JS-User-Agent",
    "Gov-Client-Browser-Do-Not-Track",
    "Gov-Client-Local-IPs",
    "Gov-Client-Local-IPs-Timestamp",
    "Gov-Client-Multi-Factor",
)

# Older clients send the user agent under this name
LEGACY_USER_AGENT_HEADER = "Gov-Client-User-Agent"

MANDATORY_HEADERS = (
    "Gov-Client-Connection-Method",
    "Gov-Client-Device-ID",
    "Gov-Client-User-IDs",
    "Gov-Client-Timezone",
    "Gov-Client-Window-Size",
    "Gov-Client-Screens",
    "Gov-Client-Browser-JS-User-Agent",
    "Gov-Client-Browser-Do-Not-Track",
    "Gov-Client-Public-IP",
    "Gov-Client-Public-IP-Timestamp",
    "Gov-Client-Local-IPs",
    "Gov-Client-Local-IPs-Timestamp",
    "Gov-Vendor-Version",
    "Gov-Vendor-Product-Name",
    "Gov-Vendor-Public-IP",
    "Gov-Vendor-Forwarded",
)

DEFAULT_TIMEZONE = "UTC+00:00"
DEFAULT_SCREENS = "width=1920&height=1080&scaling-factor=1&colour-depth=24"
DEFAULT_WINDOW_SIZE = "width=1920&height=900"
FRAUD_HEADER_SPEC_VERSION = "3.3"


def resolve_host_ip() -> Optional[str]:
    """Best-effort address of this host's primary interface."""
    try:
        return socket.gethostbyname(socket.gethostname())
    except OSError as e:
        logger.warning(f"Could not resolve host IP: {e}")
        return None


def _valid_ip(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    candidate = value.strip()
    try:
        ipaddress.ip_address(candidate)
    except ValueError:
        return None
    return candidate


def _lower_keys(headers: Optional[Mapping[str, str]]) -> Dict[str, str]:
    if not headers:
        return {}
    return {key.lower(): value for key, value in headers.items()}


class FraudHeaderBuilder:
    """
    Builds the complete fraud prevention header set for one outbound call.

    Example:
        builder = FraudHeaderBuilder(product_name="mtd-client", product_version="1.0.0")
        partial = builder.extract_client_headers(request.headers)
        headers = builder.add_server_side_headers(request.headers, partial, user_id, client_ip)
    """

    def __init__(
        self,
        product_name: str,
        product_version: str,
        vendor_public_ip: Optional[str] = None,
        license_ids: Optional[str] = None,
        trust_forwarded_for: bool = False,
        trusted_proxy_hops: int = 1,
        host_ip_resolver: Callable[[], Optional[str]] = resolve_host_ip,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the builder.

        Args:
            product_name: Software product name (Gov-Vendor-Product-Name)
            product_version: Software version (Gov-Vendor-Version)
            vendor_public_ip: Public IP of this server, if known
            license_ids: Pre-formatted Gov-Vendor-License-IDs value
            trust_forwarded_for: Read the client IP from X-Forwarded-For (behind a proxy)
            trusted_proxy_hops: Number of trusted proxies appending to X-Forwarded-For
            host_ip_resolver: Returns this host's IP for fallback values
            clock: Returns the current UTC time (overridable in tests)
        """
        self.product_name = product_name
        self.product_version = product_version
        self.vendor_public_ip = vendor_public_ip
        self.license_ids = license_ids
        self.trust_forwarded_for = trust_forwarded_for
        self.trusted_proxy_hops = max(1, trusted_proxy_hops)
        self.host_ip_resolver = host_ip_resolver
        self.clock = clock

    def extract_client_headers(self, headers: Optional[Mapping[str, str]]) -> Dict[str, str]:
        """
        Pull browser-collected fraud headers from an inbound request.

        Header names are matched case-insensitively. Server-owned headers
        (public IP, user ids, vendor values) are ignored here even when the
        client sent them.

        Args:
            headers: Inbound request headers

        Returns:
            Dictionary of client-supplied header values (may be empty)
        """
        lowered = _lower_keys(headers)
        partial = {}
        for name in CLIENT_HEADERS:
            value = lowered.get(name.lower(), "").strip()
            if value:
                partial[name] = value

        if "Gov-Client-Browser-JS-User-Agent" not in partial:
            legacy = lowered.get(LEGACY_USER_AGENT_HEADER.lower(), "").strip()
            if legacy:
                partial["Gov-Client-Browser-JS-User-Agent"] = legacy

        return partial

    def add_server_side_headers(
        self,
        headers: Optional[Mapping[str, str]],
        partial: Mapping[str, str],
        user_id: str,
        remote_addr: Optional[str] = None,
    ) -> Dict[str, str]:
        """
        Complete a header set with server-observed values and validate it.

        Server-derived values (IPs, timestamps, user ids, vendor values)
        always win over anything in ``partial``. Descriptive values keep the
        client's copy when present and fall back to defaults otherwise.

        Args:
            headers: Inbound request headers (for IP and User-Agent)
            partial: Output of ``extract_client_headers``
            user_id: Application user making the call
            remote_addr: Peer address of the inbound connection

        Returns:
            Complete fraud prevention header set

        Raises:
            IncompleteFraudHeadersError: If a mandatory header has no value
        """
        lowered = _lower_keys(headers)
        now = format_hmrc_timestamp(self.clock())
        result = dict(partial)

        # Descriptive fields: client value first, then best-effort default
        result.setdefault("Gov-Client-Device-ID", self._fallback_device_id(user_id))
        result.setdefault("Gov-Client-Timezone", DEFAULT_TIMEZONE)
        result.setdefault("Gov-Client-Screens", DEFAULT_SCREENS)
        result.setdefault("Gov-Client-Window-Size", DEFAULT_WINDOW_SIZE)
        result.setdefault("Gov-Client-Browser-Do-Not-Track", "false")
        user_agent = lowered.get("user-agent", "").strip()
        result.setdefault(
            "Gov-Client-Browser-JS-User-Agent",
            user_agent or f"{self.product_name}/{self.product_version}",
        )

        if "Gov-Client-Local-IPs" not in result:
            host_ip = self.host_ip_resolver()
            if host_ip:
                result["Gov-Client-Local-IPs"] = host_ip
        if "Gov-Client-Local-IPs" in result:
            result.setdefault("Gov-Client-Local-IPs-Timestamp", now)

        # Server-owned fields: always overwrite
        client_ip = self._client_public_ip(lowered, remote_addr)
        vendor_ip = _valid_ip(self.vendor_public_ip) or self.host_ip_resolver()
        result["Gov-Client-Connection-Method"] = CONNECTION_METHOD
        result["Gov-Client-User-IDs"] = f"{quote(self.product_name.lower(), safe='')}={quote(user_id, safe='')}"
        result.pop("Gov-Client-Public-IP", None)
        result.pop("Gov-Client-Public-IP-Timestamp", None)
        result.pop("Gov-Vendor-Forwarded", None)
        if client_ip:
            result["Gov-Client-Public-IP"] = client_ip
            result["Gov-Client-Public-IP-Timestamp"] = now
        if vendor_ip:
            result["Gov-Vendor-Public-IP"] = vendor_ip
        if client_ip and vendor_ip:
            result["Gov-Vendor-Forwarded"] = f"by={quote(vendor_ip)}&for={quote(client_ip)}"
        result["Gov-Vendor-Product-Name"] = quote(self.product_name, safe="")
        result["Gov-Vendor-Version"] = (
            f"{quote(self.product_name, safe='')}={quote(self.product_version, safe='')}"
            f"&fraud-prevention-headers={FRAUD_HEADER_SPEC_VERSION}"
        )
        if self.license_ids:
            result["Gov-Vendor-License-IDs"] = self.license_ids

        self.validate(result)
        return result

    def build(
        self,
        headers: Optional[Mapping[str, str]],
        user_id: str,
        remote_addr: Optional[str] = None,
    ) -> Dict[str, str]:
        """Extract client values and complete the set in one step."""
        partial = self.extract_client_headers(headers)
        return self.add_server_side_headers(headers, partial, user_id, remote_addr)

    @staticmethod
    def missing_headers(headers: Mapping[str, str]) -> List[str]:
        """Names of mandatory headers that are absent or blank."""
        return [name for name in MANDATORY_HEADERS if not str(headers.get(name, "")).strip()]

    def validate(self, headers: Mapping[str, str]) -> None:
        """
        Check every mandatory header is present and non-empty.

        Raises:
            IncompleteFraudHeadersError: Listing the missing header names
        """
        missing = self.missing_headers(headers)
        if missing:
            logger.error(f"Fraud prevention headers incomplete: {', '.join(missing)}")
            raise IncompleteFraudHeadersError(missing)

    def _client_public_ip(self, lowered: Mapping[str, str], remote_addr: Optional[str]) -> Optional[str]:
        if self.trust_forwarded_for:
            # Proxies append on the right; anything left of our own hops is client-supplied
            hops = [hop.strip() for hop in lowered.get("x-forwarded-for", "").split(",") if hop.strip()]
            if len(hops) >= self.trusted_proxy_hops:
                forwarded_ip = _valid_ip(hops[-self.trusted_proxy_hops])
                if forwarded_ip:
                    return forwarded_ip
            real_ip = _valid_ip(lowered.get("x-real-ip"))
            if real_ip:
                return real_ip
        return _valid_ip(remote_addr)

    def _fallback_device_id(self, user_id: str) -> str:
        # Stable per user so repeat submissions correlate
        return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{self.product_name}:{user_id}"))
