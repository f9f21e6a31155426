"""DNS provider interface and the Cloudflare implementation."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from flynn_dns.config import DEFAULT_CF_API_URL
from flynn_dns.errors import ConfigurationError, ProviderError, RecordCreateError

logger = logging.getLogger(__name__)

RECORDS_PER_PAGE = 100

# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class Zone:
    """A provider zone, identified by name and an opaque id."""

    id: str
    name: str


@dataclass(frozen=True)
class DNSRecord:
    """Represents a DNS record in a zone."""

    name: str
    type: str = "CNAME"
    content: str = ""
    proxied: bool = False
    id: str = ""


# =============================================================================
# DNS Provider Interface
# =============================================================================


class DNSProvider(ABC):
    """Abstract base class for DNS providers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the provider name for logging."""
        pass

    @abstractmethod
    def test_connection(self) -> bool:
        """Test connection to the DNS provider."""
        pass

    @abstractmethod
    def find_zone(self, zone_name: str) -> Zone:
        """Return the zone named exactly zone_name.

        Raises ConfigurationError if there is none, ProviderError if the
        lookup itself fails.
        """
        pass

    @abstractmethod
    def get_records(self, zone: Zone) -> List[DNSRecord]:
        """Get all DNS records in a zone."""
        pass

    @abstractmethod
    def add_record(
        self, zone: Zone, name: str, content: str, type: str = "CNAME", proxied: bool = True
    ) -> DNSRecord:
        """Add a DNS record. Raises RecordCreateError on failure."""
        pass


# =============================================================================
# Cloudflare
# =============================================================================


class CloudflareDNSProvider(DNSProvider):
    """Cloudflare API v4 provider authenticated with account email + global key."""

    def __init__(
        self,
        email: str,
        key: str,
        api_url: str = DEFAULT_CF_API_URL,
        timeout_seconds: float = 10.0,
    ):
        self._url = api_url.rstrip("/")
        self._timeout = timeout_seconds
        self._session = requests.Session()
        self._session.headers.update(
            {
                "X-Auth-Email": email,
                "X-Auth-Key": key,
                "Content-Type": "application/json",
            }
        )

    @property
    def name(self) -> str:
        return "Cloudflare"

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Send a request and unwrap Cloudflare's {"success", "errors", "result"} envelope."""
        url = f"{self._url}{path}"
        try:
            response = self._session.request(
                method, url, params=params, json=payload, timeout=self._timeout
            )
        except requests.exceptions.RequestException as e:
            raise ProviderError(f"{self.name} request {method} {path} failed: {e}") from e

        try:
            body = response.json()
        except (ValueError, json.JSONDecodeError):
            body = None

        if not isinstance(body, dict):
            raise ProviderError(
                f"{self.name} returned HTTP {response.status_code} with a non-JSON body "
                f"for {method} {path}"
            )
        if not response.ok or not body.get("success", False):
            raise ProviderError(
                f"{self.name} request {method} {path} failed "
                f"(HTTP {response.status_code}): {_format_errors(body.get('errors'))}"
            )
        return body

    def test_connection(self) -> bool:
        try:
            self._request("GET", "/user")
            logger.info(f"{self.name} connection successful")
            return True
        except ProviderError as e:
            logger.error(f"Failed to connect to {self.name}: {e}")
            return False

    def find_zone(self, zone_name: str) -> Zone:
        body = self._request("GET", "/zones", params={"name": zone_name})
        for item in body.get("result") or []:
            if isinstance(item, dict) and item.get("name") == zone_name and item.get("id"):
                return Zone(id=str(item["id"]), name=zone_name)
        raise ConfigurationError(f"Cluster domain {zone_name} is not a valid {self.name} zone")

    def get_records(self, zone: Zone) -> List[DNSRecord]:
        records: List[DNSRecord] = []
        page = 1
        while True:
            body = self._request(
                "GET",
                f"/zones/{zone.id}/dns_records",
                params={"page": page, "per_page": RECORDS_PER_PAGE},
            )
            for item in body.get("result") or []:
                if not isinstance(item, dict) or not isinstance(item.get("name"), str):
                    logger.warning(f"Skipping malformed record: {item}")
                    continue
                records.append(_parse_record(item))

            total_pages = self._total_pages(body, zone)
            if page >= total_pages:
                break
            page += 1
        return records

    def _total_pages(self, body: Dict[str, Any], zone: Zone) -> int:
        result_info = body.get("result_info")
        if result_info is None:
            return 1
        total_pages = result_info.get("total_pages") if isinstance(result_info, dict) else ""
        if total_pages is None:
            return 1
        if isinstance(total_pages, bool) or not isinstance(total_pages, int):
            raise ProviderError(
                f"{self.name} returned malformed result_info for zone {zone.name}: {result_info!r}"
            )
        return total_pages

    def add_record(
        self, zone: Zone, name: str, content: str, type: str = "CNAME", proxied: bool = True
    ) -> DNSRecord:
        payload = {
            "type": type,
            "name": name,
            "content": content,
            "ttl": 1,  # automatic
            "proxied": proxied,
        }
        try:
            body = self._request("POST", f"/zones/{zone.id}/dns_records", payload=payload)
        except ProviderError as e:
            raise RecordCreateError(name, str(e)) from e

        result = body.get("result")
        if isinstance(result, dict) and isinstance(result.get("name"), str):
            return _parse_record(result)
        return DNSRecord(name=name, type=type, content=content, proxied=proxied)


def _parse_record(raw: Dict[str, Any]) -> DNSRecord:
    return DNSRecord(
        name=raw["name"],
        type=str(raw.get("type") or ""),
        content=str(raw.get("content") or ""),
        proxied=bool(raw.get("proxied", False)),
        id=str(raw.get("id") or ""),
    )


def _format_errors(errors: Any) -> str:
    if not errors:
        return "no error details"
    if not isinstance(errors, list):
        return str(errors)
    parts = []
    for error in errors:
        if isinstance(error, dict):
            parts.append(f"[{error.get('code', '?')}] {error.get('message', '')}".strip())
        else:
            parts.append(str(error))
    return "; ".join(parts)
