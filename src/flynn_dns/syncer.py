"""Reconciliation of Flynn routes against DNS provider records.

A pass only ever adds records. Records that exist in the zone but have no
matching route are left alone, so records created by hand or by other tools
are never touched.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from flynn_dns.cloudflare import DNSProvider, DNSRecord, Zone
from flynn_dns.config import normalize_domain
from flynn_dns.controller import RouteSource, collect_route_domains
from flynn_dns.errors import ProviderError

logger = logging.getLogger(__name__)

RECORD_TYPE = "CNAME"


@dataclass
class SyncResult:
    """Outcome of one reconciliation pass."""

    desired: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    created: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    zone: Optional[Zone] = None

    @property
    def up_to_date(self) -> bool:
        return not self.missing

    @property
    def converged(self) -> bool:
        """Every desired domain has a record once this pass is done."""
        return not self.failed


def compute_missing(desired: Iterable[str], records: Iterable[DNSRecord]) -> List[str]:
    """Return desired domains with no record of the same name, in desired order."""
    existing = {normalize_domain(record.name) for record in records}
    missing: List[str] = []
    for domain in desired:
        if normalize_domain(domain) in existing or domain in missing:
            continue
        missing.append(domain)
    return missing


class RouteDNSSyncer:
    def __init__(
        self,
        *,
        dns_provider: DNSProvider,
        route_source: RouteSource,
        cluster_domain: str,
        max_workers: Optional[int] = None,
    ):
        self.dns_provider = dns_provider
        self.route_source = route_source
        self.cluster_domain = cluster_domain
        self.max_workers = max_workers

    def _create_record(self, zone: Zone, domain: str) -> bool:
        try:
            self.dns_provider.add_record(
                zone, domain, self.cluster_domain, type=RECORD_TYPE, proxied=True
            )
        except ProviderError as e:
            logger.error(f"Failed to add DNS record {domain} to {self.dns_provider.name}: {e}")
            return False
        logger.info(f"DNS record {domain} added to {self.dns_provider.name}")
        return True

    def apply(self, zone: Zone, missing: List[str]) -> SyncResult:
        """Create a record for every missing domain, concurrently.

        A failure for one domain does not stop the others.
        """
        result = SyncResult(missing=list(missing), zone=zone)
        if not missing:
            return result

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            outcomes = list(executor.map(lambda d: self._create_record(zone, d), missing))

        for domain, ok in zip(missing, outcomes):
            (result.created if ok else result.failed).append(domain)
        return result

    def sync_once(self) -> SyncResult:
        """Run one reconciliation pass.

        Raises:
            ControllerError: route discovery failed.
            ConfigurationError: the cluster domain is not a zone at the provider.
            ProviderError: zone lookup or record listing failed.
        """
        desired = collect_route_domains(
            self.route_source, self.cluster_domain, max_workers=self.max_workers
        )
        if not desired:
            logger.info("no routes found on flynn cluster")
            return SyncResult()
        logger.info(f"{len(desired)} routes found on flynn cluster")

        zone = self.dns_provider.find_zone(self.cluster_domain)
        logger.debug(f"Resolved {self.dns_provider.name} zone {zone.name} ({zone.id})")

        records = self.dns_provider.get_records(zone)
        missing = compute_missing(desired, records)
        if not missing:
            logger.info(f"{self.dns_provider.name} is up to date")
            return SyncResult(desired=desired, zone=zone)

        logger.info(f"dns records to create: {', '.join(missing)}")
        result = self.apply(zone, missing)
        result.desired = desired

        if not result.converged:
            logger.warning(
                f"{self.dns_provider.name} records partially updated: "
                f"{len(result.created)} created, {len(result.failed)} failed "
                f"({', '.join(result.failed)}); retrying next pass"
            )
        else:
            logger.info(f"{self.dns_provider.name} records updated successfully")
        return result
