"""Unit tests for RouteDNSSyncer reconciliation logic.

Tests the core sync algorithm that decides which DNS records to create,
ensuring passes are additive, idempotent and scoped to the cluster domain.
"""

from typing import Dict, List, Optional, Set

import pytest

from flynn_dns.cloudflare import DNSProvider, DNSRecord, Zone
from flynn_dns.controller import App, Route, RouteSource
from flynn_dns.errors import (
    ConfigurationError,
    ControllerError,
    ProviderError,
    RecordCreateError,
)
from flynn_dns.syncer import RouteDNSSyncer, SyncResult, compute_missing

CLUSTER_DOMAIN = "example.com"

# =============================================================================
# Mock DNS Provider
# =============================================================================


class MockDNSProvider(DNSProvider):
    """Mock DNS provider with in-memory record storage and call tracking."""

    def __init__(
        self,
        initial_records: Optional[List[DNSRecord]] = None,
        zones: Optional[List[str]] = None,
        failing_domains: Optional[Set[str]] = None,
        fail_listing: bool = False,
    ):
        self._records: List[DNSRecord] = list(initial_records or [])
        self._zones = zones if zones is not None else [CLUSTER_DOMAIN]
        self._failing_domains = failing_domains or set()
        self._fail_listing = fail_listing
        self.find_zone_calls: List[str] = []
        self.get_records_calls: List[Zone] = []
        self.add_calls: List[tuple] = []

    @property
    def name(self) -> str:
        return "MockDNS"

    def test_connection(self) -> bool:
        return True

    def find_zone(self, zone_name: str) -> Zone:
        self.find_zone_calls.append(zone_name)
        if zone_name not in self._zones:
            raise ConfigurationError(f"Cluster domain {zone_name} is not a valid MockDNS zone")
        return Zone(id=f"zone-{zone_name}", name=zone_name)

    def get_records(self, zone: Zone) -> List[DNSRecord]:
        self.get_records_calls.append(zone)
        if self._fail_listing:
            raise ProviderError("listing failed")
        return list(self._records)

    def add_record(
        self, zone: Zone, name: str, content: str, type: str = "CNAME", proxied: bool = True
    ) -> DNSRecord:
        self.add_calls.append((zone.id, name, content, type, proxied))
        if name in self._failing_domains:
            raise RecordCreateError(name, f"rejected {name}")
        record = DNSRecord(name=name, type=type, content=content, proxied=proxied)
        self._records.append(record)
        return record

    @property
    def records(self) -> List[DNSRecord]:
        return list(self._records)


# =============================================================================
# Mock Route Source
# =============================================================================


class MockRouteSource(RouteSource):
    """Mock controller with configurable apps and routes."""

    def __init__(
        self,
        apps: List[App],
        routes_by_app: Dict[str, List[str]],
        failing_apps: Optional[Set[str]] = None,
    ):
        self._apps = apps
        self._routes_by_app = routes_by_app
        self._failing_apps = failing_apps or set()
        self.route_calls: List[str] = []

    @property
    def name(self) -> str:
        return "MockController"

    def get_apps(self) -> List[App]:
        return self._apps

    def get_routes(self, app: App) -> List[Route]:
        self.route_calls.append(app.id)
        if app.id in self._failing_apps:
            raise ControllerError(f"routes of {app.id} unavailable")
        return [Route(domain=d, app_id=app.id) for d in self._routes_by_app.get(app.id, [])]


# =============================================================================
# Test Helpers
# =============================================================================


def make_app(app_id: str, system: bool = False) -> App:
    meta = {"flynn-system-app": "true"} if system else {}
    return App(id=app_id, name=app_id, meta=meta)


def make_record(name: str, content: str = CLUSTER_DOMAIN) -> DNSRecord:
    return DNSRecord(name=name, type="CNAME", content=content, proxied=True)


def create_test_syncer(
    routes: Optional[Dict[str, List[str]]] = None,
    system_apps: Optional[Set[str]] = None,
    dns_records: Optional[List[DNSRecord]] = None,
    **dns_kwargs,
) -> tuple:
    """Create a syncer with mocked collaborators.

    Returns tuple of (syncer, dns_provider, route_source) for verification.
    """
    routes = routes or {}
    system_apps = system_apps or set()
    apps = [make_app(app_id, system=app_id in system_apps) for app_id in routes]
    source = MockRouteSource(apps, routes)
    dns = MockDNSProvider(initial_records=dns_records, **dns_kwargs)
    syncer = RouteDNSSyncer(
        dns_provider=dns, route_source=source, cluster_domain=CLUSTER_DOMAIN
    )
    return syncer, dns, source


# =============================================================================
# Diff
# =============================================================================


class TestComputeMissing:
    def test_missing_preserves_desired_order(self) -> None:
        desired = ["c.example.com", "a.example.com", "b.example.com"]
        records = [make_record("a.example.com")]

        assert compute_missing(desired, records) == ["c.example.com", "b.example.com"]

    def test_nothing_missing(self) -> None:
        records = [make_record("a.example.com"), make_record("b.example.com")]

        assert compute_missing(["a.example.com", "b.example.com"], records) == []

    def test_record_type_and_content_are_ignored(self) -> None:
        """Any record with the same name counts as present, whatever it points at."""
        records = [DNSRecord(name="a.example.com", type="A", content="1.2.3.4")]

        assert compute_missing(["a.example.com"], records) == []

    def test_names_compared_case_insensitively(self) -> None:
        records = [make_record("App.Example.com.")]

        assert compute_missing(["app.example.com"], records) == []

    def test_duplicate_desired_reported_once(self) -> None:
        assert compute_missing(["a.example.com", "a.example.com"], []) == ["a.example.com"]


# =============================================================================
# Reconciliation
# =============================================================================


class TestSyncOnce:
    def test_creates_only_missing_record(self) -> None:
        """desired={a,b}, actual={a} issues exactly one create, for b."""
        syncer, dns, _ = create_test_syncer(
            routes={"web": ["a.example.com", "b.example.com"]},
            dns_records=[make_record("a.example.com")],
        )

        result = syncer.sync_once()

        assert dns.add_calls == [
            ("zone-example.com", "b.example.com", CLUSTER_DOMAIN, "CNAME", True)
        ]
        assert result.missing == ["b.example.com"]
        assert result.created == ["b.example.com"]
        assert result.failed == []

    def test_second_pass_is_idempotent(self) -> None:
        syncer, dns, _ = create_test_syncer(
            routes={"web": ["a.example.com"], "api": ["api.example.com"]},
        )

        syncer.sync_once()
        assert len(dns.add_calls) == 2

        result = syncer.sync_once()

        assert len(dns.add_calls) == 2
        assert result.up_to_date is True
        assert result.created == []

    def test_unrelated_records_are_untouched(self) -> None:
        existing = [
            make_record("manual.example.com", content="elsewhere.net"),
            DNSRecord(name="example.com", type="A", content="10.0.0.1", id="r1"),
        ]
        syncer, dns, _ = create_test_syncer(
            routes={"web": ["a.example.com"]}, dns_records=existing
        )

        syncer.sync_once()

        assert existing[0] in dns.records
        assert existing[1] in dns.records
        assert [call[1] for call in dns.add_calls] == ["a.example.com"]

    def test_up_to_date_makes_no_create_calls(self) -> None:
        syncer, dns, _ = create_test_syncer(
            routes={"web": ["a.example.com"]},
            dns_records=[make_record("a.example.com")],
        )

        result = syncer.sync_once()

        assert dns.add_calls == []
        assert result.desired == ["a.example.com"]
        assert result.missing == []

    def test_system_app_contributes_no_domains(self) -> None:
        syncer, dns, source = create_test_syncer(
            routes={
                "router": ["router.example.com"],
                "web": ["web.example.com"],
            },
            system_apps={"router"},
        )

        result = syncer.sync_once()

        assert result.desired == ["web.example.com"]
        assert [call[1] for call in dns.add_calls] == ["web.example.com"]
        assert "router" not in source.route_calls

    def test_routes_outside_cluster_domain_are_ignored(self) -> None:
        syncer, dns, _ = create_test_syncer(
            routes={"web": ["web.example.com", "web.other.org"]},
        )

        result = syncer.sync_once()

        assert result.desired == ["web.example.com"]
        assert [call[1] for call in dns.add_calls] == ["web.example.com"]

    def test_empty_desired_skips_zone_and_records(self) -> None:
        syncer, dns, _ = create_test_syncer(routes={"web": []})

        result = syncer.sync_once()

        assert result == SyncResult()
        assert dns.find_zone_calls == []
        assert dns.get_records_calls == []
        assert dns.add_calls == []

    def test_only_system_apps_skips_zone_lookup(self) -> None:
        syncer, dns, _ = create_test_syncer(
            routes={"controller": ["controller.example.com"]},
            system_apps={"controller"},
        )

        syncer.sync_once()

        assert dns.find_zone_calls == []

    def test_zone_mismatch_raises_configuration_error(self) -> None:
        syncer, dns, _ = create_test_syncer(routes={"web": ["a.example.com"]}, zones=["other.org"])

        with pytest.raises(ConfigurationError):
            syncer.sync_once()

        assert dns.get_records_calls == []
        assert dns.add_calls == []

    def test_controller_failure_aborts_pass(self) -> None:
        apps = [make_app("web"), make_app("api")]
        source = MockRouteSource(
            apps, {"web": ["a.example.com"], "api": ["b.example.com"]}, failing_apps={"api"}
        )
        dns = MockDNSProvider()
        syncer = RouteDNSSyncer(
            dns_provider=dns, route_source=source, cluster_domain=CLUSTER_DOMAIN
        )

        with pytest.raises(ControllerError):
            syncer.sync_once()

        assert dns.find_zone_calls == []
        assert dns.add_calls == []

    def test_record_listing_failure_aborts_pass(self) -> None:
        syncer, dns, _ = create_test_syncer(routes={"web": ["a.example.com"]}, fail_listing=True)

        with pytest.raises(ProviderError):
            syncer.sync_once()

        assert dns.add_calls == []


class TestPartialFailure:
    def test_failed_create_does_not_stop_others(self) -> None:
        """Three missing domains, the second is rejected: first and third still land."""
        syncer, dns, _ = create_test_syncer(
            routes={"web": ["one.example.com", "two.example.com", "three.example.com"]},
            failing_domains={"two.example.com"},
        )

        result = syncer.sync_once()

        assert sorted(call[1] for call in dns.add_calls) == [
            "one.example.com",
            "three.example.com",
            "two.example.com",
        ]
        assert result.created == ["one.example.com", "three.example.com"]
        assert result.failed == ["two.example.com"]
        names = {r.name for r in dns.records}
        assert names == {"one.example.com", "three.example.com"}

    def test_failed_domain_retried_next_pass(self) -> None:
        syncer, dns, _ = create_test_syncer(
            routes={"web": ["one.example.com", "two.example.com"]},
            failing_domains={"two.example.com"},
        )

        syncer.sync_once()
        dns._failing_domains.clear()
        result = syncer.sync_once()

        assert result.missing == ["two.example.com"]
        assert result.created == ["two.example.com"]

    def test_plain_provider_error_on_create_is_contained(self) -> None:
        """Any provider error from add_record stays scoped to its domain."""

        class FlakyDNSProvider(MockDNSProvider):
            def add_record(self, zone, name, content, type="CNAME", proxied=True):
                if name == "two.example.com":
                    self.add_calls.append((zone.id, name, content, type, proxied))
                    raise ProviderError("connection reset")
                return super().add_record(zone, name, content, type=type, proxied=proxied)

        source = MockRouteSource(
            [make_app("web")], {"web": ["one.example.com", "two.example.com"]}
        )
        dns = FlakyDNSProvider()
        syncer = RouteDNSSyncer(
            dns_provider=dns, route_source=source, cluster_domain=CLUSTER_DOMAIN
        )

        result = syncer.sync_once()

        assert result.created == ["one.example.com"]
        assert result.failed == ["two.example.com"]


class TestSyncResult:
    def test_converged_when_nothing_failed(self) -> None:
        syncer, _, _ = create_test_syncer(routes={"web": ["a.example.com"]})

        result = syncer.sync_once()

        assert result.converged is True
        assert result.up_to_date is False

    def test_not_converged_after_failed_create(self) -> None:
        syncer, _, _ = create_test_syncer(
            routes={"web": ["a.example.com", "b.example.com"]},
            failing_domains={"b.example.com"},
        )

        result = syncer.sync_once()

        assert result.converged is False
        assert result.created == ["a.example.com"]

    def test_up_to_date_pass_is_converged(self) -> None:
        syncer, _, _ = create_test_syncer(
            routes={"web": ["a.example.com"]}, dns_records=[make_record("a.example.com")]
        )

        result = syncer.sync_once()

        assert result.up_to_date is True
        assert result.converged is True
