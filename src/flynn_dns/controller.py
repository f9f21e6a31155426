"""Flynn controller access and route discovery."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests
from requests.auth import HTTPBasicAuth

from flynn_dns.config import _parse_bool, normalize_domain
from flynn_dns.errors import ControllerError

logger = logging.getLogger(__name__)

SYSTEM_APP_META_KEY = "flynn-system-app"

# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class App:
    """A Flynn application as returned by the controller."""

    id: str
    name: str = ""
    meta: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    @property
    def is_system_app(self) -> bool:
        return _parse_bool(self.meta.get(SYSTEM_APP_META_KEY), default=False)


@dataclass(frozen=True)
class Route:
    """A route belonging to a Flynn application."""

    domain: str
    app_id: str = ""
    type: str = "http"


# =============================================================================
# Route Source Interface and Implementations
# =============================================================================


class RouteSource(ABC):
    """Abstract base class for anything that can list apps and their routes."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the source name for logging."""
        pass

    @abstractmethod
    def get_apps(self) -> List[App]:
        """Get all applications."""
        pass

    @abstractmethod
    def get_routes(self, app: App) -> List[Route]:
        """Get all routes of one application."""
        pass


class FlynnController(RouteSource):
    """Flynn controller HTTP API client."""

    def __init__(
        self,
        url: str,
        auth_key: str,
        timeout_seconds: float = 10.0,
        verify_tls: bool = True,
    ):
        self._url = url.rstrip("/")
        self._timeout = timeout_seconds
        self._verify_tls = verify_tls
        self._session = requests.Session()
        # The controller expects an empty user name and the auth key as password.
        self._session.auth = HTTPBasicAuth("", auth_key)

    @property
    def name(self) -> str:
        return "Flynn controller"

    def _get(self, path: str) -> Any:
        url = f"{self._url}{path}"
        try:
            response = self._session.get(url, timeout=self._timeout, verify=self._verify_tls)
            response.raise_for_status()
            return response.json()
        except (requests.exceptions.RequestException, json.JSONDecodeError) as e:
            raise ControllerError(f"{self.name} request GET {path} failed: {e}") from e

    def get_apps(self) -> List[App]:
        data = self._get("/apps")
        if not isinstance(data, list):
            raise ControllerError(
                f"Unexpected response format from GET /apps: "
                f"expected list, got {type(data).__name__}"
            )

        apps: List[App] = []
        for item in data:
            if not isinstance(item, dict) or not item.get("id"):
                logger.warning(f"Skipping malformed app entry: {item}")
                continue
            apps.append(
                App(
                    id=str(item["id"]),
                    name=str(item.get("name") or ""),
                    meta=item["meta"] if isinstance(item.get("meta"), dict) else {},
                )
            )
        return apps

    def get_routes(self, app: App) -> List[Route]:
        data = self._get(f"/apps/{app.id}/routes")
        if data is None:
            return []
        if not isinstance(data, list):
            raise ControllerError(
                f"Unexpected routes format for app {app.id}: "
                f"expected list, got {type(data).__name__}"
            )

        routes: List[Route] = []
        for item in data:
            domain = item.get("domain") if isinstance(item, dict) else None
            if not isinstance(domain, str) or not domain:
                # TCP routes carry a port instead of a domain.
                logger.debug(f"Skipping route without domain on app {app.id}: {item}")
                continue
            routes.append(
                Route(domain=domain, app_id=app.id, type=str(item.get("type") or "http"))
            )
        return routes


# =============================================================================
# Route Discovery
# =============================================================================


def matches_cluster_domain(domain: str, cluster_domain: str) -> bool:
    """Return True if a route domain belongs to the managed cluster domain.

    This is a substring test, not a label-aware suffix match, so
    "example.com.evil.org" matches "example.com" as well.
    """
    return cluster_domain in domain


def collect_route_domains(
    source: RouteSource,
    cluster_domain: str,
    max_workers: Optional[int] = None,
) -> List[str]:
    """Return the distinct route domains of all non-system apps under cluster_domain.

    Routes are fetched concurrently, one task per app. The first failing
    fetch (in app order) aborts discovery with ControllerError. Result order
    follows app order, then route order.
    """
    apps = source.get_apps()
    user_apps = [app for app in apps if not app.is_system_app]
    skipped = len(apps) - len(user_apps)
    if skipped:
        logger.debug(f"Ignoring {skipped} system app(s)")
    if not user_apps:
        return []

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures: List[Future] = [executor.submit(source.get_routes, app) for app in user_apps]
        try:
            routes_by_app = [future.result() for future in futures]
        except Exception:
            for future in futures:
                future.cancel()
            raise

    domains: Dict[str, None] = {}
    for app, routes in zip(user_apps, routes_by_app):
        for route in routes:
            domain = normalize_domain(route.domain)
            if not matches_cluster_domain(domain, cluster_domain):
                logger.debug(
                    f"Route '{route.domain}' of app '{app.name or app.id}' "
                    f"is outside {cluster_domain}"
                )
                continue
            domains.setdefault(domain, None)
    return list(domains)
