#!/usr/bin/env python3
"""flynn-dns - Flynn route to Cloudflare DNS synchronization

Keeps a Cloudflare zone in step with the HTTP routes declared on a Flynn
cluster. Every route of a non-system app whose domain contains the cluster
domain gets a proxied CNAME record pointing at the cluster domain. Records
are only ever added; nothing is updated or deleted.

A pass runs immediately at startup and then every POLL_INTERVAL_SECONDS
(default 600). A failed pass is logged and retried on the next tick.

See flynn_dns.config for the full list of settings.
"""

from __future__ import annotations

import logging
import sys
import time
from typing import Callable, Optional

from flynn_dns.cloudflare import CloudflareDNSProvider, DNSProvider
from flynn_dns.config import Settings, load_settings
from flynn_dns.controller import FlynnController, RouteSource
from flynn_dns.errors import ConfigurationError, FlynnDNSError
from flynn_dns.syncer import RouteDNSSyncer

logger = logging.getLogger(__name__)

# =============================================================================
# Logging Setup
# =============================================================================


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


# =============================================================================
# Provider Registry
# =============================================================================


def create_dns_provider(settings: Settings) -> DNSProvider:
    """Factory function to create the Cloudflare DNS provider."""
    return CloudflareDNSProvider(
        email=settings.cf_email,
        key=settings.cf_key,
        api_url=settings.cf_api_url,
        timeout_seconds=settings.request_timeout,
    )


def create_route_source(settings: Settings) -> RouteSource:
    """Factory function to create the Flynn controller client."""
    return FlynnController(
        url=settings.controller_url,
        auth_key=settings.controller_auth_key,
        timeout_seconds=settings.request_timeout,
        verify_tls=settings.controller_verify_tls,
    )


# =============================================================================
# Scheduling
# =============================================================================


def run_pass(syncer: RouteDNSSyncer) -> bool:
    """Run one sync pass, containing errors that only abort this pass."""
    try:
        syncer.sync_once()
        return True
    except FlynnDNSError as e:
        logger.error(f"Sync pass failed ({type(e).__name__}): {e}")
        return False


def run_loop(
    syncer: RouteDNSSyncer,
    interval_seconds: float,
    *,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
    max_passes: Optional[int] = None,
) -> None:
    """Run a pass now and then every interval_seconds, one pass at a time.

    The wait after a pass is shortened by the time the pass took, so passes
    start on a fixed cadence unless one overruns the interval.
    """
    passes = 0
    while True:
        started = clock()
        run_pass(syncer)
        passes += 1
        if max_passes is not None and passes >= max_passes:
            return

        elapsed = clock() - started
        if elapsed >= interval_seconds:
            logger.warning(
                f"Sync pass took {elapsed:.1f}s, longer than the {interval_seconds}s interval"
            )
        sleep(max(0.0, interval_seconds - elapsed))


# =============================================================================
# Main
# =============================================================================


def main() -> None:
    """Main entry point."""
    try:
        settings = load_settings()
    except ConfigurationError as e:
        configure_logging()
        logger.error(f"Configuration validation failed: {e}")
        sys.exit(1)

    configure_logging(settings.log_level)
    logger.info(f"flynn-dns: {settings.cluster_domain}")

    dns_provider = create_dns_provider(settings)
    route_source = create_route_source(settings)

    logger.info(f"Controller: {settings.controller_url}")
    logger.info(f"DNS Provider: {dns_provider.name}")
    logger.info(f"Sync mode: {settings.sync_mode}")
    if settings.sync_mode == "watch":
        logger.info(f"Poll interval: {settings.poll_interval_seconds}s")
    if not settings.controller_verify_tls:
        logger.warning("⚠️  CONTROLLER_VERIFY_TLS is off. Controller certificate is not checked.")

    # Test connection; an outage here is retried by the sync passes.
    if not dns_provider.test_connection():
        logger.warning(f"Cannot connect to {dns_provider.name} yet. Starting sync anyway.")

    syncer = RouteDNSSyncer(
        dns_provider=dns_provider,
        route_source=route_source,
        cluster_domain=settings.cluster_domain,
    )

    try:
        if settings.sync_mode == "once":
            if not run_pass(syncer):
                sys.exit(1)
            return

        run_loop(syncer, settings.poll_interval_seconds)

    except KeyboardInterrupt:
        logger.info("Shutting down gracefully...")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
