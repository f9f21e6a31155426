"""Exception types raised while syncing Flynn routes into Cloudflare."""

from __future__ import annotations


class FlynnDNSError(Exception):
    """Base class for errors that abort a single sync pass."""


class ConfigurationError(FlynnDNSError):
    """Missing/invalid settings, or the cluster domain is not a provider zone."""


class ControllerError(FlynnDNSError):
    """The Flynn controller could not be reached or returned something unusable."""


class ProviderError(FlynnDNSError):
    """A DNS provider call failed (zone lookup, record listing, connectivity)."""


class RecordCreateError(ProviderError):
    """Creating a single DNS record failed.

    Contained per domain by the syncer; never aborts a pass.
    """

    def __init__(self, domain: str, message: str):
        super().__init__(message)
        self.domain = domain
