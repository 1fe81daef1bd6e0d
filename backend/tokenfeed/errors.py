from __future__ import annotations


class UpstreamError(Exception):
    """A provider call failed."""

    def __init__(self, provider: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code


class UpstreamTransientError(UpstreamError):
    """Rate limited or server-side failure; worth retrying."""


class UpstreamFatalError(UpstreamError):
    """Malformed request, unexpected 4xx or unusable payload."""


class UpstreamUnavailableError(UpstreamError):
    """The provider could not be reached or did not answer in time."""


class NormalizationError(ValueError):
    """A single provider record could not be turned into an Asset."""


class CacheStoreError(Exception):
    """The backing cache store failed."""


class EnrichmentError(Exception):
    """The price-only enrichment pass failed."""
