"""
Exception hierarchy for package acquisition, extraction, and indexing.

Callers can react to broad categories (anything raised by the installer
derives from ``FhirPackageInstallerError``) or to the specific failure:
- Malformed identifiers or local sources
- Registry failures (missing packages, credentials, redirects)
- Transient network failures that survived the retry budget
- Corrupt archives and unparseable resource files
"""

from __future__ import annotations

from typing import Optional

__all__ = [
    "FhirPackageInstallerError",
    "InvalidIdentifierError",
    "InvalidSourceError",
    "InsecureTransportError",
    "RegistryError",
    "PackageNotFoundError",
    "AuthenticationFailedError",
    "AuthorizationFailedError",
    "TooManyRedirectsError",
    "TransientNetworkError",
    "ArchiveCorruptError",
    "StructuralScanError",
    "PackageNotInstalledError",
]


class FhirPackageInstallerError(RuntimeError):
    """Base exception for every failure raised by the package installer."""


class InvalidIdentifierError(FhirPackageInstallerError, ValueError):
    """Raised when a package identifier is empty or malformed."""


class InvalidSourceError(FhirPackageInstallerError):
    """Raised when a local package source path is empty or does not exist."""


class InsecureTransportError(FhirPackageInstallerError):
    """Raised when a plaintext http:// URL is requested without allow_http."""


class RegistryError(FhirPackageInstallerError):
    """Raised when the registry answers with an HTTP error status."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        url: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.url = url


class PackageNotFoundError(RegistryError):
    """Raised when a package, or the requested version of it, is not in the registry."""


class AuthenticationFailedError(RegistryError):
    """Raised on HTTP 401: the registry token is missing or invalid."""


class AuthorizationFailedError(RegistryError):
    """Raised on HTTP 403: the token is valid but access is forbidden."""


class TooManyRedirectsError(RegistryError):
    """Raised when a request exceeds the configured redirect depth."""


class TransientNetworkError(FhirPackageInstallerError):
    """Raised when a network failure persists across every retry attempt."""


class ArchiveCorruptError(FhirPackageInstallerError):
    """Raised when a package tarball cannot be decompressed or iterated."""


class StructuralScanError(FhirPackageInstallerError, ValueError):
    """Raised when the shallow JSON scanner meets text that is not a JSON object."""


class PackageNotInstalledError(FhirPackageInstallerError):
    """Raised when a cache entry is required but missing on disk."""
