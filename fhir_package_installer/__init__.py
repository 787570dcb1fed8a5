"""
Download, cache and index FHIR packages from npm-style registries.

Typical use::

    from fhir_package_installer import FhirPackageInstaller, InstallerConfig

    installer = FhirPackageInstaller(InstallerConfig(cache_path="~/.fhir/packages"))
    await installer.install("hl7.fhir.us.core@6.1.0")
    index = await installer.get_index("hl7.fhir.us.core#6.1.0")
"""

from fhir_package_installer.domain.errors import (
    ArchiveCorruptError,
    AuthenticationFailedError,
    AuthorizationFailedError,
    FhirPackageInstallerError,
    InsecureTransportError,
    InvalidIdentifierError,
    InvalidSourceError,
    PackageNotFoundError,
    PackageNotInstalledError,
    RegistryError,
    StructuralScanError,
    TooManyRedirectsError,
    TransientNetworkError,
)
from fhir_package_installer.domain.models import (
    DownloadPackageOptions,
    IndexEntry,
    InstallerConfig,
    InstallPackageOptions,
    PackageIdentifier,
    PackageIndex,
    PackageManifest,
)
from fhir_package_installer.domain.shallow_parse import shallow_parse
from fhir_package_installer.services.installer import FhirPackageInstaller

__version__ = "0.1.0"

__all__ = [
    "FhirPackageInstaller",
    "InstallerConfig",
    "PackageIdentifier",
    "PackageManifest",
    "PackageIndex",
    "IndexEntry",
    "InstallPackageOptions",
    "DownloadPackageOptions",
    "shallow_parse",
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
