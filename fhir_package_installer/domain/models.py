"""
Pydantic models for the FHIR package installer.

This module defines all data models used throughout the package, including:
- Package identifiers and manifests
- The generated package index (``.fpi.index.json``) and its entries
- Installer configuration
- Options for local installs and plain downloads

All models use Pydantic for validation, serialization, and type safety.
"""

from __future__ import annotations

import math
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    field_validator,
)


DEFAULT_REGISTRY_URL = "https://packages.fhir.org"
FALLBACK_REGISTRY_URL = "https://packages.simplifier.net"
LATEST_VERSION = "latest"
INDEX_VERSION = 2

# Scalar JSON value kept in index entries. Strict types stop pydantic from
# coercing e.g. a numeric "version" into a string on the way in.
Scalar = Union[StrictBool, StrictInt, StrictFloat, StrictStr]


def default_concurrency() -> int:
    """Worker limit for concurrent file operations: CPU count, at least 4."""
    return max(4, os.cpu_count() or 1)


# ---------------------------------------------------------------------------
# Package Models
# ---------------------------------------------------------------------------


class PackageIdentifier(BaseModel):
    """
    Name and version of a package.

    ``version`` may hold the ``latest`` sentinel until the installer resolves
    it against the registry; resolved identifiers always carry a concrete
    version.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(
        description="Dotted package name, e.g. 'hl7.fhir.r4.core'.",
    )
    version: str = Field(
        default=LATEST_VERSION,
        description="Concrete version string or 'latest'.",
    )

    @property
    def is_latest(self) -> bool:
        return not self.version or self.version == LATEST_VERSION

    def __str__(self) -> str:
        return f"{self.id}@{self.version}"


class PackageManifest(BaseModel):
    """
    The package's own ``package/package.json``.

    Only the fields the installer relies on are declared; everything else
    the author put in the manifest is preserved as extra fields.
    """

    model_config = ConfigDict(extra="allow")

    name: str
    version: str
    dependencies: Dict[str, str] = Field(
        default_factory=dict,
        description="Declared dependencies as {packageId: exactVersion}.",
    )

    @field_validator("dependencies", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return value or {}


# ---------------------------------------------------------------------------
# Index Models
# ---------------------------------------------------------------------------


class IndexEntry(BaseModel):
    """
    One resource file in the package index (index-version 2 file entry).

    Only ``filename`` is required. Every other field is copied from the
    resource when it holds a scalar value there, and omitted otherwise.
    """

    model_config = ConfigDict(populate_by_name=True)

    filename: str
    resource_type: Optional[Scalar] = Field(default=None, alias="resourceType")
    id: Optional[Scalar] = None
    url: Optional[Scalar] = None
    name: Optional[Scalar] = None
    version: Optional[Scalar] = None
    kind: Optional[Scalar] = None
    type: Optional[Scalar] = None
    supplements: Optional[Scalar] = None
    content: Optional[Scalar] = None
    base_definition: Optional[Scalar] = Field(default=None, alias="baseDefinition")
    derivation: Optional[Scalar] = None
    date: Optional[Scalar] = None

    @classmethod
    def from_resource(cls, filename: str, resource: Dict[str, Any]) -> "IndexEntry":
        """Build an entry from the (shallow) content of a resource file."""
        fields = {
            field.alias or name: resource.get(field.alias or name)
            for name, field in cls.model_fields.items()
            if name != "filename"
        }
        kept = {
            key: value
            for key, value in fields.items()
            if isinstance(value, (str, int, bool))
            # Overflowing numbers decode to inf, which JSON cannot carry.
            or (isinstance(value, float) and math.isfinite(value))
        }
        return cls(filename=filename, **kept)

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class PackageIndex(BaseModel):
    """
    Contents of ``package/.fpi.index.json``.

    Derived and disposable: it can always be regenerated from the resource
    files of the cache entry.
    """

    model_config = ConfigDict(populate_by_name=True)

    index_version: int = Field(
        default=INDEX_VERSION,
        alias="index-version",
        serialization_alias="index-version",
    )
    files: List[IndexEntry] = Field(default_factory=list)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Installer Configuration
# ---------------------------------------------------------------------------


def _default_cache_path() -> Path:
    from fhir_package_installer.core.dependencies import get_default_cache_path

    return get_default_cache_path()


class InstallerConfig(BaseModel):
    """
    Configuration for one ``FhirPackageInstaller`` instance.

    Nothing here is global: every installer owns its configuration, so
    several installers with different registries or cache roots can live in
    one process.
    """

    registry_url: str = Field(
        default=DEFAULT_REGISTRY_URL,
        description="Base URL of the npm-style package registry.",
    )
    registry_token: Optional[str] = Field(
        default=None,
        description="Bearer token sent to the registry host (private registries).",
    )
    cache_path: Path = Field(
        default_factory=_default_cache_path,
        description="Root of the package cache. Created on first use.",
    )
    skip_examples: bool = Field(
        default=False,
        description="Skip dependencies whose package id contains 'examples'.",
    )
    allow_http: bool = Field(
        default=False,
        description="Allow plaintext http:// registry URLs. Intended for tests only.",
    )
    retry_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts per request when the network fails transiently.",
    )
    retry_delay: float = Field(
        default=5.0,
        ge=0,
        description="Seconds to wait between retry attempts.",
    )
    max_redirects: int = Field(
        default=5,
        ge=0,
        description="Maximum number of redirects followed per request.",
    )
    request_timeout: float = Field(
        default=60.0,
        gt=0,
        description="Timeout (seconds) for individual HTTP operations.",
    )
    max_concurrency: int = Field(
        default_factory=default_concurrency,
        ge=1,
        description="Maximum concurrent file write/scan operations.",
    )

    @field_validator("registry_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("cache_path", mode="before")
    @classmethod
    def _expand_user(cls, value: Any) -> Any:
        if isinstance(value, (str, Path)):
            return Path(value).expanduser()
        return value

    @property
    def is_private_registry(self) -> bool:
        return self.registry_url != DEFAULT_REGISTRY_URL


# ---------------------------------------------------------------------------
# Operation Options
# ---------------------------------------------------------------------------


class InstallPackageOptions(BaseModel):
    """Options for installing a package from a local tarball or directory."""

    package_id: Optional[Union[str, PackageIdentifier]] = Field(
        default=None,
        description="Identifier to install under. Defaults to name/version from package.json.",
    )
    override: bool = Field(
        default=False,
        description="Replace the cache entry if the package is already installed.",
    )
    install_dependencies: bool = Field(
        default=False,
        description="Install the package's declared dependencies afterwards.",
    )


class DownloadPackageOptions(BaseModel):
    """Options for downloading a package outside the cache."""

    destination: Path = Field(
        default=Path("."),
        description="Directory receiving the tarball or the extracted package.",
    )
    overwrite: bool = Field(
        default=False,
        description="Replace an existing tarball or directory at the target path.",
    )
    extract: bool = Field(
        default=False,
        description="Extract into '<destination>/<id>#<version>' instead of saving the .tgz.",
    )
