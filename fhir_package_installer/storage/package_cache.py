from abc import ABC, abstractmethod
from pathlib import Path

from fhir_package_installer.domain.models import PackageIdentifier


class PackageCache(ABC):
    """
    Abstract base class for the local package cache.

    Identifiers passed in are always resolved (no 'latest' sentinel).
    """

    @abstractmethod
    def get_cache_path(self) -> Path:
        """Root directory of the cache."""
        pass

    @abstractmethod
    def get_package_dir(self, package: PackageIdentifier) -> Path:
        """Directory of the cache entry for a package (may not exist yet)."""
        pass

    @abstractmethod
    def is_installed(self, package: PackageIdentifier) -> bool:
        """Whether the cache entry exists. Contents are not validated."""
        pass

    @abstractmethod
    def install(self, package: PackageIdentifier, source: Path, move: bool = True) -> Path:
        """
        Place a staged package tree into the cache.
        Must be idempotent and safe against concurrent installers.
        """
        pass

    @abstractmethod
    def remove(self, package: PackageIdentifier) -> None:
        """Delete the cache entry if present."""
        pass

    def get_manifest_path(self, package: PackageIdentifier) -> Path:
        return self.get_package_dir(package) / "package" / "package.json"

    def get_index_path(self, package: PackageIdentifier) -> Path:
        return self.get_package_dir(package) / "package" / ".fpi.index.json"
