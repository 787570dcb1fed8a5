"""
Install FHIR packages (and their dependencies) into the local package cache.
"""
from __future__ import annotations

import asyncio
import json
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Dict, Optional, Set, Union

import aiofiles
import httpx
from pydantic import ValidationError

from fhir_package_installer.core.dependencies import load_config_from_env
from fhir_package_installer.domain.errors import (
    FhirPackageInstallerError,
    InvalidSourceError,
    PackageNotInstalledError,
)
from fhir_package_installer.domain.models import (
    DownloadPackageOptions,
    InstallerConfig,
    InstallPackageOptions,
    PackageIdentifier,
    PackageIndex,
    PackageManifest,
)
from fhir_package_installer.domain.package_utils import (
    MANIFEST_FILENAME,
    PACKAGE_FOLDER,
    fix_dependency_versions,
    is_example_package,
    to_dir_name,
    to_package_identifier,
)
from fhir_package_installer.services.extraction import TarballExtractor
from fhir_package_installer.services.indexing import PackageIndexer
from fhir_package_installer.services.registry_client import RegistryClient
from fhir_package_installer.storage.directory_cache import DirectoryPackageCache

PackageRef = Union[str, PackageIdentifier]

DEFAULT_LOGGER_NAME = "fhir_package_installer"


class FhirPackageInstaller:
    """
    Downloads, extracts, caches and indexes FHIR packages.

    Each instance owns its configuration and logger; several instances (or
    processes) may share one cache directory safely.
    """

    def __init__(
        self,
        config: Optional[InstallerConfig] = None,
        logger: Optional[logging.Logger] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or load_config_from_env()
        self._logger = logger or logging.getLogger(DEFAULT_LOGGER_NAME)

        self.cache = DirectoryPackageCache(self.config.cache_path, self._logger)
        self.registry = RegistryClient(self.config, self._logger, transport=transport)
        self.extractor = TarballExtractor(self._logger, self.config.max_concurrency)
        self.indexer = PackageIndexer(self.cache, self._logger, self.config.max_concurrency)

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def get_cache_path(self) -> Path:
        """Root of the package cache used by this installer."""
        return self.cache.get_cache_path()

    # ========================================================================
    # Identifier resolution
    # ========================================================================

    async def get_latest_version(self, package_id: str) -> str:
        """Latest published version of a package according to the registry's dist-tags."""
        try:
            return await self.registry.get_latest_version(package_id)
        except Exception as e:
            self._logger.error(f"Failed to fetch latest version for package {package_id}: {e}")
            raise

    async def to_package_object(self, package: PackageRef) -> PackageIdentifier:
        """
        Parse an identifier (``name``, ``name@version``, ``name#version`` or a
        PackageIdentifier) and resolve a missing or 'latest' version.
        """
        try:
            identifier = to_package_identifier(package)
        except FhirPackageInstallerError as e:
            self._logger.error(str(e))
            raise
        if identifier.is_latest:
            version = await self.get_latest_version(identifier.id)
            identifier = PackageIdentifier(id=identifier.id, version=version)
        return identifier

    # ========================================================================
    # Read-only accessors
    # ========================================================================

    async def get_package_dir_path(self, package: PackageRef) -> Path:
        return self.cache.get_package_dir(await self.to_package_object(package))

    async def is_installed(self, package: PackageRef) -> bool:
        return self.cache.is_installed(await self.to_package_object(package))

    async def get_index(self, package: PackageRef) -> PackageIndex:
        """Index of an installed package, regenerated if the index file is missing."""
        identifier = await self.to_package_object(package)
        try:
            return await self.indexer.get_index(identifier)
        except Exception as e:
            self._logger.error(f"Failed to get index of package {identifier}: {e}")
            raise

    async def get_manifest(self, package: PackageRef) -> PackageManifest:
        identifier = await self.to_package_object(package)
        try:
            return await self._read_manifest(self.cache.get_package_dir(identifier) / PACKAGE_FOLDER)
        except Exception as e:
            self._logger.error(f"Could not read package manifest for {identifier}: {e}")
            raise

    async def get_dependencies(self, package: PackageRef) -> Dict[str, str]:
        """Declared dependencies, with known-bad versions corrected."""
        manifest = await self.get_manifest(package)
        return fix_dependency_versions(manifest.dependencies)

    # ========================================================================
    # Installation
    # ========================================================================

    async def install(self, package: PackageRef) -> bool:
        """
        Install a package and, recursively, its dependencies.

        Already-cached packages are not downloaded again, so calling this
        twice (or resuming after a failure) is cheap. Any failure aborts the
        whole dependency walk.
        """
        identifier = await self.to_package_object(package)
        try:
            await self._install(identifier, visited=set())
        except Exception as e:
            self._logger.error(f"Failed to install package {identifier}: {e}")
            raise
        return True

    async def _install(self, package: PackageIdentifier, visited: Set[str]) -> None:
        key = to_dir_name(package)
        if key in visited:
            self._logger.debug(f"Package {package} already handled in this install")
            return
        visited.add(key)

        if not self.cache.is_installed(package):
            try:
                staging_dir = await self._download_and_extract(package)
                await asyncio.to_thread(self.cache.install, package, staging_dir)
            except Exception:
                self._logger.error(f"Failed to install package {package}", exc_info=True)
                raise

        await self._install_dependencies(package, visited)

    async def _install_dependencies(self, package: PackageIdentifier, visited: Set[str]) -> None:
        await self.indexer.get_index(package)
        manifest = await self._read_manifest(self.cache.get_package_dir(package) / PACKAGE_FOLDER)
        dependencies = fix_dependency_versions(manifest.dependencies)

        for dependency_id, version in dependencies.items():
            if self.config.skip_examples and is_example_package(dependency_id):
                self._logger.info(f"Skipping example package dependency {dependency_id}@{version}")
                continue
            dependency = await self.to_package_object(
                PackageIdentifier(id=dependency_id, version=version)
            )
            await self._install(dependency, visited)

    async def _download_and_extract(self, package: PackageIdentifier) -> Path:
        tarball_url = await self.registry.get_tarball_url(package)
        self._logger.info(f"Downloading {package} from {tarball_url}")
        async with self.registry.open_tarball_stream(tarball_url) as response:
            return await self.extractor.extract(response.aiter_bytes())

    async def _read_manifest(self, folder: Path) -> PackageManifest:
        manifest_path = folder / MANIFEST_FILENAME
        if not manifest_path.exists():
            raise PackageNotInstalledError(f"Package manifest not found: {manifest_path}")
        async with aiofiles.open(manifest_path, "r", encoding="utf-8-sig") as f:
            raw = await f.read()
        try:
            return PackageManifest.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            raise InvalidSourceError(f"Invalid package manifest {manifest_path}: {e}") from e

    # ========================================================================
    # Local packages and plain downloads
    # ========================================================================

    async def install_local_package(
        self,
        src: Union[str, Path],
        options: Optional[InstallPackageOptions] = None,
    ) -> bool:
        """
        Install a package from a local tarball or directory.

        Returns:
            True if the package was installed, False if it was already
            installed and ``options.override`` was not set.
        """
        options = options or InstallPackageOptions()
        try:
            return await self._install_local_package(src, options)
        except Exception as e:
            self._logger.error(f"Failed to install local package {src}: {e}")
            raise

    async def _install_local_package(self, src: Union[str, Path], options: InstallPackageOptions) -> bool:
        if not str(src).strip():
            raise InvalidSourceError("Invalid path: empty string")
        source = Path(str(src).strip()).expanduser().resolve()
        if not source.exists():
            raise InvalidSourceError(f"Invalid path: {source} does not exist")

        is_directory = source.is_dir()
        if is_directory:
            self._logger.info(f"Installing package from directory: {source}")
            staged = source
        else:
            self._logger.info(f"Installing package from file: {source}")
            staged = await self.extractor.extract(source)

        try:
            if options.package_id:
                package = await self.to_package_object(options.package_id)
            else:
                manifest_folder = staged / PACKAGE_FOLDER if (staged / PACKAGE_FOLDER).is_dir() else staged
                manifest = await self._read_manifest(manifest_folder)
                package = PackageIdentifier(id=manifest.name, version=manifest.version)

            if self.cache.is_installed(package) and not options.override:
                self._logger.info(f"Package {package} is already installed")
                return False
            await asyncio.to_thread(self.cache.remove, package)

            # A tarball was extracted to a private staging dir and can be moved.
            installed_path = await asyncio.to_thread(
                self.cache.install, package, staged, not is_directory
            )
        finally:
            if not is_directory and staged.exists():
                await asyncio.to_thread(shutil.rmtree, staged, ignore_errors=True)

        await self.indexer.generate_index(package)
        self._logger.info(f"Installed {package} in the FHIR package cache: {installed_path}")

        if options.install_dependencies:
            await self._install_dependencies(package, visited={to_dir_name(package)})
        return True

    async def download_package(
        self,
        package: PackageRef,
        options: Optional[DownloadPackageOptions] = None,
    ) -> Path:
        """
        Download a package outside the cache.

        Returns:
            The path of the ``{id}-{version}.tgz`` file, or with
            ``options.extract`` the ``{id}#{version}`` directory.
        """
        options = options or DownloadPackageOptions()
        identifier = await self.to_package_object(package)

        destination = Path(options.destination).expanduser().resolve()
        if options.extract:
            final_path = destination / to_dir_name(identifier)
        else:
            final_path = destination / f"{identifier.id}-{identifier.version}.tgz"
        action = "Downloading and extracting" if options.extract else "Downloading"
        self._logger.info(f"{action} {identifier} to: {final_path}")

        try:
            if final_path.exists():
                if not options.overwrite:
                    raise FileExistsError(f"Destination already exists: {final_path}")
                if final_path.is_dir():
                    await asyncio.to_thread(shutil.rmtree, final_path)
                else:
                    await asyncio.to_thread(final_path.unlink)
            destination.mkdir(parents=True, exist_ok=True)

            if options.extract:
                staging_dir = await self._download_and_extract(identifier)
                await asyncio.to_thread(shutil.move, str(staging_dir), str(final_path))
            else:
                download_dir = Path(tempfile.mkdtemp(prefix="fpi-download-"))
                try:
                    tarball = await self.registry.download_tarball(identifier, download_dir)
                    await asyncio.to_thread(shutil.move, str(tarball), str(final_path))
                finally:
                    await asyncio.to_thread(shutil.rmtree, download_dir, ignore_errors=True)
        except Exception as e:
            self._logger.error(f"Failed to download package {identifier}: {e}")
            raise

        self._logger.info(f"Downloaded {identifier} to: {final_path}")
        return final_path
