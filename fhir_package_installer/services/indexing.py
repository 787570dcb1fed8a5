"""
Reading and (re)generating the per-package ``.fpi.index.json`` file.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

import aiofiles

from fhir_package_installer.domain.errors import PackageNotInstalledError, StructuralScanError
from fhir_package_installer.domain.models import IndexEntry, PackageIdentifier, PackageIndex
from fhir_package_installer.domain.package_utils import PACKAGE_FOLDER, is_indexable_resource
from fhir_package_installer.services.extraction import scan_resource
from fhir_package_installer.storage.package_cache import PackageCache


class PackageIndexer:
    """Serves package indexes from the cache, generating them when missing."""

    def __init__(
        self,
        cache: PackageCache,
        logger: Optional[logging.Logger] = None,
        max_concurrency: int = 4,
    ):
        self.cache = cache
        self.logger = logger or logging.getLogger(__name__)
        self.max_concurrency = max_concurrency

    async def get_index(self, package: PackageIdentifier) -> PackageIndex:
        """Return the persisted index, generating it first if it does not exist."""
        index_path = self.cache.get_index_path(package)
        if index_path.exists():
            async with aiofiles.open(index_path, "r", encoding="utf-8") as f:
                return PackageIndex.model_validate_json(await f.read())
        return await self.generate_index(package)

    async def generate_index(self, package: PackageIdentifier) -> PackageIndex:
        """
        Rescan every resource file of an installed package and rewrite its index.

        There is no incremental update: the whole file list is rebuilt.
        """
        self.logger.info(f"Generating new .fpi.index.json file for package {package}...")
        package_dir = self.cache.get_package_dir(package) / PACKAGE_FOLDER
        if not package_dir.is_dir():
            raise PackageNotInstalledError(
                f"Package {package} is not installed (missing {package_dir})"
            )

        semaphore = asyncio.Semaphore(self.max_concurrency)
        filenames = sorted(
            path.name
            for path in package_dir.iterdir()
            if path.is_file() and is_indexable_resource(path.name)
        )
        results = await asyncio.gather(
            *(self._scan_file(semaphore, package_dir / name) for name in filenames)
        )
        files: List[IndexEntry] = [entry for entry in results if entry is not None]

        index = PackageIndex(files=files)
        async with aiofiles.open(self.cache.get_index_path(package), "w", encoding="utf-8") as f:
            await f.write(index.to_json())
        return index

    async def _scan_file(self, semaphore: asyncio.Semaphore, path: Path) -> Optional[IndexEntry]:
        async with semaphore:
            async with aiofiles.open(path, "rb") as f:
                data = await f.read()
        try:
            return scan_resource(path.name, data.decode("utf-8-sig"))
        except (StructuralScanError, UnicodeDecodeError) as e:
            self.logger.warning(f"Failed to parse {path.name}: {e}")
            return None
