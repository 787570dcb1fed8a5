"""
Directory-backed package cache.

Layout::

    <cache_path>/
        hl7.fhir.r4.core#4.0.1/
            package/
                package.json
                .fpi.index.json
                StructureDefinition-*.json
                ...

The presence of a ``name#version`` directory is the only record that a
package is installed. Installation is a single directory rename, which is
atomic on one filesystem: when two installers race for the same entry,
exactly one rename wins and the loser's staged copy is discarded. This is
not a lock; nobody waits for the winner.
"""

import errno
import logging
import os
import shutil
import uuid
from pathlib import Path
from typing import Optional

from fhir_package_installer.domain.models import PackageIdentifier
from fhir_package_installer.domain.package_utils import PACKAGE_FOLDER, to_dir_name
from fhir_package_installer.storage.package_cache import PackageCache

# rename() onto an existing non-empty directory fails with one of these.
_DESTINATION_EXISTS = {errno.EEXIST, errno.ENOTEMPTY}


class DirectoryPackageCache(PackageCache):
    def __init__(self, cache_path: Path, logger: Optional[logging.Logger] = None):
        self._cache_path = Path(cache_path)
        self._logger = logger or logging.getLogger(__name__)

        # Ensure cache directory exists
        if not self._cache_path.exists():
            self._cache_path.mkdir(parents=True, exist_ok=True)
            self._logger.info(f"Directory '{self._cache_path}' created successfully.")

    def get_cache_path(self) -> Path:
        return self._cache_path

    def get_package_dir(self, package: PackageIdentifier) -> Path:
        return self._cache_path / to_dir_name(package)

    def is_installed(self, package: PackageIdentifier) -> bool:
        return self.get_package_dir(package).exists()

    def install(self, package: PackageIdentifier, source: Path, move: bool = True) -> Path:
        final_path = self.get_package_dir(package)
        if self.is_installed(package):
            return final_path

        source = Path(source)
        # A bare package folder (no package/ inside) becomes the entry's package/ folder.
        wrap = not (source / PACKAGE_FOLDER).is_dir()

        try:
            self._place(source, final_path, move=move, wrap=wrap)
        except FileExistsError:
            self._logger.warning(f"Package {package} already installed by another process")
            if move:
                shutil.rmtree(source, ignore_errors=True)
            return final_path

        self._logger.info(f"Installed {package} in the FHIR package cache: {final_path}")
        return final_path

    def remove(self, package: PackageIdentifier) -> None:
        package_dir = self.get_package_dir(package)
        if package_dir.exists():
            shutil.rmtree(package_dir)

    def _place(self, source: Path, target: Path, move: bool, wrap: bool) -> None:
        """
        Put ``source`` at ``target`` (or at ``target/package`` when ``wrap``)
        with a single rename onto ``target``, never overwriting it.

        Raises FileExistsError when ``target`` already exists, including when
        it appears between the check and the rename.
        """
        if target.exists():
            raise FileExistsError(str(target))

        if move and not wrap:
            try:
                self._rename(source, target)
                return
            except OSError as e:
                if e.errno != errno.EXDEV:
                    raise
            # Different filesystem: fall through to copy + rename.

        # Assemble next to the target so the final rename stays on one filesystem.
        partial = target.parent / f".{target.name}.{uuid.uuid4().hex}.partial"
        try:
            if wrap:
                partial.mkdir()
                shutil.copytree(source, partial / PACKAGE_FOLDER)
            else:
                shutil.copytree(source, partial)
            self._rename(partial, target)
        finally:
            if partial.exists():
                shutil.rmtree(partial, ignore_errors=True)
        if move:
            shutil.rmtree(source, ignore_errors=True)

    @staticmethod
    def _rename(source: Path, target: Path) -> None:
        try:
            os.rename(source, target)
        except FileExistsError:
            raise
        except OSError as e:
            if e.errno in _DESTINATION_EXISTS:
                raise FileExistsError(str(target)) from e
            raise
