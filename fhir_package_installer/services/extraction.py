"""
Streaming extraction of package tarballs.

The archive is read sequentially in streaming gzip-tar mode. Every entry's
write (and, for resource files, scan) is submitted as a task, and the reader
moves on to the next entry without waiting for it. A semaphore permit is
taken before each body is read and returned when its task finishes, so
disk writes overlap while memory and open files stay bounded by
``max_concurrency``. Once every task has finished the collected index
entries are written to
``package/.fpi.index.json`` in the staging directory.
"""
from __future__ import annotations

import asyncio
import gzip
import logging
import os
import shutil
import tarfile
import tempfile
import zlib
from pathlib import Path, PurePosixPath
from typing import AsyncIterable, BinaryIO, List, Optional, Tuple, Union

import aiofiles

from fhir_package_installer.domain.errors import ArchiveCorruptError, StructuralScanError
from fhir_package_installer.domain.models import IndexEntry, PackageIndex, default_concurrency
from fhir_package_installer.domain.package_utils import (
    INDEX_FILENAME,
    PACKAGE_FOLDER,
    is_indexable_resource,
)
from fhir_package_installer.domain.shallow_parse import shallow_parse

TarballSource = Union[str, Path, BinaryIO, AsyncIterable[bytes]]

# Failures raised while decompressing or walking a damaged archive.
_ARCHIVE_ERRORS = (tarfile.TarError, zlib.error, gzip.BadGzipFile, EOFError)


def scan_resource(filename: str, text: str) -> IndexEntry:
    """Build the index entry of one resource file from its text."""
    return IndexEntry.from_resource(filename, shallow_parse(text))


class TarballExtractor:
    """Extracts package tarballs into fresh staging directories."""

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        max_concurrency: Optional[int] = None,
    ):
        self.logger = logger or logging.getLogger(__name__)
        self.max_concurrency = max_concurrency or default_concurrency()

    async def extract(self, source: TarballSource) -> Path:
        """
        Extract a gzip tarball into a new temporary directory.

        Args:
            source: Path to a .tgz file, an open binary file object, or an
                async iterable of compressed chunks (e.g. an HTTP body).

        Returns:
            Path to the staging directory. It mirrors the archive layout and
            contains the generated ``package/.fpi.index.json``.

        Raises:
            ArchiveCorruptError: If decompression or archive iteration fails.
            OSError: If writing an entry fails.
        """
        staging_dir = Path(tempfile.mkdtemp(prefix="fpi-extract-"))
        self.logger.info(f"Extracting package to {staging_dir}")

        spooled: Optional[Path] = None
        try:
            if isinstance(source, (str, Path)):
                fileobj = open(source, "rb")
            elif hasattr(source, "read"):
                fileobj = source
            else:
                spooled = await self._spool(source)
                fileobj = open(spooled, "rb")

            try:
                entries = await self._extract_entries(fileobj, staging_dir)
            finally:
                if fileobj is not source:
                    fileobj.close()

            index = PackageIndex(files=entries)
            index_dir = staging_dir / PACKAGE_FOLDER
            index_dir.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(index_dir / INDEX_FILENAME, "w", encoding="utf-8") as f:
                await f.write(index.to_json())
        except BaseException:
            await asyncio.to_thread(shutil.rmtree, staging_dir, ignore_errors=True)
            raise
        finally:
            if spooled is not None:
                await asyncio.to_thread(spooled.unlink, missing_ok=True)

        self.logger.info("Extracted to a temporary directory")
        return staging_dir

    async def _spool(self, chunks: AsyncIterable[bytes]) -> Path:
        """Write an async byte stream to a temporary .tgz file."""
        fd, name = tempfile.mkstemp(prefix="fpi-download-", suffix=".tgz")
        os.close(fd)
        path = Path(name)
        try:
            async with aiofiles.open(path, "wb") as f:
                async for chunk in chunks:
                    await f.write(chunk)
        except BaseException:
            await asyncio.to_thread(path.unlink, missing_ok=True)
            raise
        return path

    async def _extract_entries(self, fileobj: BinaryIO, staging_dir: Path) -> List[IndexEntry]:
        semaphore = asyncio.Semaphore(self.max_concurrency)
        index_entries: List[IndexEntry] = []
        tasks: List[asyncio.Task] = []

        try:
            try:
                archive = await asyncio.to_thread(tarfile.open, fileobj=fileobj, mode="r|gz")
            except _ARCHIVE_ERRORS as e:
                raise ArchiveCorruptError(f"Failed to open package tarball: {e}") from e

            with archive:
                while True:
                    # A permit is taken before a body is read and released by
                    # the entry's task, so at most max_concurrency bodies are
                    # held in memory at once.
                    await semaphore.acquire()
                    handed_off = False
                    try:
                        try:
                            item = await asyncio.to_thread(self._read_next, archive)
                        except _ARCHIVE_ERRORS as e:
                            raise ArchiveCorruptError(f"Failed to read package tarball: {e}") from e
                        if item is None:
                            break

                        member, data = item
                        target = self._resolve_target(staging_dir, member.name)
                        if member.isdir():
                            target.mkdir(parents=True, exist_ok=True)
                            continue
                        if data is None:
                            self.logger.debug(f"Skipping non-file tarball entry {member.name}")
                            continue

                        target.parent.mkdir(parents=True, exist_ok=True)
                        tasks.append(
                            asyncio.create_task(
                                self._handle_entry(semaphore, member.name, target, data, index_entries)
                            )
                        )
                        handed_off = True
                    finally:
                        if not handed_off:
                            semaphore.release()

            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        return index_entries

    @staticmethod
    def _read_next(archive: tarfile.TarFile) -> Optional[Tuple[tarfile.TarInfo, Optional[bytes]]]:
        # Stream mode: a member's data must be read before advancing.
        member = archive.next()
        if member is None:
            return None
        if not member.isfile():
            return member, None
        extracted = archive.extractfile(member)
        return member, extracted.read() if extracted is not None else b""

    @staticmethod
    def _resolve_target(staging_dir: Path, name: str) -> Path:
        relative = PurePosixPath(name)
        if relative.is_absolute() or ".." in relative.parts:
            raise ArchiveCorruptError(f"Tarball entry escapes the extraction directory: {name}")
        return staging_dir.joinpath(*relative.parts)

    async def _handle_entry(
        self,
        semaphore: asyncio.Semaphore,
        name: str,
        target: Path,
        data: bytes,
        index_entries: List[IndexEntry],
    ) -> None:
        """Write one entry and index it. Releases the permit the reader took for it."""
        try:
            async with aiofiles.open(target, "wb") as f:
                await f.write(data)

            relative = PurePosixPath(name)
            if str(relative.parent) != PACKAGE_FOLDER or not is_indexable_resource(relative.name):
                return

            try:
                entry = scan_resource(relative.name, data.decode("utf-8-sig"))
            except (StructuralScanError, UnicodeDecodeError) as e:
                self.logger.warning(f"Failed to parse {relative.name}: {e}")
                return
            index_entries.append(entry)
        finally:
            semaphore.release()
