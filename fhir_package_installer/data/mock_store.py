"""
In-memory package store backing the mock registry.

Packages are added as a manifest plus a mapping of resource files; the
store builds the gzip tarball the registry serves and the npm-style
metadata document describing every published version.
"""
from __future__ import annotations

import io
import json
import tarfile
from typing import Any, Dict, Mapping, Optional, Union

FileContent = Union[bytes, str, Mapping[str, Any]]


def _to_bytes(content: FileContent) -> bytes:
    if isinstance(content, bytes):
        return content
    if isinstance(content, str):
        return content.encode("utf-8")
    return json.dumps(content, indent=2).encode("utf-8")


def build_tarball(files: Mapping[str, FileContent]) -> bytes:
    """
    Build a gzip-compressed tarball in memory.

    Args:
        files: Archive path (e.g. 'package/package.json') to content. Dicts
            are serialized as JSON, strings encoded as UTF-8.
    """
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        for name, content in files.items():
            data = _to_bytes(content)
            info = tarfile.TarInfo(name=name)
            info.size = len(data)
            info.mode = 0o644
            archive.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def tarball_filename(package_id: str, version: str) -> str:
    return f"{package_id}-{version}.tgz"


class MockPackageStore:
    """Published packages, keyed by id and version."""

    def __init__(self) -> None:
        self._tarballs: Dict[str, Dict[str, bytes]] = {}
        self._latest: Dict[str, str] = {}

    def add_package(
        self,
        package_id: str,
        version: str,
        resources: Optional[Mapping[str, FileContent]] = None,
        dependencies: Optional[Dict[str, str]] = None,
        latest: bool = True,
    ) -> bytes:
        """
        Publish a package built from a manifest and resource files.

        ``resources`` maps filenames inside ``package/`` to their content.
        Returns the tarball bytes.
        """
        manifest: Dict[str, Any] = {"name": package_id, "version": version}
        if dependencies:
            manifest["dependencies"] = dependencies

        files: Dict[str, FileContent] = {"package/package.json": manifest}
        for filename, content in (resources or {}).items():
            files[f"package/{filename}"] = content
        return self.add_tarball(package_id, version, build_tarball(files), latest=latest)

    def add_tarball(self, package_id: str, version: str, tarball: bytes, latest: bool = True) -> bytes:
        """Publish raw tarball bytes (which need not be a valid archive)."""
        self._tarballs.setdefault(package_id, {})[version] = tarball
        if latest or package_id not in self._latest:
            self._latest[package_id] = version
        return tarball

    def has_package(self, package_id: str) -> bool:
        return package_id in self._tarballs

    def get_tarball(self, filename: str) -> Optional[bytes]:
        for package_id, versions in self._tarballs.items():
            for version, tarball in versions.items():
                if tarball_filename(package_id, version) == filename:
                    return tarball
        return None

    def get_metadata(self, package_id: str, base_url: str) -> Optional[Dict[str, Any]]:
        """npm registry document for a package, with tarball URLs under ``base_url``."""
        versions = self._tarballs.get(package_id)
        if not versions:
            return None
        base_url = base_url.rstrip("/")
        return {
            "_id": package_id,
            "name": package_id,
            "dist-tags": {"latest": self._latest[package_id]},
            "versions": {
                version: {
                    "name": package_id,
                    "version": version,
                    "dist": {
                        "tarball": f"{base_url}/{package_id}/-/{tarball_filename(package_id, version)}",
                    },
                }
                for version in versions
            },
        }
