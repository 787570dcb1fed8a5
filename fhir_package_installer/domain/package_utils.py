from __future__ import annotations

from typing import Dict, Union

from .errors import InvalidIdentifierError
from .models import LATEST_VERSION, PackageIdentifier

MANIFEST_FILENAME = "package.json"
INDEX_FILENAME = ".fpi.index.json"
PACKAGE_FOLDER = "package"

# Dependencies whose id contains this marker are skipped when skip_examples is set.
EXAMPLES_MARKER = "examples"

# Versions that manifests commonly declare but that were never published.
KNOWN_VERSION_FIXES: Dict[str, Dict[str, str]] = {
    "hl7.fhir.r4.core": {"4.0.0": "4.0.1"},
}


def parse_package_string(value: str) -> PackageIdentifier:
    """
    Parse ``name``, ``name@version`` or ``name#version`` into an identifier.

    A missing version becomes ``latest``; resolving it is up to the caller.
    """
    value = (value or "").strip()
    if not value:
        raise InvalidIdentifierError("Invalid package identifier: empty string")

    separators = value.count("#") + value.count("@")
    if separators > 1:
        raise InvalidIdentifierError(f"Invalid package identifier: {value!r}")

    if "#" in value:
        name, version = value.split("#")
    elif "@" in value:
        name, version = value.split("@")
    else:
        name, version = value, LATEST_VERSION

    name = name.strip()
    version = version.strip() or LATEST_VERSION
    if not name:
        raise InvalidIdentifierError(f"Invalid package identifier: {value!r} has no package name")
    return PackageIdentifier(id=name, version=version)


def to_package_identifier(value: Union[str, PackageIdentifier]) -> PackageIdentifier:
    """Accept either form used by the public API; versions may still be 'latest'."""
    if isinstance(value, PackageIdentifier):
        if not value.id.strip():
            raise InvalidIdentifierError("Invalid package identifier: empty package id")
        if not value.version:
            return PackageIdentifier(id=value.id, version=LATEST_VERSION)
        return value
    if isinstance(value, str):
        return parse_package_string(value)
    raise InvalidIdentifierError(f"Invalid package identifier: {value!r}")


def to_dir_name(package: PackageIdentifier) -> str:
    """Cache directory name in the standard ``name#version`` format."""
    return f"{package.id}#{package.version}"


def is_indexable_resource(filename: str) -> bool:
    """
    Whether a file directly inside ``package/`` belongs in the package index.

    JSON resources qualify; the manifest and any index files do not.
    """
    return (
        filename.endswith(".json")
        and filename != MANIFEST_FILENAME
        and not filename.endswith(".index.json")
    )


def is_example_package(package_id: str) -> bool:
    return EXAMPLES_MARKER in package_id


def fix_dependency_versions(dependencies: Dict[str, str]) -> Dict[str, str]:
    """
    Return a copy of ``dependencies`` with known-bad versions replaced.

    Some packages declare ``hl7.fhir.r4.core`` as 4.0.0, which was never
    published; the intended release is 4.0.1.
    """
    fixed = dict(dependencies)
    for package_id, remaps in KNOWN_VERSION_FIXES.items():
        version = fixed.get(package_id)
        if version in remaps:
            fixed[package_id] = remaps[version]
    return fixed


def truncate_url(url: str, limit: int = 64) -> str:
    """Shorten long URLs (signed redirect targets) for log messages."""
    return url if len(url) <= limit else f"{url[:limit]}..."
