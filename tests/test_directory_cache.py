import errno
import logging
import os

import pytest

from fhir_package_installer.domain.models import PackageIdentifier
from fhir_package_installer.storage import directory_cache
from fhir_package_installer.storage.directory_cache import DirectoryPackageCache

PACKAGE = PackageIdentifier(id="example.fhir.base", version="1.0.0")


def _staged(root, name="staged", wrapped=True):
    """A staging tree holding a minimal package."""
    staged = root / name
    folder = staged / "package" if wrapped else staged
    folder.mkdir(parents=True)
    (folder / "package.json").write_text('{"name": "example.fhir.base", "version": "1.0.0"}')
    (folder / "ValueSet-a.json").write_text('{"resourceType": "ValueSet", "id": "a"}')
    return staged


@pytest.fixture
def cache(tmp_path, logger) -> DirectoryPackageCache:
    return DirectoryPackageCache(tmp_path / "cache", logger)


def _leftovers(cache):
    return [p.name for p in cache.get_cache_path().iterdir() if p.name.endswith(".partial")]


def test_creates_cache_root(tmp_path, logger, caplog):
    caplog.set_level(logging.INFO, logger="fpi-test")
    root = tmp_path / "nested" / "cache"
    DirectoryPackageCache(root, logger)
    assert root.is_dir()
    assert any("created successfully" in r.message for r in caplog.records)


def test_paths(cache):
    assert cache.get_package_dir(PACKAGE) == cache.get_cache_path() / "example.fhir.base#1.0.0"
    assert cache.get_manifest_path(PACKAGE).parts[-2:] == ("package", "package.json")
    assert cache.get_index_path(PACKAGE).parts[-2:] == ("package", ".fpi.index.json")
    assert not cache.is_installed(PACKAGE)


def test_install_moves_staged_tree(tmp_path, cache):
    staged = _staged(tmp_path)
    final_path = cache.install(PACKAGE, staged)

    assert final_path == cache.get_package_dir(PACKAGE)
    assert (final_path / "package" / "ValueSet-a.json").is_file()
    assert cache.is_installed(PACKAGE)
    assert not staged.exists()


def test_install_is_idempotent(tmp_path, cache):
    cache.install(PACKAGE, _staged(tmp_path, "first"))
    second = _staged(tmp_path, "second")
    (second / "package" / "ValueSet-a.json").write_text("{}")

    cache.install(PACKAGE, second)

    content = (cache.get_package_dir(PACKAGE) / "package" / "ValueSet-a.json").read_text()
    assert content == '{"resourceType": "ValueSet", "id": "a"}'


def test_losing_a_race_keeps_the_winner(tmp_path, cache, monkeypatch, caplog):
    cache.install(PACKAGE, _staged(tmp_path, "winner"))
    loser = _staged(tmp_path, "loser")
    # Pretend the winner appeared after our existence check.
    monkeypatch.setattr(cache, "is_installed", lambda package: False)
    caplog.set_level(logging.WARNING, logger="fpi-test")

    final_path = cache.install(PACKAGE, loser)

    assert final_path == cache.get_package_dir(PACKAGE)
    assert not loser.exists()
    assert any("already installed by another process" in r.message for r in caplog.records)
    assert _leftovers(cache) == []


def test_rename_onto_non_empty_directory_is_file_exists(tmp_path):
    source = tmp_path / "source"
    source.mkdir()
    target = tmp_path / "target"
    target.mkdir()
    (target / "keep").write_text("x")

    with pytest.raises(FileExistsError):
        DirectoryPackageCache._rename(source, target)
    assert source.exists()


def test_bare_package_folder_is_wrapped(tmp_path, cache):
    staged = _staged(tmp_path, wrapped=False)
    final_path = cache.install(PACKAGE, staged)

    assert (final_path / "package" / "package.json").is_file()
    assert not (final_path / "package.json").exists()
    assert not staged.exists()
    assert _leftovers(cache) == []


def test_copy_mode_keeps_source(tmp_path, cache):
    staged = _staged(tmp_path)
    final_path = cache.install(PACKAGE, staged, move=False)

    assert (final_path / "package" / "package.json").is_file()
    assert (staged / "package" / "package.json").is_file()


def test_cross_device_move_falls_back_to_copy(tmp_path, cache, monkeypatch):
    staged = _staged(tmp_path)
    real_rename = os.rename
    calls = []

    def rename(source, target):
        calls.append((str(source), str(target)))
        if str(source) == str(staged):
            raise OSError(errno.EXDEV, "Invalid cross-device link")
        return real_rename(source, target)

    monkeypatch.setattr(directory_cache.os, "rename", rename)
    final_path = cache.install(PACKAGE, staged)

    assert (final_path / "package" / "ValueSet-a.json").is_file()
    assert not staged.exists()
    assert len(calls) == 2
    assert calls[1][0].endswith(".partial")
    assert _leftovers(cache) == []


def test_other_rename_errors_propagate(tmp_path, cache, monkeypatch):
    staged = _staged(tmp_path)

    def rename(source, target):
        raise PermissionError(errno.EACCES, "Permission denied")

    monkeypatch.setattr(directory_cache.os, "rename", rename)
    with pytest.raises(PermissionError):
        cache.install(PACKAGE, staged)
    assert not cache.is_installed(PACKAGE)


def test_remove(tmp_path, cache):
    cache.install(PACKAGE, _staged(tmp_path))
    cache.remove(PACKAGE)
    assert not cache.is_installed(PACKAGE)
    # Removing a missing entry is a no-op.
    cache.remove(PACKAGE)
