import json
from pathlib import Path

from fhir_package_installer.core.dependencies import (
    CACHE_PATH_ENV_VAR,
    REGISTRY_TOKEN_ENV_VAR,
    REGISTRY_URL_ENV_VAR,
    SKIP_EXAMPLES_ENV_VAR,
    get_default_cache_path,
    load_config_from_env,
)
from fhir_package_installer.domain.models import (
    IndexEntry,
    InstallerConfig,
    PackageIndex,
    PackageManifest,
)


def test_index_entry_keeps_scalars_and_omits_the_rest():
    entry = IndexEntry.from_resource(
        "StructureDefinition-x.json",
        {
            "resourceType": "StructureDefinition",
            "id": "x",
            "url": "http://example.org/x",
            "version": 2,
            "kind": None,
            "type": ["not", "scalar"],
            "baseDefinition": "http://hl7.org/fhir/StructureDefinition/Patient",
            "experimental": True,
        },
    )
    assert entry.to_json_dict() == {
        "filename": "StructureDefinition-x.json",
        "resourceType": "StructureDefinition",
        "id": "x",
        "url": "http://example.org/x",
        "version": 2,
        "baseDefinition": "http://hl7.org/fhir/StructureDefinition/Patient",
    }


def test_package_index_serializes_with_hyphenated_version_key():
    index = PackageIndex(files=[IndexEntry(filename="a.json", resource_type="Patient", id="a")])
    data = json.loads(index.to_json())
    assert data == {
        "index-version": 2,
        "files": [{"filename": "a.json", "resourceType": "Patient", "id": "a"}],
    }
    assert PackageIndex.model_validate_json(index.to_json()) == index


def test_manifest_preserves_extra_fields_and_tolerates_null_dependencies():
    manifest = PackageManifest.model_validate(
        {"name": "a", "version": "1.0.0", "dependencies": None, "fhirVersions": ["4.0.1"]}
    )
    assert manifest.dependencies == {}
    assert manifest.model_dump()["fhirVersions"] == ["4.0.1"]


def test_installer_config_defaults(monkeypatch, tmp_path):
    monkeypatch.setenv(CACHE_PATH_ENV_VAR, str(tmp_path / "env-cache"))
    config = InstallerConfig(registry_url="https://registry.example.org/npm/")

    assert config.registry_url == "https://registry.example.org/npm"
    assert config.is_private_registry
    assert config.cache_path == tmp_path / "env-cache"
    assert config.max_concurrency >= 4
    assert config.retry_attempts == 3
    assert config.max_redirects == 5
    assert not InstallerConfig(cache_path=tmp_path).is_private_registry


def test_default_cache_path_without_env(monkeypatch):
    monkeypatch.delenv(CACHE_PATH_ENV_VAR, raising=False)
    assert get_default_cache_path() == Path.home() / ".fhir" / "packages"


def test_load_config_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv(CACHE_PATH_ENV_VAR, str(tmp_path))
    monkeypatch.setenv(REGISTRY_URL_ENV_VAR, "https://artifactory.example.org/api/npm/fhir/")
    monkeypatch.setenv(REGISTRY_TOKEN_ENV_VAR, "secret")
    monkeypatch.setenv(SKIP_EXAMPLES_ENV_VAR, "true")

    config = load_config_from_env()

    assert config.cache_path == tmp_path
    assert config.registry_url == "https://artifactory.example.org/api/npm/fhir"
    assert config.registry_token == "secret"
    assert config.skip_examples is True


def test_index_entry_drops_non_finite_numbers():
    entry = IndexEntry.from_resource(
        "a.json",
        {"resourceType": "X", "version": float("inf"), "date": float("-inf"), "name": 1.5},
    )
    assert entry.to_json_dict() == {"filename": "a.json", "resourceType": "X", "name": 1.5}
    assert "null" not in PackageIndex(files=[entry]).to_json()
