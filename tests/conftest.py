from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, List

import httpx
import pytest

from fhir_package_installer.data.mock_store import MockPackageStore
from fhir_package_installer.domain.models import InstallerConfig
from fhir_package_installer.mock_registry import MOCK_REGISTRY_VALID_TOKEN, create_mock_registry
from fhir_package_installer.services.installer import FhirPackageInstaller

REGISTRY_URL = "http://registry.test"


def structure_definition(resource_id: str, **extra) -> dict:
    """A small but realistically nested StructureDefinition."""
    resource = {
        "resourceType": "StructureDefinition",
        "id": resource_id,
        "url": f"http://example.org/StructureDefinition/{resource_id}",
        "name": resource_id.title().replace("-", ""),
        "version": "1.0.0",
        "kind": "resource",
        "type": "Patient",
        "baseDefinition": "http://hl7.org/fhir/StructureDefinition/Patient",
        "derivation": "constraint",
        "date": "2024-01-01",
        "abstract": False,
        "contact": [{"telecom": [{"system": "url", "value": "http://example.org"}]}],
        "differential": {"element": [{"id": "Patient", "path": "Patient"}]},
    }
    resource.update(extra)
    return resource


class RecordingTransport(httpx.AsyncBaseTransport):
    """Pass-through transport that remembers every request it sends."""

    def __init__(self, inner: httpx.AsyncBaseTransport):
        self.inner = inner
        self.requests: List[httpx.Request] = []

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return await self.inner.handle_async_request(request)


@pytest.fixture
def logger() -> logging.Logger:
    test_logger = logging.getLogger("fpi-test")
    test_logger.setLevel(logging.DEBUG)
    return test_logger


@pytest.fixture
def store() -> MockPackageStore:
    store = MockPackageStore()
    store.add_package(
        "example.fhir.base",
        "1.0.0",
        resources={
            "StructureDefinition-base-patient.json": structure_definition("base-patient"),
            "ValueSet-colors.json": {
                "resourceType": "ValueSet",
                "id": "colors",
                "url": "http://example.org/ValueSet/colors",
                "compose": {"include": [{"system": "http://example.org/colors"}]},
            },
        },
    )
    store.add_package(
        "example.fhir.profiles",
        "2.0.0",
        resources={
            "StructureDefinition-my-patient.json": structure_definition("my-patient"),
            "CodeSystem-colors.json": {
                "resourceType": "CodeSystem",
                "id": "colors",
                "url": "http://example.org/colors",
                "content": "complete",
                "concept": [{"code": "red"}, {"code": "blue"}],
            },
        },
        dependencies={"example.fhir.base": "1.0.0"},
    )
    store.add_package("example.fhir.profiles", "1.0.0", latest=False)
    return store


@pytest.fixture
def registry_app(store):
    return create_mock_registry(store)


@pytest.fixture
def cache_path(tmp_path) -> Path:
    return tmp_path / "cache"


@pytest.fixture
def transport(registry_app) -> RecordingTransport:
    return RecordingTransport(httpx.ASGITransport(app=registry_app))


@pytest.fixture
def make_config(cache_path) -> Callable[..., InstallerConfig]:
    def _make(**overrides) -> InstallerConfig:
        values = dict(
            registry_url=REGISTRY_URL,
            registry_token=MOCK_REGISTRY_VALID_TOKEN,
            cache_path=cache_path,
            allow_http=True,
            retry_delay=0,
        )
        values.update(overrides)
        return InstallerConfig(**values)

    return _make


@pytest.fixture
def make_installer(make_config, transport, logger) -> Callable[..., FhirPackageInstaller]:
    def _make(**overrides) -> FhirPackageInstaller:
        return FhirPackageInstaller(make_config(**overrides), logger=logger, transport=transport)

    return _make


@pytest.fixture
def installer(make_installer) -> FhirPackageInstaller:
    return make_installer()
