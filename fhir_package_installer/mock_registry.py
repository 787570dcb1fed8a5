"""
Mock npm-style FHIR package registry.

TEST-ONLY: a small FastAPI app serving packages from an in-memory store,
with optional bearer-token auth and same-host tarball redirects. Tests
mount it in-process through ``httpx.ASGITransport``; it can also be run
standalone with uvicorn.
"""
import logging
from typing import Optional

from fastapi import FastAPI

from fhir_package_installer.api.registry import (
    RegistryAuthError,
    registry_auth_error_handler,
    router as registry_router,
)
from fhir_package_installer.data.mock_store import MockPackageStore

logger = logging.getLogger(__name__)

MOCK_REGISTRY_VALID_TOKEN = "test-token"


def create_mock_registry(
    store: Optional[MockPackageStore] = None,
    token: Optional[str] = MOCK_REGISTRY_VALID_TOKEN,
) -> FastAPI:
    """
    Build the mock registry app.

    Args:
        store: Packages to serve. A new empty store is created if omitted.
        token: Bearer token clients must send. ``None`` disables auth.
    """
    app = FastAPI(
        title="Mock FHIR package registry",
        version="0.1.0",
        description="In-memory npm-style registry for fhir-package-installer tests.",
    )
    app.state.store = store or MockPackageStore()
    app.state.token = token
    app.add_exception_handler(RegistryAuthError, registry_auth_error_handler)
    app.include_router(registry_router)
    return app


if __name__ == "__main__":
    """
    Serve a demo package on http://127.0.0.1:3333 so an installer configured
    with allow_http=True and the mock token can be pointed at it.
    """
    import uvicorn

    logging.basicConfig(
        level=logging.DEBUG,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    demo_store = MockPackageStore()
    demo_store.add_package(
        "example.fhir.demo",
        "1.0.0",
        resources={
            "StructureDefinition-demo.json": {
                "resourceType": "StructureDefinition",
                "id": "demo",
                "url": "http://example.org/StructureDefinition/demo",
                "kind": "resource",
                "derivation": "constraint",
            }
        },
    )
    logger.info(f"Serving mock registry with token '{MOCK_REGISTRY_VALID_TOKEN}'")

    uvicorn.run(create_mock_registry(demo_store), host="127.0.0.1", port=3333)
