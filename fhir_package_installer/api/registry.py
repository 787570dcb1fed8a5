"""
npm registry routes served by the mock registry.

- ``GET /{package_id}/`` returns the package metadata document
- ``GET /{package_id}/-/{filename}`` redirects (302) to ``/files/{filename}``
- ``GET /files/{filename}`` returns the tarball bytes

When the app is configured with a token every route requires
``Authorization: Bearer <token>``: 401 when missing, 403 when wrong.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse

from fhir_package_installer.data.mock_store import MockPackageStore

logger = logging.getLogger(__name__)
router = APIRouter()


class RegistryAuthError(Exception):
    """Raised by the auth dependency; rendered as a JSON error response."""

    def __init__(self, status_code: int, error: str):
        super().__init__(error)
        self.status_code = status_code
        self.error = error


async def registry_auth_error_handler(request: Request, exc: RegistryAuthError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.error})


def get_store(request: Request) -> MockPackageStore:
    return request.app.state.store


def require_token(request: Request) -> None:
    """Check the bearer token when the registry is configured with one."""
    token: Optional[str] = request.app.state.token
    if token is None:
        return

    header = request.headers.get("authorization", "")
    if not header.startswith("Bearer "):
        raise RegistryAuthError(status.HTTP_401_UNAUTHORIZED, "Unauthorized")
    if header[len("Bearer "):] != token:
        raise RegistryAuthError(status.HTTP_403_FORBIDDEN, "Forbidden")


def _not_found(error: str) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"error": error})


@router.get("/files/{filename}", dependencies=[Depends(require_token)])
async def get_tarball(filename: str, store: MockPackageStore = Depends(get_store)) -> Response:
    tarball = store.get_tarball(filename)
    if tarball is None:
        return _not_found("Tarball not found")
    return Response(content=tarball, media_type="application/gzip")


@router.get("/{package_id}/-/{filename}", dependencies=[Depends(require_token)])
async def redirect_tarball(package_id: str, filename: str, request: Request) -> Response:
    """
    Tarball requests are answered with a same-host redirect so that clients
    exercise their redirect handling (and keep their auth header).
    """
    target = str(request.url_for("get_tarball", filename=filename))
    logger.debug(f"Redirecting tarball request for {package_id} to {target}")
    return RedirectResponse(url=target, status_code=status.HTTP_302_FOUND)


@router.get("/{package_id}/", dependencies=[Depends(require_token)])
async def get_package_metadata(
    package_id: str,
    request: Request,
    store: MockPackageStore = Depends(get_store),
) -> Response:
    metadata = store.get_metadata(package_id, str(request.base_url))
    if metadata is None:
        return _not_found("Package not found")
    return JSONResponse(content=metadata)
