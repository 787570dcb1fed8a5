"""
Client for npm-style FHIR package registries.

Handles:
- Package metadata retrieval (``{registry}/{id}/``)
- Tarball URL resolution and streaming downloads
- Bearer-token authorization scoped to the registry's own host
- Manual redirect following with a fixed depth limit
- A bounded retry loop for transient network failures
"""
from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, TypeVar
from urllib.parse import urlsplit

import aiofiles
import httpx

from fhir_package_installer.domain.errors import (
    AuthenticationFailedError,
    AuthorizationFailedError,
    InsecureTransportError,
    PackageNotFoundError,
    RegistryError,
    TooManyRedirectsError,
    TransientNetworkError,
)
from fhir_package_installer.domain.models import (
    FALLBACK_REGISTRY_URL,
    InstallerConfig,
    PackageIdentifier,
)
from fhir_package_installer.domain.package_utils import truncate_url

T = TypeVar("T")

# Connection-level failures worth another attempt (DNS lookups, refused or
# reset connections, timeouts, bodies cut short). HTTP error statuses are
# never retried.
TRANSIENT_ERRORS = (
    httpx.NetworkError,
    httpx.TimeoutException,
    httpx.RemoteProtocolError,
)


class RegistryClient:
    """Fetches package metadata and tarballs from one registry."""

    def __init__(
        self,
        config: InstallerConfig,
        logger: Optional[logging.Logger] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.registry_url = config.registry_url
        self.logger = logger or logging.getLogger(__name__)
        self._transport = transport
        self._registry_host = urlsplit(self.registry_url).hostname

    # ========================================================================
    # Request plumbing
    # ========================================================================

    def _client(self) -> httpx.AsyncClient:
        # Redirects are followed by hand so the auth header can be scoped per hop.
        return httpx.AsyncClient(
            transport=self._transport,
            follow_redirects=False,
            timeout=self.config.request_timeout,
        )

    def _get_headers(self, url: str) -> Dict[str, str]:
        """
        Authorization header for requests to the configured registry, or to
        any URL on the same host (registries redirect within their domain).
        """
        if not self.config.registry_token:
            return {}
        if url.startswith(self.registry_url) or urlsplit(url).hostname == self._registry_host:
            return {"Authorization": f"Bearer {self.config.registry_token}"}
        return {}

    def _check_scheme(self, url: str) -> None:
        if urlsplit(url).scheme.lower() == "http" and not self.config.allow_http:
            raise InsecureTransportError(
                "HTTP URLs not allowed. Use HTTPS or enable allow_http for testing."
            )

    async def _with_retries(self, fn: Callable[[], Awaitable[T]]) -> T:
        attempts = self.config.retry_attempts
        delay = self.config.retry_delay
        for attempt in range(1, attempts + 1):
            try:
                return await fn()
            except TRANSIENT_ERRORS as e:
                if attempt == attempts:
                    raise TransientNetworkError(
                        f"Network request failed after {attempts} attempts: {e}"
                    ) from e
                self.logger.warning(
                    f"Attempt {attempt} failed ({type(e).__name__}: {e}), retrying in {delay}s..."
                )
                await asyncio.sleep(delay)
            except httpx.HTTPError as e:
                raise RegistryError(f"Request failed: {type(e).__name__}: {e}") from e
        raise AssertionError("unreachable")

    async def _send(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        """
        GET ``url`` as a streaming response, following redirects by hand.

        The returned response is open; the caller must close it. Not retried
        here: callers retry the whole exchange, body included.
        """
        redirects = 0
        while True:
            self._check_scheme(url)
            request = client.build_request("GET", url, headers=self._get_headers(url))
            response = await client.send(request, stream=True)

            location = response.headers.get("location")
            if 300 <= response.status_code < 400 and location:
                await response.aclose()
                if redirects >= self.config.max_redirects:
                    raise TooManyRedirectsError(
                        f"Too many redirects ({self.config.max_redirects}) when fetching {url}",
                        status_code=response.status_code,
                        url=url,
                    )
                target = str(response.url.join(location))
                self.logger.info(f"Following redirect from {url} to {truncate_url(target)}")
                url = target
                redirects += 1
                continue

            return response

    async def _open(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        """Send, follow redirects and fail on error statuses. Returns an open response."""
        response = await self._send(client, url)
        try:
            await self._raise_for_status(response)
        except BaseException:
            await response.aclose()
            raise
        return response

    @staticmethod
    def _require_ok(response: httpx.Response, url: str) -> None:
        if response.status_code != 200:
            raise RegistryError(
                f"Failed to fetch {url} (status {response.status_code})",
                status_code=response.status_code,
                url=url,
            )

    async def _raise_for_status(self, response: httpx.Response) -> None:
        if response.status_code < 400:
            return

        await response.aread()
        body = response.text
        url = str(response.url)
        status_code = response.status_code

        if status_code == 401:
            raise AuthenticationFailedError(
                "Authentication failed: Invalid or missing credentials (HTTP 401).",
                status_code=status_code,
                url=url,
            )
        if status_code == 403:
            raise AuthorizationFailedError(
                "Authorization failed: Access to the package is forbidden (HTTP 403).",
                status_code=status_code,
                url=url,
            )

        message = body or "Unknown error"
        try:
            data = json.loads(body)
            if isinstance(data, dict):
                message = data.get("error") or data.get("message") or body
        except ValueError:
            pass
        raise RegistryError(f"HTTP {status_code}: {message}", status_code=status_code, url=url)

    # ========================================================================
    # Metadata
    # ========================================================================

    async def fetch_json(self, url: str) -> Any:
        async def fetch_once() -> httpx.Response:
            async with self._client() as client:
                response = await self._open(client, url)
                try:
                    await response.aread()
                finally:
                    await response.aclose()
                return response

        response = await self._with_retries(fetch_once)
        try:
            return response.json()
        except ValueError as e:
            raise RegistryError(
                f"Failed to parse JSON from {url}: {e}",
                status_code=response.status_code,
                url=url,
            ) from e

    async def fetch_metadata(self, package_id: str) -> Dict[str, Any]:
        """Retrieve the registry document for a package (all versions, dist-tags)."""
        url = f"{self.registry_url}/{package_id}/"
        try:
            data = await self.fetch_json(url)
        except RegistryError as e:
            if e.status_code == 404 and not isinstance(e, PackageNotFoundError):
                raise PackageNotFoundError(
                    f"Package {package_id} not found in the registry at {self.registry_url}.",
                    status_code=404,
                    url=url,
                ) from e
            raise
        if not isinstance(data, dict):
            raise RegistryError(f"Unexpected metadata document for {package_id}", url=url)
        return data

    async def get_latest_version(self, package_id: str) -> str:
        data = await self.fetch_metadata(package_id)
        latest = (data.get("dist-tags") or {}).get("latest")
        if not latest:
            raise PackageNotFoundError(
                f"Package {package_id} not found or has no latest version tag"
            )
        return latest

    async def get_tarball_url(self, package: PackageIdentifier) -> str:
        """
        Resolve where the tarball of ``package`` can be downloaded.

        Private registries get a URL built from the registry base, since
        proxies tend to rewrite (or drop) the URLs embedded in metadata.
        The public registry's metadata URL is used when present.
        """
        data = await self.fetch_metadata(package.id)

        version_info = (data.get("versions") or {}).get(package.version)
        if not version_info:
            raise PackageNotFoundError(
                f"Package {package.id}@{package.version} not found in the registry at {self.registry_url}."
            )

        if self.config.is_private_registry:
            return f"{self.registry_url}/{package.id}/-/{package.id}-{package.version}.tgz"

        url = (version_info.get("dist") or {}).get("tarball") or version_info.get("url")
        if not url:
            return f"{FALLBACK_REGISTRY_URL}/{package.id}/-/{package.id}-{package.version}.tgz"
        return url

    # ========================================================================
    # Tarballs
    # ========================================================================

    @asynccontextmanager
    async def open_tarball_stream(self, url: str) -> AsyncIterator[httpx.Response]:
        """
        Open a streaming GET for a tarball. Yields the response once it has
        answered 200; the body is consumed by the caller via ``aiter_bytes``.

        Opening the stream is retried. A connection lost while the caller
        reads the body surfaces as TransientNetworkError.
        """
        async with self._client() as client:
            response = await self._with_retries(lambda: self._open(client, url))
            try:
                self._require_ok(response, url)
                try:
                    yield response
                except TRANSIENT_ERRORS as e:
                    raise TransientNetworkError(
                        f"Connection lost while downloading {url}: {e}"
                    ) from e
                except httpx.HTTPError as e:
                    raise RegistryError(f"Download of {url} failed: {e}", url=url) from e
            finally:
                await response.aclose()

    async def download_tarball(self, package: PackageIdentifier, destination_dir: Path) -> Path:
        """Download the tarball of ``package`` into ``destination_dir``."""
        tarball_url = await self.get_tarball_url(package)
        target = Path(destination_dir) / f"{package.id}-{package.version}.tgz"
        self.logger.info(f"Downloading {package} from {tarball_url}")

        async def download_once() -> None:
            # Each attempt rewrites the file from the start.
            async with self._client() as client:
                response = await self._open(client, tarball_url)
                try:
                    self._require_ok(response, tarball_url)
                    async with aiofiles.open(target, "wb") as f:
                        async for chunk in response.aiter_bytes():
                            await f.write(chunk)
                finally:
                    await response.aclose()

        try:
            await self._with_retries(download_once)
        except Exception:
            self.logger.error(f"Failed to download package {package} from {tarball_url}")
            await asyncio.to_thread(target.unlink, missing_ok=True)
            raise

        return target
