"""Object storage client minting signed URLs through a Supabase-compatible storage API."""

import asyncio
import json
import logging
from urllib.parse import quote

import aiohttp

from callscribe.errors import NotFound, StorageUnavailable
from callscribe.server.services import ObjectStorageHandler

logger = logging.getLogger(__name__)


class StorageAPIClient(ObjectStorageHandler):
    """Client for a Supabase-compatible storage REST API."""

    def __init__(
        self,
        name: str = "object_storage",
        endpoint: str = "http://localhost:54321",
        bucket: str = "audio-files",
        service_key: str | None = None,
        request_timeout: float = 30.0,
    ):
        """
        Initialize storage client.

        Args:
            name: Name of the client
            endpoint: Project base URL (the client appends /storage/v1)
            bucket: Bucket holding the audio objects
            service_key: Service-role key used to sign URLs
            request_timeout: Total timeout of a request in seconds
        """
        super().__init__(name, endpoint.rstrip("/"), bucket)
        self.service_key = service_key
        self.request_timeout = request_timeout
        self.session: aiohttp.ClientSession | None = None

    # -------------------------------------------------------------- #
    # Server Management
    # -------------------------------------------------------------- #

    async def connect(self) -> None:
        """Create the HTTP session."""
        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.request_timeout)
        )
        self._connected = True
        logger.info(f"[{self.name}] Ready to sign URLs for bucket '{self.bucket}'")

    async def disconnect(self) -> None:
        """Close the HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None
        self._connected = False
        logger.info(f"[{self.name}] Disconnected from object storage")

    async def health_check(self) -> bool:
        """Check if the storage API answers."""
        try:
            if not self.session:
                return False
            async with self.session.get(
                f"{self.endpoint}/storage/v1/bucket/{self.bucket}", headers=self._headers()
            ) as response:
                return response.status == 200
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"[{self.name}] Health check failed: {e}")
            return False

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.service_key}",
            "apikey": self.service_key or "",
        }

    # -------------------------------------------------------------- #
    # Signed URLs
    # -------------------------------------------------------------- #

    async def create_signed_url(self, path: str, expires_in: int) -> str:
        """
        Mint a signed retrieval URL.

        Args:
            path: Object path inside the bucket ("<owner_id>/<filename>")
            expires_in: URL lifetime in seconds

        Returns:
            Absolute signed URL
        """
        if not self.session:
            raise RuntimeError("Not connected to object storage")

        url = f"{self.endpoint}/storage/v1/object/sign/{self.bucket}/{quote(path)}"
        try:
            async with self.session.post(
                url, json={"expiresIn": expires_in}, headers=self._headers()
            ) as response:
                body = await response.text()
                if response.status in (400, 404) and "not found" in body.lower():
                    raise NotFound(f"Audio object not found: {path}", details={"path": path})
                if response.status != 200:
                    raise StorageUnavailable(
                        f"Failed to create signed URL ({response.status})",
                        details={"path": path, "status": response.status},
                    )
                signed_path = json.loads(body).get("signedURL")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"[{self.name}] Failed to sign {path}: {e}")
            raise StorageUnavailable(f"Object storage unreachable: {e}") from e

        if not signed_path:
            raise StorageUnavailable("Object storage returned no signed URL")

        logger.debug(f"[{self.name}] Signed {path} for {expires_in}s")
        return f"{self.endpoint}/storage/v1{signed_path}"


def construct_storage_client(
    endpoint: str, bucket: str = "audio-files", service_key: str | None = None
) -> StorageAPIClient:
    """
    Construct and return an object storage client.

    Args:
        endpoint: Project base URL
        bucket: Bucket holding the audio objects
        service_key: Service-role key

    Returns:
        Configured StorageAPIClient instance
    """
    return StorageAPIClient(endpoint=endpoint, bucket=bucket, service_key=service_key)
