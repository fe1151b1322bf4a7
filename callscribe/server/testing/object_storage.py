"""
In-memory object storage for testing.

Objects are registered by path; signing a known path returns a fake URL and
signing an unknown path raises NotFound.
"""

import logging

from callscribe.errors import NotFound, StorageUnavailable
from callscribe.server.services import ObjectStorageHandler

logger = logging.getLogger(__name__)


class InMemoryObjectStorage(ObjectStorageHandler):
    """In-memory object storage for testing."""

    def __init__(self, name: str = "test_object_storage", bucket: str = "audio-files"):
        super().__init__(name, "memory://storage", bucket)
        self.objects: set[str] = set()
        self.signed: list[tuple[str, int]] = []
        self.unavailable: bool = False

    async def connect(self) -> None:
        """Establish connection to in-memory storage."""
        self._connected = True
        logger.info(f"[{self.name}] Connected to in-memory object storage")

    async def disconnect(self) -> None:
        """Close connection to in-memory storage."""
        self._connected = False
        self.objects = set()
        self.signed = []
        logger.info(f"[{self.name}] Disconnected from in-memory object storage")

    async def health_check(self) -> bool:
        """Check if storage is healthy."""
        return self._connected and not self.unavailable

    async def create_signed_url(self, path: str, expires_in: int) -> str:
        """Return a fake signed URL for a registered object."""
        if self.unavailable:
            raise StorageUnavailable("In-memory storage marked unavailable")
        if path not in self.objects:
            raise NotFound(f"Audio object not found: {path}", details={"path": path})

        self.signed.append((path, expires_in))
        return f"{self.endpoint}/{self.bucket}/{path}?expires_in={expires_in}"

    # -------------------------------------------------------------- #
    # Test Helper Methods
    # -------------------------------------------------------------- #

    def put_object(self, path: str) -> None:
        """Register an object path as present."""
        self.objects.add(path)
