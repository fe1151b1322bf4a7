from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from callscribe.context import Context

from callscribe.errors import AccessDenied, NotFound, PipelineError, StorageUnavailable
from callscribe.services.manager import Manager
from callscribe.utils import extract_storage_filename

DEFAULT_SIGNED_URL_TTL_SECONDS = 3600

# -------------------------------------------------------------- #
# Access Gateway Manager Service
# -------------------------------------------------------------- #


class AccessGatewayManagerService(Manager):
    """
    Decides whether a caller may act on a call and mints retrieval URLs for its audio.

    A caller is authorized when they own the call, when the call's team is one
    of their teams, or when they share at least one team with the call's owner.
    """

    def __init__(
        self, context: "Context", signed_url_ttl_seconds: int = DEFAULT_SIGNED_URL_TTL_SECONDS
    ):
        super().__init__(context)
        self.signed_url_ttl_seconds = signed_url_ttl_seconds

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services):
        await super().on_start(services)
        await self.services.logging_service.info(
            f"AccessGatewayManagerService initialized (url ttl {self.signed_url_ttl_seconds}s)"
        )
        return True

    async def on_close(self):
        await self.services.logging_service.info("AccessGatewayManagerService closed")
        return True

    # -------------------------------------------------------------- #
    # Authorization
    # -------------------------------------------------------------- #

    async def can_access(self, caller_id: str, call: dict[str, Any]) -> bool:
        """
        Check whether a caller may act on a call record.

        Args:
            caller_id: ID of the requesting user
            call: Call row

        Returns:
            True if the caller owns the call or shares a team with it or its owner
        """
        owner_id = call["user_id"]
        if caller_id == owner_id:
            return True

        caller_teams = set(await self.services.call_sql_manager.list_team_ids(caller_id))
        if not caller_teams:
            return False

        if call.get("team_id") and call["team_id"] in caller_teams:
            return True

        owner_teams = set(await self.services.call_sql_manager.list_team_ids(owner_id))
        return bool(caller_teams & owner_teams)

    async def authorize(self, caller_id: str, call_id: str) -> dict[str, Any]:
        """
        Fetch a call and verify the caller may act on it.

        Args:
            caller_id: ID of the requesting user
            call_id: ID of the call

        Returns:
            The call row

        Raises:
            NotFound: If the call does not exist
            AccessDenied: If the caller has no ownership or team overlap
        """
        call = await self.services.call_sql_manager.get_call(call_id)
        if call is None:
            raise NotFound(f"Call not found: {call_id}", details={"call_id": call_id})

        if not await self.can_access(caller_id, call):
            await self.services.logging_service.warning(
                f"Access denied: user {caller_id} on call {call_id}"
            )
            raise AccessDenied("Access denied", details={"call_id": call_id})

        return call

    # -------------------------------------------------------------- #
    # Signed URLs
    # -------------------------------------------------------------- #

    @staticmethod
    def audio_object_path(call: dict[str, Any]) -> str:
        """Object path of a call's audio: ``<owner_id>/<storage filename>``."""
        filename = extract_storage_filename(call.get("audio_path"), call.get("filename"))
        return f"{call['user_id']}/{filename}"

    async def mint_audio_url(self, call: dict[str, Any], ttl_seconds: int | None = None) -> str:
        """
        Mint a time-boxed retrieval URL for a call's audio.

        Args:
            call: Call row
            ttl_seconds: URL lifetime (defaults to the configured TTL)

        Returns:
            Signed URL

        Raises:
            NotFound: If the audio object does not exist
            StorageUnavailable: If the URL could not be minted
        """
        path = self.audio_object_path(call)
        expires_in = ttl_seconds or self.signed_url_ttl_seconds

        try:
            url = await self.server.storage_client.create_signed_url(path, expires_in)
        except PipelineError:
            raise
        except Exception as e:
            raise StorageUnavailable(
                f"Failed to create signed URL: {e}", details={"path": path}
            ) from e

        await self.services.logging_service.debug(
            f"Minted signed URL for {path} (expires in {expires_in}s)"
        )
        return url
