from typing import TYPE_CHECKING, Any

from sqlalchemy import insert, select

if TYPE_CHECKING:
    from callscribe.context import Context

from callscribe.server.sql_models import CallDirection, CallModel, TeamMemberModel
from callscribe.services.manager import Manager
from callscribe.utils import generate_16_char_uuid, get_current_timestamp_est, to_naive

# -------------------------------------------------------------- #
# SQL Call Manager Service
# -------------------------------------------------------------- #


class CallSQLManagerService(Manager):
    """Service for reading call records and team memberships."""

    def __init__(self, context: "Context"):
        super().__init__(context)

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services):
        await super().on_start(services)
        await self.services.logging_service.info("CallSQLManagerService initialized")
        return True

    async def on_close(self):
        await self.services.logging_service.info("CallSQLManagerService closed")
        return True

    # -------------------------------------------------------------- #
    # Call Methods
    # -------------------------------------------------------------- #

    async def get_call(self, call_id: str) -> dict[str, Any] | None:
        """
        Get a call record by ID.

        Args:
            call_id: ID of the call

        Returns:
            Call row as a dictionary, or None if the call does not exist
        """
        query = select(CallModel).where(CallModel.id == call_id)
        results = await self.server.sql_client.execute(query)
        return results[0] if results else None

    async def insert_call(
        self,
        user_id: str,
        filename: str | None,
        audio_path: str | None,
        duration_seconds: float | None,
        direction: CallDirection = CallDirection.OUTBOUND,
        team_id: str | None = None,
        call_id: str | None = None,
    ) -> str:
        """
        Insert a call record.

        Calls are normally created by the upload flow; this is used by
        fixtures and the development seed script.

        Args:
            user_id: Owner of the call
            filename: Original upload filename
            audio_path: Object path of the audio (None when no recording exists)
            duration_seconds: Length of the recording
            direction: inbound / outbound
            team_id: Team the call was uploaded into
            call_id: Optional explicit ID (generated when omitted)

        Returns:
            The call ID
        """
        if not user_id:
            raise ValueError("user_id is required")

        entry_id = call_id or generate_16_char_uuid()
        call_data = {
            "id": entry_id,
            "user_id": user_id,
            "team_id": team_id,
            "filename": filename,
            "audio_path": audio_path,
            "direction": direction.value,
            "duration_seconds": duration_seconds,
            "created_at": to_naive(get_current_timestamp_est()),
        }

        stmt = insert(CallModel).values(**call_data)
        await self.server.sql_client.execute(stmt)
        await self.services.logging_service.info(f"Inserted call: {entry_id} for user {user_id}")

        return entry_id

    # -------------------------------------------------------------- #
    # Team Membership Methods
    # -------------------------------------------------------------- #

    async def list_team_ids(self, user_id: str) -> list[str]:
        """
        Get the IDs of every team a user belongs to.

        Args:
            user_id: ID of the user

        Returns:
            List of team IDs (empty if the user has no memberships)
        """
        query = select(TeamMemberModel.team_id).where(TeamMemberModel.user_id == user_id)
        results = await self.server.sql_client.execute(query)
        return [row["team_id"] for row in results]

    async def add_team_member(self, team_id: str, user_id: str) -> str:
        """
        Add a user to a team.

        Args:
            team_id: ID of the team
            user_id: ID of the user

        Returns:
            The membership row ID
        """
        entry_id = generate_16_char_uuid()
        stmt = insert(TeamMemberModel).values(id=entry_id, team_id=team_id, user_id=user_id)
        await self.server.sql_client.execute(stmt)
        await self.services.logging_service.info(f"Added user {user_id} to team {team_id}")
        return entry_id
