from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from callscribe.context import Context

from callscribe.errors import CorrectionRuleInvalid
from callscribe.services.correction_manager.rules import apply_correction_rules
from callscribe.services.manager import Manager

# -------------------------------------------------------------- #
# Correction Manager Service
# -------------------------------------------------------------- #


class CorrectionManagerService(Manager):
    """Applies a user's find/replace correction rules to transcript text."""

    def __init__(self, context: "Context"):
        super().__init__(context)

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services):
        await super().on_start(services)
        await self.services.logging_service.info("CorrectionManagerService initialized")
        return True

    async def on_close(self):
        await self.services.logging_service.info("CorrectionManagerService closed")
        return True

    # -------------------------------------------------------------- #
    # Correction Methods
    # -------------------------------------------------------------- #

    async def apply(self, text: str, owner_id: str) -> str:
        """
        Apply the owner's correction rules to text.

        Rules are fetched fresh on every call. A rule that fails to compile is
        skipped with a warning and the remaining rules still run.

        Args:
            text: Text to correct
            owner_id: Owner of the rules

        Returns:
            Corrected text
        """
        if not text:
            return text

        rules = await self.services.transcript_sql_manager.list_correction_rules(owner_id)
        if not rules:
            return text

        skipped: list[tuple[Mapping[str, Any], CorrectionRuleInvalid]] = []
        corrected = apply_correction_rules(
            text, rules, on_invalid=lambda rule, error: skipped.append((rule, error))
        )

        for rule, error in skipped:
            await self.services.logging_service.warning(
                f"Skipped correction rule {rule.get('id')} for user {owner_id}: {error.message}"
            )

        await self.services.logging_service.debug(
            f"Applied {len(rules) - len(skipped)}/{len(rules)} correction rules for user {owner_id}"
        )
        return corrected
