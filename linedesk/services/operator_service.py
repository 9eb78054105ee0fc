from linedesk.logging_config import get_logger
from linedesk.services.line_service import LineService, ProfileDirectory
from linedesk.services.replies import OPERATOR_BURST, OPERATOR_HANDOFF

logger = get_logger("operator_service")


def format_handoff_message(display_name: str, user_id: str, order_id: str, proof_ref: str) -> str:
    return OPERATOR_HANDOFF.format(
        display_name=display_name,
        user_id=user_id,
        order_id=order_id or "-",
        proof_ref=proof_ref or "-",
    )


def format_burst_message(display_name: str, user_id: str, count: int, summary: str) -> str:
    return OPERATOR_BURST.format(display_name=display_name, user_id=user_id, count=count, summary=summary or "-")


class OperatorNotifier:
    """Best-effort pushes to the administrator identity."""

    def __init__(self, line: LineService, profiles: ProfileDirectory, admin_user_id: str):
        self.line = line
        self.profiles = profiles
        self.admin_user_id = admin_user_id

    async def notify(self, text: str) -> bool:
        result = await self.line.push(self.admin_user_id, [text])
        if not result.get("ok"):
            logger.warning("Operator notification not delivered", extra={"context": {"error": result.get("error")}})
            return False
        return True

    async def notify_handoff(self, user_id: str, order_id: str, proof_ref: str) -> bool:
        display_name = await self.profiles.display_name(user_id)
        text = format_handoff_message(display_name, user_id, order_id, proof_ref)
        logger.info("Handoff notification", extra={"context": {"user_id": user_id, "order_id": order_id}})
        return await self.notify(text)

    async def notify_burst(self, user_id: str, count: int, summary: str) -> bool:
        display_name = await self.profiles.display_name(user_id)
        return await self.notify(format_burst_message(display_name, user_id, count, summary))
