import asyncio
from typing import Optional

from linedesk.logging_config import get_logger
from linedesk.services.llm.base import LLMProvider
from linedesk.services.result import Result

logger = get_logger("ai_service")

MAX_USER_CHARS = 800
MAX_KNOWLEDGE_CHARS = 1500

SYSTEM_PROMPT = """你是網路商店的客服助理，使用繁體中文簡短回答顧客問題。
規則：
- 只回答與商店、訂單、取貨、付款相關的問題，不確定時請顧客等候專人回覆。
- 不要編造價格、庫存或訂單狀態。
- 取貨流程：顧客需先提供 5 位數訂單編號，再上傳付款證明圖片，由專人審核。
- 回答不超過 150 字。"""


def _trim_text(text: str, max_chars: int) -> str:
    text = (text or "").strip()
    if len(text) <= max_chars:
        return text
    return text[:max_chars].rstrip() + "…"


def build_messages(user_text: str, knowledge_context: str = "") -> list[dict]:
    messages = [{"role": "system", "content": SYSTEM_PROMPT}]
    if knowledge_context:
        messages.append({"role": "system", "content": _trim_text(knowledge_context, MAX_KNOWLEDGE_CHARS)})
    messages.append({"role": "user", "content": _trim_text(user_text, MAX_USER_CHARS)})
    return messages


async def generate_answer(
    provider: LLMProvider,
    user_text: str,
    knowledge_context: str = "",
    timeout_seconds: float = 8.0,
    model: Optional[str] = None,
) -> Result[str]:
    """One generative call under a hard deadline. Never raises."""
    messages = build_messages(user_text, knowledge_context)
    try:
        response = await asyncio.wait_for(
            provider.generate(messages, model=model, timeout_seconds=timeout_seconds),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.warning("Generative call timed out", extra={"context": {"timeout": timeout_seconds}})
        return Result.failure(f"timed out after {timeout_seconds}s", "ai_timeout")
    except Exception as exc:
        logger.warning("Generative call failed", extra={"context": {"error": str(exc)}})
        return Result.failure(str(exc), "ai_error")

    content = (response.content or "").strip()
    if not content:
        logger.warning("Generative call returned empty content", extra={"context": {"model": response.model}})
        return Result.failure("empty content", "ai_empty")
    return Result.success(content)
