import re

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

USER_ID_PATTERN = re.compile(r"^U[0-9a-f]{32}$", re.IGNORECASE)


def is_valid_user_id(value: object) -> bool:
    """Shape check for a platform user id. Says nothing about whether it exists."""
    return isinstance(value, str) and bool(USER_ID_PATTERN.match(value.strip()))


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    debug: bool = False
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 3000

    # Messaging platform
    channel_secret: str = ""
    channel_access_token: str = ""
    line_api_base: str = "https://api.line.me"
    line_timeout_seconds: float = 10.0
    admin_user_id: str = ""
    admin_token: str = ""

    # Generative backend
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str = "https://api.openai.com/v1/chat/completions"
    generative_timeout_seconds: float = 8.0
    generative_max_concurrency: int = 5

    # Knowledge base
    knowledge_path: str = "data/knowledge.json"
    knowledge_poll_seconds: float = 1.0
    knowledge_debounce_seconds: float = 0.25
    knowledge_first: bool = True

    # Persistence
    state_path: str = "data/state.json"
    persist_debounce_seconds: float = 0.9
    persist_interval_seconds: float = 10.0
    state_retention_days: float = 10
    state_max_records: int = 5000

    # Webhook intake
    dedup_ttl_seconds: float = 600
    ack_grace_seconds: float = 0.0
    profile_cache_ttl_seconds: float = 24 * 3600

    # Intake protocol
    order_phase_ttl_seconds: float = 24 * 3600
    proof_phase_ttl_seconds: float = 7 * 24 * 3600
    greet_idle_seconds: float = 12 * 3600

    # Manual handoff
    manual_ttl_seconds: float = 3600
    manual_notify_cooldown_seconds: float = 120
    manual_summary_chars: int = 60

    # Anti-abuse while queued
    spam_short_window_seconds: float = 30
    spam_long_window_seconds: float = 120
    spam_short_soft_limit: int = 6
    spam_long_soft_limit: int = 15
    spam_long_hard_limit: int = 40
    cooldown_seconds: float = 300
    queue_notice_interval_seconds: float = 60

    # Keyword sets
    pickup_keywords: list[str] = Field(
        default_factory=lambda: [
            "取貨", "領貨", "取件", "付款", "已付款", "付清", "匯款", "已匯", "轉帳", "繳費", "付了", "結帳",
        ]
    )
    order_keywords: list[str] = Field(
        default_factory=lambda: ["訂單", "單號", "編號", "訂單號", "order", "#"]
    )
    reset_keywords: list[str] = Field(
        default_factory=lambda: ["重來", "重新開始", "重新填", "重置", "換單", "取消", "reset"]
    )
    invoice_keywords: list[str] = Field(default_factory=lambda: ["發票", "統編", "收據", "invoice"])
    invoice_reply: str = "發票將於專人審核付款後開立，如需統編請於付款證明後一併提供。"

    def missing_required(self) -> list[str]:
        missing = []
        if not self.channel_secret:
            missing.append("CHANNEL_SECRET")
        if not self.channel_access_token:
            missing.append("CHANNEL_ACCESS_TOKEN")
        if not is_valid_user_id(self.admin_user_id):
            missing.append("ADMIN_USER_ID")
        return missing


settings = Settings()
