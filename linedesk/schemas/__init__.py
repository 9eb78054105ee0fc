from linedesk.schemas.line import InboundMessage, LineEvent, LineWebhookRequest, MessageKind, WebhookResponse

__all__ = ["InboundMessage", "LineEvent", "LineWebhookRequest", "MessageKind", "WebhookResponse"]
