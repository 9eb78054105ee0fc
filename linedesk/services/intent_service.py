import re
from typing import Iterable, Optional

ORDER_ID_EXACT = re.compile(r"^\d{5}$")
DIGIT_RUN = re.compile(r"\d+")
LONG_DIGIT_RUN_MIN = 7
KEYWORD_PROXIMITY_CHARS = 10

FULLWIDTH_DIGITS = str.maketrans("０１２３４５６７８９", "0123456789")


def normalize_text(text: Optional[str]) -> str:
    """Case-fold, fold full-width digits and collapse whitespace."""
    if not text:
        return ""
    folded = text.translate(FULLWIDTH_DIGITS).casefold()
    return re.sub(r"\s+", " ", folded).strip()


def contains_keyword(text: str, keywords: Iterable[str]) -> bool:
    normalized = normalize_text(text)
    return any(keyword.casefold() in normalized for keyword in keywords if keyword)


def is_exact_order_id(text: Optional[str]) -> bool:
    return bool(ORDER_ID_EXACT.match(normalize_text(text)))


def is_reset_intent(text: str, reset_keywords: Iterable[str]) -> bool:
    return contains_keyword(text, reset_keywords)


def is_pickup_intent(text: str, pickup_keywords: Iterable[str]) -> bool:
    return contains_keyword(text, pickup_keywords)


def mentions_order(text: str, order_keywords: Iterable[str]) -> bool:
    """Order-reference words alone are not intent; they only vouch for a nearby id."""
    return contains_keyword(text, order_keywords)


def is_invoice_intent(text: str, invoice_keywords: Iterable[str]) -> bool:
    return contains_keyword(text, invoice_keywords)


def _keyword_spans(text: str, keywords: Iterable[str]) -> list[tuple[int, int]]:
    spans = []
    for keyword in keywords:
        needle = keyword.casefold()
        if not needle:
            continue
        start = text.find(needle)
        while start != -1:
            spans.append((start, start + len(needle)))
            start = text.find(needle, start + 1)
    return spans


def _gap(a: tuple[int, int], b: tuple[int, int]) -> int:
    if a[1] <= b[0]:
        return b[0] - a[1]
    if b[1] <= a[0]:
        return a[0] - b[1]
    return 0


def extract_order_id(text: Optional[str], order_keywords: Iterable[str]) -> Optional[str]:
    """Pull a 5-digit order id out of free text.

    A 5-digit run next to an order keyword (within 10 characters) wins. Without
    one, a bare 5-digit run is accepted only when no 7+ digit run (phone number,
    reference code) appears anywhere in the text.
    """
    normalized = normalize_text(text)
    if not normalized:
        return None
    if ORDER_ID_EXACT.match(normalized):
        return normalized

    runs = [(match.group(), match.span()) for match in DIGIT_RUN.finditer(normalized)]
    candidates = [(value, span) for value, span in runs if len(value) == 5]
    if not candidates:
        return None

    keyword_spans = _keyword_spans(normalized, order_keywords)
    for value, span in candidates:
        if any(_gap(span, keyword_span) <= KEYWORD_PROXIMITY_CHARS for keyword_span in keyword_spans):
            return value

    if any(len(value) >= LONG_DIGIT_RUN_MIN for value, _ in runs):
        return None
    return candidates[0][0]


def summarize_text(text: Optional[str], limit: int = 60) -> str:
    normalized = re.sub(r"\s+", " ", text or "").strip()
    if len(normalized) <= limit:
        return normalized
    return normalized[: limit - 1] + "…"
