from linedesk.config import Settings
from linedesk.services.intent_service import (
    extract_order_id,
    is_exact_order_id,
    is_invoice_intent,
    is_pickup_intent,
    is_reset_intent,
    mentions_order,
    normalize_text,
    summarize_text,
)

DEFAULTS = Settings(_env_file=None)
ORDER_KEYWORDS = DEFAULTS.order_keywords


class TestNormalizeText:
    def test_collapses_whitespace_and_case(self):
        assert normalize_text("  Hello \n  World ") == "hello world"

    def test_folds_fullwidth_digits(self):
        assert normalize_text("１２３４５") == "12345"

    def test_none_is_empty(self):
        assert normalize_text(None) == ""


class TestExactOrderId:
    def test_five_digits(self):
        assert is_exact_order_id("12345") is True

    def test_surrounding_whitespace(self):
        assert is_exact_order_id(" 12345 ") is True

    def test_fullwidth(self):
        assert is_exact_order_id("１２３４５") is True

    def test_four_digits(self):
        assert is_exact_order_id("1234") is False

    def test_six_digits(self):
        assert is_exact_order_id("123456") is False

    def test_text_with_digits(self):
        assert is_exact_order_id("訂單12345") is False


class TestExtractOrderId:
    def test_natural_sentence(self):
        assert extract_order_id("my order is 12345 thanks", ORDER_KEYWORDS) == "12345"

    def test_keyword_near_digits(self):
        assert extract_order_id("我的訂單編號是 54321 已付款", ORDER_KEYWORDS) == "54321"

    def test_phone_number_blocks_bare_run(self):
        assert extract_order_id("已付款 請打 0912345678 找我 12345", ORDER_KEYWORDS) is None

    def test_keyword_beats_phone_number(self):
        text = "訂單 12345，電話 0912345678"
        assert extract_order_id(text, ORDER_KEYWORDS) == "12345"

    def test_bare_run_without_long_digits(self):
        assert extract_order_id("已付款 12345", ORDER_KEYWORDS) == "12345"

    def test_no_five_digit_run(self):
        assert extract_order_id("已付款 1234", ORDER_KEYWORDS) is None

    def test_only_long_run(self):
        assert extract_order_id("轉帳末碼 1234567", ORDER_KEYWORDS) is None

    def test_empty(self):
        assert extract_order_id("", ORDER_KEYWORDS) is None


class TestKeywordIntents:
    def test_payment_phrase_is_pickup_intent(self):
        assert is_pickup_intent("已付款", DEFAULTS.pickup_keywords) is True

    def test_order_word_alone_is_not_pickup_intent(self):
        assert is_pickup_intent("can I order a cake", DEFAULTS.pickup_keywords) is False
        assert mentions_order("can I order a cake", ORDER_KEYWORDS) is True

    def test_greeting_is_not_pickup_intent(self):
        assert is_pickup_intent("你好", DEFAULTS.pickup_keywords) is False

    def test_reset_intent(self):
        assert is_reset_intent("我要重來", DEFAULTS.reset_keywords) is True
        assert is_reset_intent("RESET", DEFAULTS.reset_keywords) is True

    def test_invoice_intent(self):
        assert is_invoice_intent("可以開發票嗎", DEFAULTS.invoice_keywords) is True
        assert is_invoice_intent("營業時間", DEFAULTS.invoice_keywords) is False


class TestSummarizeText:
    def test_short_text_unchanged(self):
        assert summarize_text("hello", 10) == "hello"

    def test_truncates_with_ellipsis(self):
        summary = summarize_text("a" * 100, 10)
        assert len(summary) == 10
        assert summary.endswith("…")
