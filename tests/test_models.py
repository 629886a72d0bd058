"""
数据模型单元测试
"""

from datetime import datetime, timedelta, timezone

import pytest

from marketpulse.models import (
    CacheEntry,
    EconomicValue,
    GenericValue,
    MarketQuoteValue,
    SentimentValue,
    classify_fear_greed,
    ensure_utc,
    format_timestamp,
    parse_timestamp,
    payload_from_dict,
)

from fakes import make_entry, make_quote


class TestTimestamps:

    def test_parse_z_suffix(self):
        assert parse_timestamp("2025-01-10T12:00:00Z") == datetime(2025, 1, 10, 12, tzinfo=timezone.utc)

    def test_parse_offset(self):
        parsed = parse_timestamp("2025-01-10T20:00:00+08:00")
        assert parsed == datetime(2025, 1, 10, 12, tzinfo=timezone.utc)
        assert parsed.tzinfo == timezone.utc

    def test_parse_empty(self):
        assert parse_timestamp(None) is None
        assert parse_timestamp("") is None

    def test_naive_treated_as_utc(self):
        assert ensure_utc(datetime(2025, 1, 10)).tzinfo == timezone.utc

    def test_format(self):
        assert format_timestamp(datetime(2025, 1, 10, 12, tzinfo=timezone.utc)) == "2025-01-10T12:00:00Z"


class TestFearGreedBands:

    @pytest.mark.parametrize(
        "value, expected",
        [
            (0, "Extreme Fear"),
            (24, "Extreme Fear"),
            (25, "Fear"),
            (44, "Fear"),
            (45, "Neutral"),
            (55, "Neutral"),
            (56, "Greed"),
            (75, "Greed"),
            (76, "Extreme Greed"),
            (100, "Extreme Greed"),
        ],
    )
    def test_bands(self, value, expected):
        assert classify_fear_greed(value) == expected


class TestPayloads:

    def test_market_quote_from_quote(self):
        value = MarketQuoteValue.from_quote(make_quote("SPY", 500.0, 5.0))
        assert value.price == 500.0
        assert value.change == 5.0
        assert value.as_of == "2025-01-10"

    def test_sentiment_from_quote(self):
        value = SentimentValue.from_quote(make_quote("FNG", 72.0, 2.0))
        assert value.value == 72
        assert value.classification == "Greed"
        assert value.previous_value == 70

    def test_economic_from_quote(self):
        value = EconomicValue.from_quote(make_quote("UNRATE", 4.1, 0.1), unit="percent")
        assert value.unit == "percent"
        assert value.previous_value == pytest.approx(4.0)

    def test_payload_by_indicator_type(self):
        assert isinstance(payload_from_dict("sp500", {"price": 1.0}), MarketQuoteValue)
        assert isinstance(payload_from_dict("fear_greed", {"value": 50}), SentimentValue)
        assert isinstance(payload_from_dict("cpi", {"value": 310.0, "unit": "index"}), EconomicValue)

    def test_unknown_or_malformed_payload(self):
        assert payload_from_dict("gold", {"price": 2000}) == GenericValue({"price": 2000})
        assert isinstance(payload_from_dict("sp500", {"symbol": "SPY"}), GenericValue)

    def test_sentiment_classification_recomputed_when_missing(self):
        value = SentimentValue.from_dict({"value": 10})
        assert value.classification == "Extreme Fear"


class TestCacheEntry:

    def test_dict_roundtrip(self):
        entry = make_entry().with_id(7)
        restored = CacheEntry.from_dict(entry.to_dict())
        assert restored == entry

    def test_to_dict_format(self):
        data = make_entry().to_dict()
        assert data["created_at"] == "2025-01-10T12:00:00Z"
        assert data["expires_at"] == "2025-01-10T18:00:00Z"
        assert data["data_value"]["price"] == 500.0

    def test_deactivated_is_copy(self):
        entry = make_entry()
        inactive = entry.deactivated()
        assert entry.is_active
        assert not inactive.is_active
        assert inactive.created_at == entry.created_at

    def test_expiry(self):
        entry = make_entry()
        assert entry.expires_at - entry.created_at == timedelta(hours=6)
