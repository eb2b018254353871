"""
Response Normalizer

Turns upstream quote payloads into QuoteRecord objects.
Tolerates several payload shapes and malformed numeric fields.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional, Any
import re
from loguru import logger

from market_relay.data_providers.adapters.base import DataSource, QuoteRecord
from market_relay.utils.exceptions import ResponseFormatError


class PayloadShape(str, Enum):
    """Known payload shapes, in the order they are tried."""
    DIRECT_QUOTE = "direct_quote"    # {"Global Quote": {...}} / {"quote": {...}}
    LIST_WRAPPER = "list_wrapper"    # [{...}] / {"data": [{...}]}
    NESTED_DATA = "nested_data"      # {"data": {"BTC": {...}}} / {"Time Series (5min)": {ts: {...}}}
    TOP_LEVEL = "top_level"          # {"price": ..., "open": ...}


GENERIC_PRICE_KEYS = ["price", "last", "close"]

QUOTE_OBJECT_KEYS = ("Global Quote", "quote", "Quote")
LIST_KEYS = ("data", "quotes", "results", "tick_list", "list")
DATA_KEYS = ("data", "result")
SYMBOL_KEYS = ("symbol", "code", "ticker", "01. symbol")


@dataclass
class FieldKeys:
    """
    Per-provider field names, in priority order.

    Generic price keys (price, last, close) are always tried after the
    provider-specific ones.
    """
    price: list[str] = field(default_factory=list)
    open: list[str] = field(default_factory=lambda: ["open"])
    high: list[str] = field(default_factory=lambda: ["high"])
    low: list[str] = field(default_factory=lambda: ["low"])
    volume: list[str] = field(default_factory=lambda: ["volume"])
    timestamp: list[str] = field(default_factory=lambda: ["timestamp", "time", "last_updated"])

    @property
    def price_keys(self) -> list[str]:
        return self.price + [k for k in GENERIC_PRICE_KEYS if k not in self.price]


@dataclass
class LocatedQuote:
    """The quote object found inside a payload."""
    shape: PayloadShape
    data: dict[str, Any]
    timestamp_hint: Optional[str] = None


def parse_decimal(value: Any) -> Optional[Decimal]:
    """Convert an upstream value to Decimal. Returns None instead of raising."""
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, Decimal):
            result = value
        elif isinstance(value, (int, float)):
            result = Decimal(str(value))
        elif isinstance(value, str):
            # Remove currency symbols and commas
            clean = re.sub(r'[,$€£¥%]', '', value.strip())
            if not clean:
                return None
            result = Decimal(clean)
        else:
            return None
    except (InvalidOperation, ValueError):
        return None
    if not result.is_finite():
        return None
    return result


def parse_int(value: Any) -> Optional[int]:
    """Convert an upstream value to int. Returns None instead of raising."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    number = parse_decimal(value)
    if number is None:
        return None
    return int(number)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Normalize a timestamp to UTC datetime, or None if unparseable."""
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    # Unix timestamp (seconds or milliseconds)
    if isinstance(value, (int, float)):
        if value > 4102444800:
            value = value / 1000
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    if isinstance(value, str):
        if value.isdigit():
            return parse_timestamp(int(value))
        formats = [
            "%Y-%m-%dT%H:%M:%S.%fZ",
            "%Y-%m-%dT%H:%M:%SZ",
            "%Y-%m-%dT%H:%M:%S%z",
            "%Y-%m-%dT%H:%M:%S.%f%z",
            "%Y-%m-%dT%H:%M:%S",
            "%Y-%m-%d %H:%M:%S",
            "%Y-%m-%d",
        ]
        for fmt in formats:
            try:
                dt = datetime.strptime(value, fmt)
                if dt.tzinfo is None:
                    dt = dt.replace(tzinfo=timezone.utc)
                return dt
            except ValueError:
                continue

    logger.debug(f"Could not parse timestamp: {value}")
    return None


def _extract_field(data: dict[str, Any], keys: list[str]) -> Optional[Any]:
    """Extract a field trying multiple possible keys."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
        if key.lower() in data and data[key.lower()] is not None:
            return data[key.lower()]
    return None


def first_decimal(data: dict[str, Any], keys: list[str]) -> Optional[Decimal]:
    """First key (in order) whose value parses as a Decimal."""
    for key in keys:
        value = parse_decimal(_extract_field(data, [key]))
        if value is not None:
            return value
    return None


def _has_any(data: dict[str, Any], keys: list[str]) -> bool:
    return _extract_field(data, keys) is not None


class ResponseNormalizer:
    """
    Locates the quote object inside a payload and builds a QuoteRecord.

    Shapes are tried in `PayloadShape` order; ResponseFormatError is raised
    only when none of them match. A matched shape without a usable price
    yields a record whose price is None (the "no data" sentinel).
    """

    def __init__(self, provider: str, field_keys: Optional[FieldKeys] = None):
        self.provider = provider
        self.field_keys = field_keys or FieldKeys()

    # ==================== Shape detection ====================

    def locate(self, payload: Any, symbol: str) -> LocatedQuote:
        if isinstance(payload, dict) and not payload:
            raise ResponseFormatError(self.provider, f"Empty response for {symbol}")
        if not isinstance(payload, (dict, list)):
            raise ResponseFormatError(
                self.provider, f"Unexpected payload type {type(payload).__name__} for {symbol}"
            )

        for finder in (
            self._direct_quote,
            self._list_wrapper,
            self._nested_data,
            self._top_level,
        ):
            located = finder(payload, symbol)
            if located is not None:
                logger.debug(f"{self.provider}: {symbol} matched {located.shape.value} shape")
                return located

        keys = list(payload.keys())[:10] if isinstance(payload, dict) else "list"
        raise ResponseFormatError(
            self.provider, f"Unrecognized response format for {symbol}: {keys}"
        )

    def _direct_quote(self, payload: Any, symbol: str) -> Optional[LocatedQuote]:
        if not isinstance(payload, dict):
            return None
        for key in QUOTE_OBJECT_KEYS:
            value = payload.get(key)
            if isinstance(value, dict) and value:
                return LocatedQuote(PayloadShape.DIRECT_QUOTE, value)
        return None

    def _list_wrapper(self, payload: Any, symbol: str) -> Optional[LocatedQuote]:
        items = None
        if isinstance(payload, list):
            items = payload
        else:
            # {"data": {"tick_list": [...]}} is unwrapped one level
            containers = [payload] + [
                payload[key] for key in DATA_KEYS if isinstance(payload.get(key), dict)
            ]
            for container in containers:
                for key in LIST_KEYS:
                    if isinstance(container.get(key), list):
                        items = container[key]
                        break
                if items is not None:
                    break
        if not items:
            return None

        candidates = [item for item in items if isinstance(item, dict)]
        if not candidates:
            return None
        for item in candidates:
            item_symbol = _extract_field(item, list(SYMBOL_KEYS))
            if isinstance(item_symbol, str) and item_symbol.upper() == symbol.upper():
                return LocatedQuote(PayloadShape.LIST_WRAPPER, item)
        return LocatedQuote(PayloadShape.LIST_WRAPPER, candidates[0])

    def _nested_data(self, payload: Any, symbol: str) -> Optional[LocatedQuote]:
        if not isinstance(payload, dict):
            return None

        for key in DATA_KEYS:
            inner = payload.get(key)
            if not isinstance(inner, dict) or not inner:
                continue
            keyed = inner.get(symbol, inner.get(symbol.upper()))
            if isinstance(keyed, list):
                keyed = next((item for item in keyed if isinstance(item, dict)), None)
            if isinstance(keyed, dict):
                return LocatedQuote(PayloadShape.NESTED_DATA, keyed)
            if _has_any(inner, self.field_keys.price_keys) or "quote" in inner:
                return LocatedQuote(PayloadShape.NESTED_DATA, inner)

        # Time series keyed by timestamp: take the latest entry
        for key, series in payload.items():
            if "Time Series" in key and isinstance(series, dict) and series:
                latest = max(series.keys())
                if isinstance(series[latest], dict):
                    return LocatedQuote(PayloadShape.NESTED_DATA, series[latest], latest)
        return None

    def _top_level(self, payload: Any, symbol: str) -> Optional[LocatedQuote]:
        if isinstance(payload, dict) and _has_any(payload, self.field_keys.price_keys):
            return LocatedQuote(PayloadShape.TOP_LEVEL, payload)
        return None

    # ==================== Record building ====================

    def build_record(
        self,
        located: LocatedQuote,
        instrument_id: str,
        symbol: str,
        data_source: DataSource,
        granularity: str,
    ) -> QuoteRecord:
        data = located.data
        keys = self.field_keys

        price = first_decimal(data, keys.price_keys)
        timestamp = (
            parse_timestamp(_extract_field(data, keys.timestamp))
            or parse_timestamp(located.timestamp_hint)
            or datetime.now(timezone.utc)
        )

        return QuoteRecord(
            instrument_id=instrument_id,
            symbol=symbol,
            price=price,
            open=first_decimal(data, keys.open),
            high=first_decimal(data, keys.high),
            low=first_decimal(data, keys.low),
            volume=parse_int(_extract_field(data, keys.volume)),
            timestamp=timestamp,
            data_source=data_source,
            granularity=granularity,
        )

    def normalize(
        self,
        payload: Any,
        instrument_id: str,
        symbol: str,
        data_source: DataSource,
        granularity: str,
    ) -> QuoteRecord:
        located = self.locate(payload, symbol)
        return self.build_record(located, instrument_id, symbol, data_source, granularity)
