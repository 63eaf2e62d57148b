"""Price observation and cache entry types."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

SOURCE_EXTENSION = "extension"
SOURCE_ESTIMATE = "estimate"


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def to_decimal(value: Any) -> Decimal:
    """Convert a number or numeric string to Decimal."""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Invalid price value: {value!r}") from e


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class PriceObservation:
    """A price for one product on one platform, captured or estimated."""

    price: Decimal
    unit: str = "1 unit"
    is_estimate: bool = False
    original_name: Optional[str] = None
    source: Optional[str] = None
    captured_at: Optional[datetime] = None
    user_id: Optional[str] = None
    source_alias: Optional[str] = None  # Cache key this alias was copied from

    def __post_init__(self):
        self.price = to_decimal(self.price)
        if not self.price.is_finite() or self.price <= 0:
            raise ValueError(f"Price must be positive, got {self.price}")
        if self.is_estimate and self.original_name:
            raise ValueError("Estimated prices cannot carry a captured product name")
        if not self.unit:
            self.unit = "1 unit"

    def as_alias(self, source_key: str) -> "PriceObservation":
        """Copy of this observation tagged with the key it was matched from."""
        return replace(self, source_alias=source_key)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "price": str(self.price),
            "unit": self.unit,
            "is_estimate": self.is_estimate,
            "original_name": self.original_name,
            "source": self.source,
            "captured_at": self.captured_at.isoformat() if self.captured_at else None,
            "user_id": self.user_id,
            "source_alias": self.source_alias,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PriceObservation":
        return cls(
            price=to_decimal(data["price"]),
            unit=data.get("unit") or "1 unit",
            is_estimate=bool(data.get("is_estimate", False)),
            original_name=data.get("original_name"),
            source=data.get("source"),
            captured_at=parse_datetime(data.get("captured_at")),
            user_id=data.get("user_id"),
            source_alias=data.get("source_alias"),
        )


@dataclass
class CacheEntry:
    """A cached observation keyed by "<platform>:<normalized name>"."""

    key: str
    value: PriceObservation
    stored_at: datetime = field(default_factory=utcnow)

    @property
    def platform(self) -> str:
        return self.key.split(":", 1)[0]

    @property
    def name(self) -> str:
        return self.key.split(":", 1)[1] if ":" in self.key else ""

    @property
    def display_name(self) -> str:
        """Captured product name, falling back to the normalized key name."""
        return self.value.original_name or self.name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "value": self.value.to_dict(),
            "stored_at": self.stored_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        return cls(
            key=data["key"],
            value=PriceObservation.from_dict(data["value"]),
            stored_at=parse_datetime(data.get("stored_at")) or utcnow(),
        )
