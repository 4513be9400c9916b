# subscription_renewer/models/subscription_model.py

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from dateutil.parser import parse as parse_datetime


def parse_expiration(value) -> Optional[datetime]:
    """Parse an ISO timestamp into an aware UTC datetime, or None."""
    if not value:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = parse_datetime(str(value))
        except (ValueError, OverflowError):
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class SubscriptionRecord:
    """One OneDrive connection document stored in Elasticsearch."""

    tenant_id: str
    client_id: str
    client_secret: str = field(repr=False)
    user_name: str
    expiration_datetime: Optional[str]
    doc_id: str
    index_name: str

    @classmethod
    def from_hit(cls, hit: dict, index_name: str = None) -> "SubscriptionRecord":
        src = hit.get("_source", {})
        return cls(
            tenant_id=src.get("tenantId"),
            client_id=src.get("clientId"),
            client_secret=src.get("clientSecret"),
            user_name=src.get("userName"),
            expiration_datetime=src.get("expirationDateTime"),
            doc_id=hit["_id"],
            index_name=index_name or hit.get("_index"),
        )

    @property
    def expires_at(self) -> Optional[datetime]:
        return parse_expiration(self.expiration_datetime)

    def is_expired(self, now: datetime = None) -> bool:
        expires = self.expires_at
        if expires is None:
            return True
        now = now or datetime.now(timezone.utc)
        return expires <= now


@dataclass
class RenewalResult:
    index_name: str
    doc_id: str
    user_name: str
    renewed: bool = False
    expiration: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "index": self.index_name,
            "doc_id": self.doc_id,
            "user_name": self.user_name,
            "renewed": self.renewed,
            "expiration": self.expiration,
            "error": self.error,
        }


@dataclass
class RenewalSummary:
    started_at: datetime
    finished_at: Optional[datetime] = None
    results: List[RenewalResult] = field(default_factory=list)
    skipped: bool = False
    error: Optional[str] = None

    @property
    def renewed_count(self) -> int:
        return sum(1 for r in self.results if r.renewed)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if not r.renewed)

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "skipped": self.skipped,
            "error": self.error,
            "renewed": self.renewed_count,
            "failed": self.failed_count,
            "results": [r.to_dict() for r in self.results],
        }
