from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStatus(str, Enum):
    PENDING = 'pending'
    RUNNING = 'running'
    COMPLETED = 'completed'
    FAILED = 'failed'

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.FAILED)


class Provenance(str, Enum):
    """Where a record's emails were found."""
    RESULTS_PAGE = 'RESULTS_PAGE'
    WEBSITE_SCAN = 'WEBSITE_SCAN'


@dataclass(frozen=True)
class ResultLink:
    """A harvested result from the search feed."""
    url: str
    name: str = ''


@dataclass(frozen=True)
class BusinessRecord:
    name: str
    address: str
    phone: str = ''
    website: str = ''
    emails: tuple = ()
    source: Provenance = Provenance.RESULTS_PAGE
    maps_url: str = ''
    extracted_at: datetime = field(default_factory=utcnow)

    @property
    def is_valid(self) -> bool:
        return bool(self.name.strip()) and bool(self.address.strip())

    def with_emails(self, emails, source: Provenance) -> 'BusinessRecord':
        return replace(self, emails=tuple(emails), source=source)

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'address': self.address,
            'phone': self.phone,
            'website': self.website,
            'emails': list(self.emails),
            'source': self.source.value,
            'mapsUrl': self.maps_url,
            'extractedAt': self.extracted_at.isoformat(),
        }


@dataclass(frozen=True)
class UsageRecord:
    user_id: str
    query: str
    credits_used: int
    result_count: int
    session_id: str
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            'userId': self.user_id,
            'query': self.query,
            'creditsUsed': self.credits_used,
            'resultCount': self.result_count,
            'sessionId': self.session_id,
            'timestamp': self.timestamp.isoformat(),
        }
