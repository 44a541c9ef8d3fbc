"""
In-memory scrape sessions.

A session is created when a job is accepted and lives for a fixed retention
window from creation, whatever state it ends in. Only the job task that owns
a session mutates it; status pollers read snapshots.

    pending -> running -> completed | failed
"""

import logging
import threading
import uuid
from datetime import datetime, timedelta

from leadscraper.models import SessionStatus, utcnow

log = logging.getLogger(__name__)

MAX_LOG_LINES = 500


class ScrapeSession:

    def __init__(self, session_id: str, user_id: str, query: str, cost: int = 0,
                 target: int = 0, created_at: datetime = None):
        self.id = session_id
        self.user_id = user_id
        self.query = query
        self.cost = cost
        self.target = target
        self.created_at = created_at or utcnow()

        self.status = SessionStatus.PENDING
        self.message = 'Waiting to start...'
        self.progress = 0
        self.results = None
        self.error = None
        self.log_lines = []
        self._finishing = False
        self._lock = threading.Lock()

    def log(self, msg: str):
        with self._lock:
            self.log_lines.append(msg)
            if len(self.log_lines) > MAX_LOG_LINES:
                self.log_lines = self.log_lines[-MAX_LOG_LINES:]
        log.info('Session %s: %s', self.id, msg)

    def report(self, message: str, progress: int = None):
        """Progress update from the pipeline. Ignored once terminal."""
        with self._lock:
            if self.status.is_terminal or self._finishing:
                return
            self.message = message
            if progress is not None:
                self.progress = max(0, min(100, int(progress)))
        self.log(message)

    def mark_running(self) -> bool:
        with self._lock:
            if self.status is not SessionStatus.PENDING:
                return False
            self.status = SessionStatus.RUNNING
            self.message = 'Starting scraping...'
        return True

    def claim(self) -> bool:
        """Reserve the one terminal transition for the caller.

        Only the first claim wins. The winner may then do slow work (ledger
        calls) without holding the lock, and finishes with complete() or
        fail() passing claimed=True. Progress reports are ignored meanwhile.
        """
        with self._lock:
            if self.status.is_terminal or self._finishing:
                return False
            self._finishing = True
            return True

    def complete(self, records, claimed: bool = False) -> bool:
        """Attach results. Returns False if another caller already ended the session."""
        if not claimed and not self.claim():
            return False
        records = list(records)
        with self._lock:
            self.results = records
            self.error = None
            self.status = SessionStatus.COMPLETED
            self.progress = 100
            self.message = 'Completed'
            self._finishing = False
        self.log(f'Completed with {len(records)} businesses')
        return True

    def fail(self, error: str, before=None, claimed: bool = False) -> bool:
        """Move to failed. `before` runs after the claim and outside the lock,
        so it fires at most once per session no matter how often fail() is called."""
        if not claimed and not self.claim():
            return False
        try:
            if before is not None:
                before()
        finally:
            with self._lock:
                self.results = None
                self.error = error
                self.status = SessionStatus.FAILED
                self.message = f'Error: {error}'
                self._finishing = False
        self.log(f'Failed: {error}')
        return True

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def snapshot(self) -> dict:
        with self._lock:
            state = {
                'sessionId': self.id,
                'query': self.query,
                'status': self.status.value,
                'message': self.message,
                'progressPercent': self.progress,
                'createdAt': self.created_at.isoformat(),
                'log': self.log_lines[-50:],
            }
            if self.results is not None:
                state['results'] = [r.to_dict() for r in self.results]
            if self.error is not None:
                state['error'] = self.error
        return state


class SessionStore:
    """Process-wide map of session id -> ScrapeSession."""

    def __init__(self, retention_seconds: int = 3600, clock=utcnow):
        self.retention = timedelta(seconds=retention_seconds)
        self.clock = clock
        self._sessions = {}
        self._lock = threading.Lock()

    def create(self, user_id: str, query: str, cost: int = 0, target: int = 0) -> ScrapeSession:
        session = ScrapeSession(uuid.uuid4().hex, user_id, query, cost=cost,
                                target=target, created_at=self.clock())
        with self._lock:
            self._sessions[session.id] = session
        return session

    def get(self, session_id: str):
        with self._lock:
            return self._sessions.get(session_id)

    def sweep(self, now: datetime = None) -> int:
        """Evict every session created more than the retention window ago."""
        cutoff = (now or self.clock()) - self.retention
        with self._lock:
            stale = [sid for sid, s in self._sessions.items() if s.created_at < cutoff]
            for sid in stale:
                del self._sessions[sid]
        if stale:
            log.info('Evicted %d stale sessions', len(stale))
        return len(stale)

    def __len__(self):
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id):
        with self._lock:
            return session_id in self._sessions
