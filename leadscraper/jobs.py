"""
Job submission and the task that owns each session.

All jobs run as tasks on one background event loop thread, so many jobs can
be in flight while each one steps through its own pipeline in order. Flask
request threads only ever submit work and read session snapshots.

Shutting down abandons whatever is still running.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass

from leadscraper.credits import CreditTransaction
from leadscraper.errors import LedgerError, ScrapeError
from leadscraper.scraper import MapsScraper
from leadscraper.sessions import SessionStore

log = logging.getLogger(__name__)

UNEXPECTED_ERROR_MESSAGE = 'Unexpected error during scraping'


@dataclass(frozen=True)
class Submission:
    session_id: str
    credits_used: int
    credits_remaining: int | None


class JobManager:

    def __init__(self, store: SessionStore, ledger, settings, scraper_factory=MapsScraper):
        self.store = store
        self.ledger = ledger
        self.settings = settings
        self.scraper_factory = scraper_factory
        self.loop = None
        self._thread = None
        self._started = threading.Event()
        self._start_lock = threading.Lock()
        self._futures = {}
        self._futures_lock = threading.Lock()

    # -- Loop thread --
    def start(self):
        with self._start_lock:
            if self._thread and self._thread.is_alive():
                return
            self._started.clear()
            self.loop = asyncio.new_event_loop()
            self._thread = threading.Thread(target=self._run_loop, daemon=True, name='scrape-jobs')
            self._thread.start()
            self._started.wait()

    def _run_loop(self):
        asyncio.set_event_loop(self.loop)
        self.loop.create_task(self._sweep_forever())
        self.loop.call_soon(self._started.set)
        try:
            self.loop.run_forever()
        finally:
            self.loop.close()

    def shutdown(self):
        with self._start_lock:
            if not self.loop or not self._thread:
                return
            self.loop.call_soon_threadsafe(self.loop.stop)
            self._thread.join(timeout=5)
            self._thread = None
            self.loop = None

    async def _sweep_forever(self):
        while True:
            await asyncio.sleep(self.settings.sweep_interval)
            self.sweep()

    def sweep(self) -> int:
        evicted = self.store.sweep()
        with self._futures_lock:
            for sid in [sid for sid in self._futures if sid not in self.store]:
                del self._futures[sid]
        return evicted

    # -- Submission --
    def clamp_target(self, max_results) -> int:
        if not max_results:
            return self.settings.default_target
        return max(1, min(int(max_results), self.settings.max_target))

    def submit(self, user_id: str, query: str, max_results: int = None) -> Submission:
        """Reserve credits, create the session and schedule the job.

        Raises InsufficientCredits before anything is created.
        """
        query = (query or '').strip()
        if not query:
            raise ValueError('search query is required')
        self.start()

        cost = self.settings.job_cost
        target = self.clamp_target(max_results)
        txn = CreditTransaction.reserve(self.ledger, user_id, cost, query)
        try:
            session = self.store.create(user_id, query, cost=cost, target=target)
            txn.session_id = session.id
            future = asyncio.run_coroutine_threadsafe(self.run_session(session, txn), self.loop)
        except Exception:
            txn.reverse()
            raise
        with self._futures_lock:
            self._futures[session.id] = future
        log.info('Session %s accepted for user %s: %r (target %d)', session.id, user_id, query, target)

        # the job is already running; a failed lookup only loses the display value
        try:
            remaining = self.ledger.balance(user_id)
        except LedgerError as e:
            log.warning('Balance lookup failed after accepting session %s: %s', session.id, e)
            remaining = None
        return Submission(session.id, cost, remaining)

    def wait(self, session_id: str, timeout: float = None):
        """Block until the session's job task finishes. Returns the session."""
        with self._futures_lock:
            future = self._futures.get(session_id)
        if future is not None:
            future.result(timeout=timeout)
        return self.store.get(session_id)

    # -- The job task --
    def _refund(self, txn: CreditTransaction):
        def refund():
            try:
                txn.reverse()
            except LedgerError:
                log.exception('REFUND FAILED: user %s session %s amount %d needs manual credit',
                              txn.user_id, txn.session_id, txn.amount)
        return refund

    def _commit(self, txn: CreditTransaction, result_count: int):
        def commit():
            try:
                txn.commit(result_count)
            except LedgerError:
                log.exception('Usage record failed for session %s', txn.session_id)
        return commit

    async def _finish_failed(self, session, message: str, txn: CreditTransaction):
        if not session.claim():
            return
        try:
            # ledger calls block; keep them off the shared loop
            await asyncio.to_thread(self._refund(txn))
        finally:
            session.fail(message, claimed=True)

    async def run_session(self, session, txn: CreditTransaction):
        """Drive one session to a terminal state. Never raises."""
        if not session.mark_running():
            return
        scraper = self.scraper_factory(self.settings, session=session)
        try:
            records = await scraper.run(session.query, session.target)
        except ScrapeError as e:
            log.warning('Session %s failed: %s', session.id, e)
            await self._finish_failed(session, e.user_message, txn)
            return
        except Exception:
            log.exception('Session %s crashed', session.id)
            await self._finish_failed(session, UNEXPECTED_ERROR_MESSAGE, txn)
            return

        if session.claim():
            try:
                await asyncio.to_thread(self._commit(txn, len(records)))
            finally:
                session.complete(records, claimed=True)
