"""
Prepaid credits.

Every job is paid for up front: debit before the session exists, then either
commit (record usage) on success or reverse (credit back) on failure. Each
transaction resolves exactly once.
"""

import logging
import os
import threading
from abc import ABC, abstractmethod
from datetime import datetime

import requests

from leadscraper.errors import InsufficientCredits, LedgerError
from leadscraper.models import UsageRecord

log = logging.getLogger(__name__)

DEFAULT_LEDGER_URL = os.environ.get('LEADSCRAPER_LEDGER_URL', '')


class CreditLedger(ABC):

    @abstractmethod
    def debit(self, user_id: str, amount: int) -> bool:
        """Take `amount` credits. False (and no change) if the balance is short."""

    @abstractmethod
    def credit(self, user_id: str, amount: int):
        """Give `amount` credits back."""

    @abstractmethod
    def balance(self, user_id: str) -> int:
        pass

    @abstractmethod
    def record_usage(self, record: UsageRecord):
        pass

    @abstractmethod
    def usage_history(self, user_id: str, limit: int = 20) -> list:
        pass


class InMemoryLedger(CreditLedger):
    """Thread-safe ledger for a single process. Unknown users start with
    `starting_credits`."""

    def __init__(self, balances: dict = None, starting_credits: int = 0):
        self._balances = dict(balances or {})
        self._usage = []
        self.starting_credits = starting_credits
        self._lock = threading.Lock()

    def _get(self, user_id):
        return self._balances.setdefault(user_id, self.starting_credits)

    def debit(self, user_id: str, amount: int) -> bool:
        with self._lock:
            current = self._get(user_id)
            if current < amount:
                return False
            self._balances[user_id] = current - amount
            return True

    def credit(self, user_id: str, amount: int):
        with self._lock:
            self._balances[user_id] = self._get(user_id) + amount

    def balance(self, user_id: str) -> int:
        with self._lock:
            return self._get(user_id)

    def record_usage(self, record: UsageRecord):
        with self._lock:
            self._usage.append(record)

    def usage_history(self, user_id: str, limit: int = 20) -> list:
        with self._lock:
            mine = [r for r in self._usage if r.user_id == user_id]
        return list(reversed(mine))[:limit]


class HttpLedger(CreditLedger):
    """Ledger backed by a billing function reached over HTTP POST.

    Every call is `{'action': ..., 'userId': ..., 'data': {...}}`; the function
    answers JSON with at least `success`.
    """

    def __init__(self, function_url: str = '', timeout: int = 15):
        self.url = function_url or DEFAULT_LEDGER_URL
        self.timeout = timeout
        if not self.url:
            raise LedgerError('no ledger URL configured')

    def _post(self, payload: dict) -> dict:
        try:
            r = requests.post(self.url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise LedgerError(f'ledger POST failed: {e}') from e
        if r.status_code != 200:
            raise LedgerError(f'ledger POST error: {r.status_code} {r.text[:100]}')
        try:
            return r.json()
        except ValueError as e:
            raise LedgerError(f'ledger returned non-JSON: {r.text[:100]}') from e

    def debit(self, user_id: str, amount: int) -> bool:
        resp = self._post({'action': 'debit', 'userId': user_id, 'data': {'amount': amount}})
        if resp.get('success'):
            return True
        if resp.get('error') == 'insufficient':
            return False
        raise LedgerError(f'debit rejected: {resp.get("error", "unknown error")}')

    def credit(self, user_id: str, amount: int):
        resp = self._post({'action': 'credit', 'userId': user_id, 'data': {'amount': amount}})
        if not resp.get('success'):
            raise LedgerError(f'credit rejected: {resp.get("error", "unknown error")}')

    def balance(self, user_id: str) -> int:
        resp = self._post({'action': 'balance', 'userId': user_id})
        return int(resp.get('credits', 0))

    def record_usage(self, record: UsageRecord):
        self._post({'action': 'recordUsage', 'userId': record.user_id, 'data': record.to_dict()})

    def usage_history(self, user_id: str, limit: int = 20) -> list:
        resp = self._post({'action': 'usageHistory', 'userId': user_id, 'data': {'limit': limit}})
        history = []
        for item in resp.get('history', []):
            history.append(UsageRecord(
                user_id=item.get('userId', user_id),
                query=item.get('query', ''),
                credits_used=int(item.get('creditsUsed', 0)),
                result_count=int(item.get('resultCount', 0)),
                session_id=item.get('sessionId', ''),
                timestamp=datetime.fromisoformat(item['timestamp'].replace('Z', '+00:00')),
            ))
        return history


# =============================================================================
#  TRANSACTION
# =============================================================================

class CreditTransaction:
    COMMITTED = 'committed'
    REVERSED = 'reversed'

    def __init__(self, ledger: CreditLedger, user_id: str, amount: int, query: str = ''):
        self.ledger = ledger
        self.user_id = user_id
        self.amount = amount
        self.query = query
        self.session_id = ''
        self.resolution = None
        self._lock = threading.Lock()

    @classmethod
    def reserve(cls, ledger: CreditLedger, user_id: str, amount: int, query: str = '') -> 'CreditTransaction':
        """Debit up front. Raises InsufficientCredits with nothing changed."""
        if not ledger.debit(user_id, amount):
            raise InsufficientCredits(amount, ledger.balance(user_id))
        log.info('Reserved %d credits for user %s', amount, user_id)
        return cls(ledger, user_id, amount, query)

    def commit(self, result_count: int) -> bool:
        with self._lock:
            if self.resolution is not None:
                return False
            self.resolution = self.COMMITTED
        self.ledger.record_usage(UsageRecord(
            user_id=self.user_id,
            query=self.query,
            credits_used=self.amount,
            result_count=result_count,
            session_id=self.session_id,
        ))
        return True

    def reverse(self) -> bool:
        with self._lock:
            if self.resolution is not None:
                return False
            self.ledger.credit(self.user_id, self.amount)
            self.resolution = self.REVERSED
        log.info('Refunded %d credits to user %s (session %s)', self.amount, self.user_id, self.session_id)
        return True
