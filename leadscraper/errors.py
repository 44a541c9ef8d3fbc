"""Error taxonomy for scrape jobs.

Job-level errors end a session as failed and trigger the credit refund.
Item-level errors are caught inside the pipeline and only cost one record.
"""


class ScrapeError(Exception):
    """Base class. `user_message` is what the status endpoint shows."""

    user_message = 'Scraping failed'

    def __init__(self, detail: str = '', user_message: str = None):
        super().__init__(detail or user_message or self.user_message)
        if user_message:
            self.user_message = user_message


# -- Job-level --

class ConsentUnresolved(ScrapeError):
    user_message = 'Google cookie consent could not be accepted'


class NoResultsFound(ScrapeError):
    user_message = 'No businesses found for this search'


class GatewayFatal(ScrapeError):
    user_message = 'The browser could not be started or crashed'


# -- Item-level (never escape the pipeline) --

class DetailExtractionFailed(ScrapeError):
    user_message = 'Could not read business details'


class WebsiteUnreachable(ScrapeError):
    user_message = 'Business website could not be loaded'


# -- Submission / billing --

class InsufficientCredits(Exception):
    def __init__(self, required: int, available: int):
        super().__init__(f'Insufficient credits: {required} required, {available} available')
        self.required = required
        self.available = available


class LedgerError(Exception):
    """The credit ledger could not be reached or rejected the call."""
