"""
Selector chains and the resolver that probes them.

Google Maps class names change without notice and the same data shows up
under different attributes depending on rollout. Each semantic target gets an
ordered list of candidate selectors; the resolver takes the first that
matches on the live page.
"""

import logging
from dataclasses import dataclass

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class SelectorChain:
    name: str
    candidates: tuple

    def __iter__(self):
        return iter(self.candidates)

    def __len__(self):
        return len(self.candidates)


@dataclass(frozen=True)
class Resolved:
    selector: str
    element_count: int


# =============================================================================
#  CHAINS
# =============================================================================

RESULTS_CONTAINER = SelectorChain('results container', (
    'div[role="feed"]',
    'div[role="main"] div[aria-label][tabindex="-1"]',
    '[role="main"]',
))

RESULT_CARDS = SelectorChain('result card', (
    'div.Nv2PK',
    'a.hfpxzc',
    'div[role="feed"] a[href*="/maps/place/"]',
    'div[role="article"]',
    '[data-result-index]',
    'a[href*="/maps/place/"]',
))

RESULT_LINKS = SelectorChain('result link', (
    'a.hfpxzc',
    'div[role="feed"] a[href*="/maps/place/"]',
    'div.Nv2PK a[href*="/place/"]',
    'div[role="article"] a[href*="/place/"]',
    'a[href*="/maps/place/"]',
))

DETAIL_NAME = SelectorChain('business name', (
    'h1.DUwDvf',
    'div[role="main"] h1',
    'h1',
    '[data-attrid="title"]',
))

DETAIL_ADDRESS = SelectorChain('address field', (
    'button[data-item-id="address"]',
    '[data-item-id*="address"]',
    'button[aria-label^="Address"]',
    'button[aria-label^="Adres"]',
    'span[title*="Address"]',
))

DETAIL_PHONE = SelectorChain('phone field', (
    'button[data-item-id^="phone:tel:"]',
    '[data-item-id*="phone"]',
    'button[aria-label^="Phone"]',
    'button[aria-label^="Telefoon"]',
    'a[href^="tel:"]',
))

DETAIL_WEBSITE = SelectorChain('website field', (
    'a[data-item-id="authority"]',
    'a[data-item-id*="authority"]',
    'a[aria-label^="Website"]',
    'button[data-item-id*="authority"]',
))


# =============================================================================
#  RESOLVER
# =============================================================================

async def count_matches(page, selector: str) -> int:
    try:
        return await page.locator(selector).count()
    except PlaywrightError:
        return 0


async def resolve(page, chain, min_matches: int = 1, timeout_ms: int = 3000):
    """Return the first candidate in `chain` matching at least `min_matches`
    elements, or None when every candidate comes up short.

    Each candidate gets its own wait of `timeout_ms`; a timeout just moves on
    to the next one. The caller decides whether None is fatal.
    """
    name = getattr(chain, 'name', 'selector chain')
    for selector in chain:
        try:
            await page.wait_for_selector(selector, state='attached', timeout=timeout_ms)
        except PlaywrightTimeoutError:
            log.debug('%s: %s timed out', name, selector)
            continue
        except PlaywrightError as e:
            log.debug('%s: %s failed: %s', name, selector, e)
            continue
        count = await count_matches(page, selector)
        if count >= min_matches:
            log.debug('%s: using %s (%d matches)', name, selector, count)
            return Resolved(selector, count)
        log.debug('%s: %s matched %d, need %d', name, selector, count, min_matches)
    log.info('%s: no candidate matched (%d tried)', name, len(chain))
    return None
