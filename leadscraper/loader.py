"""
Results feed loading and link harvesting.

The Maps results feed is lazily populated: scrolling its container to the
bottom pulls in the next batch. We scroll until we have enough cards, the
feed stops growing, or we run out of rounds.
"""

import asyncio
import logging
from urllib.parse import urljoin

from playwright.async_api import Error as PlaywrightError

from leadscraper.errors import NoResultsFound
from leadscraper.models import ResultLink
from leadscraper.resolver import RESULT_CARDS, RESULT_LINKS, RESULTS_CONTAINER, resolve

log = logging.getLogger(__name__)

MAPS_ORIGIN = 'https://www.google.com'

SCROLL_JS = """(selector) => {
    const el = document.querySelector(selector);
    if (!el) return 0;
    el.scrollTo(0, el.scrollHeight);
    return el.scrollHeight;
}"""

EXTENT_JS = """(selector) => {
    const el = document.querySelector(selector);
    return el ? el.scrollHeight : 0;
}"""


async def count_results(page, settings) -> int:
    found = await resolve(page, RESULT_CARDS, timeout_ms=settings.selector_timeout_ms)
    return found.element_count if found else 0


async def load_results(page, target: int, settings, max_rounds: int = None, on_round=None) -> int:
    """Scroll the results feed until `target` results are materialized.

    A stall round is one where the feed's scroll extent did not grow. After
    more than `settings.stall_threshold` stall rounds in a row, or
    `max_rounds` rounds in total, loading stops with whatever is there.
    Raises NoResultsFound if that is nothing. Returns the final count.
    """
    max_rounds = settings.max_scroll_rounds if max_rounds is None else max_rounds
    container = await resolve(page, RESULTS_CONTAINER, timeout_ms=settings.selector_timeout_ms)
    previous_extent = None
    stalls = 0
    count = 0

    for round_no in range(1, max_rounds + 1):
        count = await count_results(page, settings)
        if on_round:
            on_round(round_no, max_rounds, count)
        if count >= target:
            log.info('Loaded %d results (target %d) after %d rounds', count, target, round_no - 1)
            break
        if container is None:
            log.info('No scrollable results container, keeping %d results', count)
            break

        try:
            await page.evaluate(SCROLL_JS, container.selector)
            await asyncio.sleep(settings.scroll_settle)
            extent = await page.evaluate(EXTENT_JS, container.selector)
        except PlaywrightError as e:
            log.warning('Scroll round %d failed: %s', round_no, e)
            break

        if previous_extent is not None and extent <= previous_extent:
            stalls += 1
            log.debug('Stall round %d (extent %s)', stalls, extent)
            if stalls > settings.stall_threshold:
                log.info('Feed stopped growing after %d stall rounds', stalls)
                break
        else:
            stalls = 0
        previous_extent = extent
    else:
        log.info('Scroll rounds exhausted (%d)', max_rounds)

    count = await count_results(page, settings)
    if count == 0:
        raise NoResultsFound('zero results after loading the feed')
    return count


async def harvest_links(page, limit: int, settings) -> list:
    """Collect up to `limit` unique detail links from the results feed."""
    found = await resolve(page, RESULT_LINKS, timeout_ms=settings.selector_timeout_ms)
    if not found:
        return []

    links = []
    seen = set()
    anchors = page.locator(found.selector)
    total = await anchors.count()
    for i in range(total):
        if len(links) >= limit:
            break
        anchor = anchors.nth(i)
        try:
            href = await anchor.get_attribute('href', timeout=settings.field_timeout_ms)
            name = await anchor.get_attribute('aria-label', timeout=settings.field_timeout_ms) or ''
        except PlaywrightError:
            continue
        if not href:
            continue
        url = urljoin(MAPS_ORIGIN, href)
        if url in seen:
            continue
        seen.add(url)
        links.append(ResultLink(url=url, name=name.strip()))

    log.info('Harvested %d links with %s', len(links), found.selector)
    return links
