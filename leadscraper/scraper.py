"""
Lead Scraper Engine - Google Maps extraction pipeline.

One MapsScraper run = one search query. It owns its own browser page for the
whole run and reports progress into the session it was handed:

    navigate -> consent -> load feed -> harvest links -> details + emails

Detail pages are visited one at a time with a short pause in between.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path
from urllib.parse import quote

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from leadscraper.consent import dismiss_consent_if_present, is_consent_wall
from leadscraper.detail import extract_detail
from leadscraper.emails import discover_emails
from leadscraper.errors import ConsentUnresolved, DetailExtractionFailed, GatewayFatal, NoResultsFound
from leadscraper.loader import harvest_links, load_results

log = logging.getLogger(__name__)

SEARCH_URL = 'https://www.google.com/maps/search/{query}'

BROWSER_ARGS = ['--no-sandbox', '--disable-setuid-sandbox', '--disable-dev-shm-usage', '--disable-gpu']


# =============================================================================
#  BROWSER GATEWAY
# =============================================================================

@asynccontextmanager
async def open_page(settings):
    """Launch chromium and yield a fresh page. Launch failures and crashes of
    the automation layer surface as GatewayFatal."""
    try:
        p = await async_playwright().start()
    except Exception as e:
        raise GatewayFatal(f'playwright failed to start: {e}') from e
    try:
        try:
            browser = await p.chromium.launch(headless=settings.headless, args=BROWSER_ARGS)
            ctx = await browser.new_context(
                viewport={'width': settings.viewport_width, 'height': settings.viewport_height},
                user_agent=settings.user_agent,
            )
            page = await ctx.new_page()
        except PlaywrightError as e:
            raise GatewayFatal(f'browser launch failed: {e}') from e
        try:
            yield page
        finally:
            try:
                await browser.close()
            except PlaywrightError as e:
                log.warning('Browser close failed: %s', e)
    finally:
        await p.stop()


class _LogReporter:
    """Stand-in progress sink when the scraper runs without a session."""

    def report(self, message: str, progress: int = None):
        log.info(message)

    def log(self, message: str):
        log.info(message)


# =============================================================================
#  PIPELINE
# =============================================================================

class MapsScraper:

    def __init__(self, settings, session=None, page_factory=open_page):
        self.settings = settings
        self.session = session or _LogReporter()
        self.page_factory = page_factory

    def report(self, message: str, progress: int = None):
        self.session.report(message, progress)

    async def run(self, query: str, target: int = None) -> list:
        target = target or self.settings.default_target
        async with self.page_factory(self.settings) as page:
            return await self.scrape(page, query, target)

    async def scrape(self, page, query: str, target: int) -> list:
        await self.step_navigate(page, query)
        await self.step_consent(page)
        await self.step_load(page, target)
        links = await self.step_harvest(page, target)
        return await self.step_details(page, links)

    async def _save_debug_screenshot(self, page, label: str):
        if not self.settings.debug_dir:
            return
        path = Path(self.settings.debug_dir) / f'debug-{label}-{int(time.time() * 1000)}.png'
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            await page.screenshot(path=str(path), full_page=True)
            log.info('Debug screenshot saved: %s', path)
        except (PlaywrightError, OSError) as e:
            log.warning('Debug screenshot failed: %s', e)

    # -- STEP 1: search page --
    async def step_navigate(self, page, query: str):
        self.report('Opening Google Maps...', 5)
        url = SEARCH_URL.format(query=quote(query))
        attempts = self.settings.search_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                await page.goto(url, wait_until='domcontentloaded', timeout=self.settings.search_timeout_ms)
                break
            except PlaywrightTimeoutError as e:
                if attempt >= attempts:
                    raise GatewayFatal(f'search page timed out: {e}',
                                       user_message='Google Maps did not load in time') from e
                self.session.log(f'Search page timed out, retrying ({attempt}/{attempts - 1})...')
            except PlaywrightError as e:
                raise GatewayFatal(f'search navigation failed: {e}',
                                   user_message='Google Maps could not be opened') from e
        await asyncio.sleep(self.settings.search_settle)

    # -- STEP 2: consent wall --
    async def step_consent(self, page):
        self.report('Checking for cookie consent...', 10)
        if await dismiss_consent_if_present(page, self.settings):
            self.session.log('Accepted cookie consent')
        if await is_consent_wall(page, self.settings.consent_probe_timeout_ms):
            await self._save_debug_screenshot(page, 'consent')
            raise ConsentUnresolved(f'still on consent wall at {page.url}')

    # -- STEP 3: scroll the feed --
    async def step_load(self, page, target: int):
        self.report('Loading results...', 15)

        def on_round(round_no, max_rounds, count):
            pct = 15 + int(20 * round_no / max(max_rounds, 1))
            self.report(f'Scrolling to load more results... ({round_no}/{max_rounds}, {count} found)', pct)

        try:
            count = await load_results(page, target, self.settings, on_round=on_round)
        except NoResultsFound:
            await self._save_debug_screenshot(page, 'no-results')
            raise
        self.session.log(f'{count} results loaded')

    # -- STEP 4: collect detail links --
    async def step_harvest(self, page, target: int) -> list:
        self.report('Extracting business listings...', 38)
        links = await harvest_links(page, target, self.settings)
        if not links:
            await self._save_debug_screenshot(page, 'no-links')
            raise NoResultsFound('results visible but no detail links found')
        self.report(f'Processing {len(links)} businesses...', 40)
        return links

    # -- STEP 5: visit each business --
    async def step_details(self, page, links: list) -> list:
        records = []
        seen = set()
        fails = 0
        total = len(links)
        for i, link in enumerate(links):
            label = link.name or link.url
            self.report(f'Getting details for {label} ({i + 1}/{total})...', 40 + int(55 * i / total))
            try:
                record = await extract_detail(page, link, self.settings)
            except DetailExtractionFailed as e:
                fails += 1
                self.session.log(f'  Skipped {label[:40]}: {str(e)[:120]}')
                if fails >= self.settings.max_consecutive_failures:
                    self.session.log('  Too many failures, stopping.')
                    if not records:
                        raise GatewayFatal(f'{fails} detail pages failed in a row',
                                           user_message='Business pages could not be loaded') from e
                    break
                continue
            fails = 0

            if record is not None:
                # the same place can be linked under several feed URLs
                key = (record.name.lower(), record.address.lower())
                if key in seen:
                    self.session.log(f'  Duplicate {record.name[:40]}, skipped')
                    await asyncio.sleep(self.settings.item_delay)
                    continue
                seen.add(key)
                if record.website:
                    self.report(f'Checking website for {record.name}...', None)
                found = await discover_emails(page, record.website, self.settings)
                record = record.with_emails(found.emails, found.provenance)
                records.append(record)
                if found.emails:
                    self.session.log(f'  Email: {", ".join(found.emails)} ({record.name[:30]})')

            await asyncio.sleep(self.settings.item_delay)

        self.report(f'Scraping completed! {len(records)} businesses.', 95)
        return records
