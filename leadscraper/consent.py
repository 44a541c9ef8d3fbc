"""
Google cookie consent interstitial ("Before you continue to Google").

Detection is by page text/title and by the consent.google.* host. Dismissal
tries the visible buttons' text first, then a few attribute selectors.
"""

import asyncio
import logging
from urllib.parse import urlparse

from playwright.async_api import Error as PlaywrightError

log = logging.getLogger(__name__)

CONSENT_PHRASES = (
    'before you continue to google',
    'before you continue',
    'voordat je verdergaat naar google',
    'voordat je verdergaat',
    'bevor sie zu google weitergehen',
    'avant d\'accéder à google',
    'antes de ir a google',
    'prima di continuare su google',
)

ACCEPT_VOCABULARY = (
    'accept all',
    'alles accepteren',
    'alle akzeptieren',
    'tout accepter',
    'aceptar todo',
    'accetta tutto',
    'i agree',
    'akkoord',
    'accepteren',
    'accept',
)

CONSENT_CONTROLS = 'button, [role="button"], input[type="submit"]'

CONSENT_FALLBACK_SELECTORS = (
    'button[aria-label*="Accept"]',
    'button[aria-label*="Accepteren"]',
    'input[type="submit"][value="Alles accepteren"]',
    'input[type="submit"][value="Accept all"]',
    'form[action*="consent"] button',
)

MAX_CONTROLS = 40


async def _page_text(page, timeout_ms: int) -> str:
    try:
        title = await page.title()
    except PlaywrightError:
        title = ''
    try:
        body = await page.locator('body').inner_text(timeout=timeout_ms)
    except PlaywrightError:
        body = ''
    return f'{title}\n{body}'.lower()


async def is_consent_wall(page, timeout_ms: int = 2000) -> bool:
    host = urlparse(page.url or '').netloc.lower()
    if host.startswith('consent.'):
        return True
    text = await _page_text(page, timeout_ms)
    return any(phrase in text for phrase in CONSENT_PHRASES)


async def _control_label(control, timeout_ms: int) -> str:
    try:
        text = await control.inner_text(timeout=timeout_ms)
    except PlaywrightError:
        text = ''
    if not text:
        try:
            text = await control.get_attribute('value', timeout=timeout_ms) or ''
        except PlaywrightError:
            text = ''
    return text.strip()


async def _click_by_text(page, timeout_ms: int) -> bool:
    controls = page.locator(CONSENT_CONTROLS)
    try:
        total = min(await controls.count(), MAX_CONTROLS)
    except PlaywrightError:
        return False
    labels = []
    for i in range(total):
        labels.append((i, (await _control_label(controls.nth(i), timeout_ms)).lower()))
    # vocabulary order wins over DOM order: "accept all" beats a bare "accept"
    for word in ACCEPT_VOCABULARY:
        for i, label in labels:
            if label and word in label:
                try:
                    await controls.nth(i).click(timeout=timeout_ms)
                except PlaywrightError as e:
                    log.info('Consent button "%s" not clickable: %s', label, e)
                    continue
                log.info('Clicked consent button "%s"', label)
                return True
    return False


async def _click_by_attribute(page, timeout_ms: int) -> bool:
    for selector in CONSENT_FALLBACK_SELECTORS:
        loc = page.locator(selector)
        try:
            if await loc.count() == 0:
                continue
            await loc.first.click(timeout=timeout_ms)
        except PlaywrightError:
            continue
        log.info('Clicked consent control %s', selector)
        return True
    return False


async def dismiss_consent_if_present(page, settings) -> bool:
    """Accept the consent wall if it is showing. Returns True if a control was
    clicked. Not finding one is logged, not raised: the caller re-checks the
    page after it settles.
    """
    timeout = settings.consent_probe_timeout_ms
    if not await is_consent_wall(page, timeout):
        log.debug('No consent wall')
        return False

    log.info('Consent wall detected at %s', page.url)
    clicked = await _click_by_text(page, timeout) or await _click_by_attribute(page, timeout)
    if clicked:
        await asyncio.sleep(settings.consent_settle)
    else:
        log.warning('Consent wall detected but no accept control found')
    return clicked
