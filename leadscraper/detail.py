import asyncio
import logging
import re
from urllib.parse import parse_qs, unquote, urlparse

from playwright.async_api import Error as PlaywrightError

from leadscraper.errors import DetailExtractionFailed, GatewayFatal
from leadscraper.models import BusinessRecord
from leadscraper.resolver import DETAIL_ADDRESS, DETAIL_NAME, DETAIL_PHONE, DETAIL_WEBSITE, resolve

log = logging.getLogger(__name__)

CLOSED_TARGET_MARKERS = ('has been closed', 'Target closed', 'Browser closed', 'Connection closed')

# Maps prefixes aria-labels with the field name ("Address: Oudegracht 1, Utrecht")
LABEL_PREFIX_RE = re.compile(r'^\s*[^:\n]{1,24}:\s*')
# icon glyphs from the Material icon font end up in inner_text
PRIVATE_USE_RE = re.compile('[\ue000-\uf8ff]')


def clean_text(text: str) -> str:
    if not text:
        return ''
    text = PRIVATE_USE_RE.sub('', text)
    return ' '.join(text.split())


def strip_label(text: str) -> str:
    return LABEL_PREFIX_RE.sub('', text, count=1).strip()


def _is_google_host(host: str) -> bool:
    host = host.lower()
    if host.startswith('google.') or '.google.' in host:
        return True
    return host.endswith(('gstatic.com', 'googleusercontent.com'))


def unwrap_redirect(href: str) -> str:
    """Google wraps outbound links as /url?q=<target>&...; return the target."""
    if not href:
        return ''
    parsed = urlparse(href)
    if parsed.path == '/url' and (not parsed.netloc or _is_google_host(parsed.netloc)):
        params = parse_qs(parsed.query)
        for key in ('q', 'url'):
            if params.get(key):
                return unquote(params[key][0])
    return href


def normalize_website(href: str) -> str:
    """Unwrap, add a scheme, and drop links that point back into Google."""
    url = unwrap_redirect((href or '').strip())
    if not url or url.startswith(('tel:', 'mailto:', 'javascript:', '#')):
        return ''
    if url.startswith('//'):
        url = 'https:' + url
    elif not re.match(r'^https?://', url, re.I):
        if url.startswith('/'):
            return ''
        url = 'https://' + url
    if _is_google_host(urlparse(url).netloc):
        return ''
    return url


async def _first(page, chain, settings):
    found = await resolve(page, chain, timeout_ms=settings.selector_timeout_ms)
    if not found:
        return None
    return page.locator(found.selector).first


async def _attr(loc, name, settings):
    try:
        return await loc.get_attribute(name, timeout=settings.field_timeout_ms) or ''
    except PlaywrightError:
        return ''


async def _text(loc, settings):
    try:
        return clean_text(await loc.inner_text(timeout=settings.field_timeout_ms))
    except PlaywrightError:
        return ''


async def read_name(page, settings) -> str:
    loc = await _first(page, DETAIL_NAME, settings)
    return await _text(loc, settings) if loc else ''


async def read_address(page, settings) -> str:
    loc = await _first(page, DETAIL_ADDRESS, settings)
    if not loc:
        return ''
    label = clean_text(await _attr(loc, 'aria-label', settings))
    if label:
        return strip_label(label)
    return await _text(loc, settings)


async def read_phone(page, settings) -> str:
    loc = await _first(page, DETAIL_PHONE, settings)
    if not loc:
        return ''
    label = clean_text(await _attr(loc, 'aria-label', settings))
    if label:
        return strip_label(label)
    href = await _attr(loc, 'href', settings)
    if href.startswith('tel:'):
        return unquote(href[4:]).strip()
    item_id = await _attr(loc, 'data-item-id', settings)
    if item_id.startswith('phone:tel:'):
        return item_id[len('phone:tel:'):]
    return await _text(loc, settings)


async def read_website(page, settings) -> str:
    loc = await _first(page, DETAIL_WEBSITE, settings)
    if not loc:
        return ''
    href = await _attr(loc, 'href', settings) or await _attr(loc, 'data-url', settings)
    return normalize_website(href)


def browser_gone(page, error: Exception = None) -> bool:
    """True when the page, its context or the browser itself has been closed."""
    if page.is_closed():
        return True
    return error is not None and any(m in str(error) for m in CLOSED_TARGET_MARKERS)


def _item_error(page, link, e):
    if browser_gone(page, e):
        return GatewayFatal(f'browser closed while reading {link.url}: {e}')
    return DetailExtractionFailed(f'{link.url}: {e}')


async def extract_detail(page, link, settings):
    """Visit a result's detail page and read its fields.

    Returns None when name or address is missing; such records are dropped,
    not reported. Raises DetailExtractionFailed if the page cannot be loaded,
    GatewayFatal if the browser underneath it is gone.
    """
    try:
        await page.goto(link.url, wait_until='domcontentloaded', timeout=settings.detail_timeout_ms)
    except PlaywrightError as e:
        raise _item_error(page, link, e) from e
    await asyncio.sleep(settings.detail_settle)

    try:
        name = await read_name(page, settings) or clean_text(link.name)
        address = await read_address(page, settings)
        phone = await read_phone(page, settings)
        website = await read_website(page, settings)
    except PlaywrightError as e:
        raise _item_error(page, link, e) from e

    record = BusinessRecord(name=name, address=address, phone=phone,
                            website=website, maps_url=link.url)
    if not record.is_valid:
        log.info('Dropping %s: missing %s', link.url, 'name' if not name else 'address')
        return None
    return record
