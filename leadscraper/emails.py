"""
Email discovery for a single business.

Tier 1 scans the Maps detail page the scraper is already on. Tier 2 only runs
when tier 1 found nothing and the business lists a website: mailto: links
win outright, then free text on the homepage, then a few contact-style paths.
A dead or slow website just means no emails.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from urllib.parse import unquote, urljoin

from playwright.async_api import Error as PlaywrightError

from leadscraper.errors import WebsiteUnreachable
from leadscraper.models import Provenance

log = logging.getLogger(__name__)

EMAIL_RE = re.compile(r'[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}')

# substrings that mark placeholder or automated senders
EXCLUDED_SUBSTRINGS = ('example.com', 'test@', 'noreply', 'no-reply', 'admin@localhost')

# platform / asset domains that show up in page source but never belong to the business
JUNK_DOMAINS = {'test.com', 'email.com', 'domain.com', 'sentry.io', 'wixpress.com',
                'googleapis.com', 'google.com', 'gstatic.com', 'w3.org', 'schema.org',
                'wordpress.org', 'wordpress.com', 'squarespace.com', 'godaddy.com'}

ASSET_SUFFIXES = ('.png', '.jpg', '.jpeg', '.gif', '.svg', '.webp', '.woff', '.woff2', '.css', '.js')

CONTACT_PATHS = ('/contact', '/contact-us', '/about')

# the inboxes a business actually reads
ROLE_PREFIXES = ('info@', 'contact@', 'hello@', 'reservations@', 'booking@')

MAX_MAILTO_LINKS = 20


@dataclass(frozen=True)
class EmailDiscovery:
    emails: tuple = ()
    provenance: Provenance = Provenance.RESULTS_PAGE


def normalize_email(raw: str) -> str:
    return raw.strip().strip('.,;:<>()[]"\'').lower()


def is_business_email(email: str) -> bool:
    if not email or '@' not in email or len(email) >= 100:
        return False
    if any(bad in email for bad in EXCLUDED_SUBSTRINGS):
        return False
    domain = email.rsplit('@', 1)[-1]
    if domain in JUNK_DOMAINS or any(domain.endswith('.' + d) for d in JUNK_DOMAINS):
        return False
    return not domain.endswith(ASSET_SUFFIXES)


def is_role_address(email: str) -> bool:
    return email.startswith(ROLE_PREFIXES)


def clean_emails(candidates, limit: int = 5) -> list:
    """Normalize, filter and dedupe. Role addresses (info@, contact@, ...)
    come first; otherwise first-seen order is kept."""
    out = []
    for raw in candidates:
        email = normalize_email(raw)
        if email in out or not is_business_email(email):
            continue
        out.append(email)
    out.sort(key=lambda e: not is_role_address(e))
    return out[:limit]


def extract_emails(text: str, limit: int = 5) -> list:
    return clean_emails(EMAIL_RE.findall(text or ''), limit=limit)


def parse_mailto(href: str) -> list:
    if not href or not href.lower().startswith('mailto:'):
        return []
    target = unquote(href[len('mailto:'):].split('?', 1)[0])
    return [part for part in target.split(',') if '@' in part]


# =============================================================================
#  PAGE SCANS
# =============================================================================

async def _body_text(page, settings) -> str:
    try:
        return await page.locator('body').inner_text(timeout=settings.field_timeout_ms)
    except PlaywrightError:
        return ''


async def mailto_emails(page, settings) -> list:
    links = page.locator('a[href^="mailto:"]')
    found = []
    try:
        total = min(await links.count(), MAX_MAILTO_LINKS)
        for i in range(total):
            href = await links.nth(i).get_attribute('href', timeout=settings.field_timeout_ms)
            found.extend(parse_mailto(href))
    except PlaywrightError as e:
        log.debug('mailto scan failed: %s', e)
    return clean_emails(found, limit=settings.max_emails)


async def text_emails(page, settings) -> list:
    try:
        html = await page.content()
    except PlaywrightError:
        html = ''
    return extract_emails(f'{await _body_text(page, settings)}\n{html}', limit=settings.max_emails)


async def _visit(page, url: str, timeout_ms: int, settle: float):
    try:
        await page.goto(url, wait_until='domcontentloaded', timeout=timeout_ms)
    except PlaywrightError as e:
        raise WebsiteUnreachable(f'{url}: {e}') from e
    await asyncio.sleep(settle)


async def scan_page(page, settings) -> list:
    return await mailto_emails(page, settings) or await text_emails(page, settings)


async def scan_website(page, website_url: str, settings) -> list:
    """Tier 2. Raises WebsiteUnreachable if the homepage itself won't load."""
    await _visit(page, website_url, settings.website_timeout_ms, settings.website_settle)

    emails = await mailto_emails(page, settings)
    if emails:
        return emails
    emails = await text_emails(page, settings)
    if emails:
        return emails

    for path in CONTACT_PATHS:
        url = urljoin(website_url, path)
        try:
            await _visit(page, url, settings.contact_timeout_ms, settings.website_settle)
        except WebsiteUnreachable as e:
            log.debug('Contact page skipped: %s', e)
            continue
        emails = await scan_page(page, settings)
        if emails:
            log.info('Found %d emails on %s', len(emails), url)
            return emails
    return []


async def discover_emails(page, website_url: str, settings) -> EmailDiscovery:
    """Find up to `settings.max_emails` emails for the business whose detail
    page is currently loaded, visiting `website_url` only if needed.
    """
    detail_text = await _body_text(page, settings)
    emails = extract_emails(detail_text, limit=settings.max_emails)
    if emails or not website_url:
        return EmailDiscovery(tuple(emails), Provenance.RESULTS_PAGE)

    try:
        emails = await scan_website(page, website_url, settings)
    except WebsiteUnreachable as e:
        log.info('Website unreachable, no emails: %s', e)
        return EmailDiscovery((), Provenance.RESULTS_PAGE)

    if not emails:
        return EmailDiscovery((), Provenance.RESULTS_PAGE)
    return EmailDiscovery(tuple(emails), Provenance.WEBSITE_SCAN)
