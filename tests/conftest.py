"""Shared fixtures.

FakePage implements the slice of the playwright Page/Locator API the pipeline
touches. Pages are described as routes: url -> View, where a View lists the
elements each selector matches. A route key ending in '*' matches by prefix.
"""
import asyncio
import os
from contextlib import asynccontextmanager

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from leadscraper.config import ScrapeSettings

os.environ.setdefault('LEADSCRAPER_DISABLE_FILE_LOGS', '1')


def el(text='', on_click=None, **attrs):
    """Element stub. Attribute names use underscores for dashes (aria_label)."""
    return {
        'text': text,
        'on_click': on_click,
        'attrs': {k.replace('_', '-'): v for k, v in attrs.items()},
    }


class View:
    def __init__(self, title='', body='', html=None, elements=None, extents=None, on_scroll=None):
        self.title = title
        self.body = body
        self.html = html
        self.elements = elements or {}
        self.extents = list(extents or [0])
        self.on_scroll = on_scroll


class FakeLocator:
    def __init__(self, page, selector, index=None):
        self.page = page
        self.selector = selector
        self.index = index

    def _all(self):
        if self.selector == 'body':
            return [el(self.page.view.body)]
        return list(self.page.view.elements.get(self.selector, []))

    def _one(self):
        items = self._all()
        i = self.index or 0
        if i >= len(items):
            raise PlaywrightTimeoutError(f'Timeout waiting for locator({self.selector!r})')
        return items[i]

    async def count(self):
        return len(self._all())

    @property
    def first(self):
        return FakeLocator(self.page, self.selector, 0)

    def nth(self, i):
        return FakeLocator(self.page, self.selector, i)

    async def get_attribute(self, name, timeout=None):
        return self._one()['attrs'].get(name)

    async def inner_text(self, timeout=None):
        return self._one()['text']

    async def click(self, timeout=None):
        item = self._one()
        self.page.clicks.append(item['text'] or self.selector)
        if item['on_click']:
            item['on_click'](self.page)


class FakePage:
    def __init__(self, routes=None, unreachable=()):
        self.routes = dict(routes or {})
        self.unreachable = set(unreachable)
        self.view = View()
        self.url = 'about:blank'
        self.visits = []
        self.clicks = []
        self.scrolls = 0
        self.screenshots = []
        self.closed = False

    def is_closed(self):
        return self.closed

    def _route(self, url):
        if url in self.routes:
            return self.routes[url]
        for key, view in self.routes.items():
            if key.endswith('*') and url.startswith(key[:-1]):
                return view
        return None

    def show(self, view, url=None):
        self.view = view
        if url:
            self.url = url

    async def goto(self, url, wait_until=None, timeout=None):
        self.visits.append(url)
        if self.closed:
            raise PlaywrightError('Target page, context or browser has been closed')
        if url in self.unreachable:
            raise PlaywrightTimeoutError(f'Timeout {timeout}ms exceeded navigating to {url}')
        view = self._route(url)
        if view is None:
            raise PlaywrightError(f'net::ERR_NAME_NOT_RESOLVED at {url}')
        self.url = url
        self.view = view

    async def title(self):
        return self.view.title

    async def content(self):
        return self.view.html if self.view.html is not None else f'<html><body>{self.view.body}</body></html>'

    def locator(self, selector):
        return FakeLocator(self, selector)

    async def wait_for_selector(self, selector, state=None, timeout=None):
        if not await self.locator(selector).count():
            raise PlaywrightTimeoutError(f'Timeout {timeout}ms exceeded waiting for {selector}')

    async def evaluate(self, script, arg=None):
        view = self.view
        if 'scrollTo' in script:
            self.scrolls += 1
            if view.on_scroll:
                view.on_scroll(self)
            return view.extents[0]
        if len(view.extents) > 1:
            return view.extents.pop(0)
        return view.extents[0]

    async def screenshot(self, path=None, full_page=False):
        self.screenshots.append(path)


def fake_page_factory(page):
    @asynccontextmanager
    async def factory(settings):
        yield page
    return factory


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def settings():
    return ScrapeSettings(
        search_settle=0, consent_settle=0, scroll_settle=0, detail_settle=0,
        website_settle=0, item_delay=0, selector_timeout_ms=10, field_timeout_ms=10,
        sweep_interval=3600,
    )
