import pytest
from conftest import FakePage, View, el, fake_page_factory, run

from leadscraper.consent import CONSENT_CONTROLS
from leadscraper.errors import ConsentUnresolved, GatewayFatal, NoResultsFound
from leadscraper.models import Provenance
from leadscraper.scraper import MapsScraper

SEARCH = 'https://www.google.com/maps/search/*'
PLACE = 'https://www.google.com/maps/place/Bakery+{i}'


class Recorder:
    def __init__(self):
        self.messages = []
        self.lines = []

    def report(self, message, progress=None):
        self.messages.append((message, progress))

    def log(self, message):
        self.lines.append(message)


def results_view(n):
    links = [el('', href=f'/maps/place/Bakery+{i}', aria_label=f'Bakery {i}') for i in range(n)]
    return View(title='bakeries in Utrecht - Google Maps', body='Results',
                elements={'div[role="feed"]': [el()], 'div.Nv2PK': links, 'a.hfpxzc': links},
                extents=[2000])


def place_view(i, address=True, website=None, body=''):
    elements = {'h1.DUwDvf': [el(f'Bakery {i}')]}
    if address:
        elements['button[data-item-id="address"]'] = [el('', aria_label=f'Address: Straat {i}, Utrecht')]
    if website:
        elements['a[data-item-id="authority"]'] = [el('', href=website)]
    return View(title=f'Bakery {i}', body=body or f'Bakery {i}', elements=elements)


def maps_routes(n, overrides=None):
    overrides = overrides or {}
    routes = {SEARCH: results_view(n)}
    for i in range(n):
        routes[PLACE.format(i=i)] = overrides.get(i) or place_view(i)
    return routes


def test_bakeries_scenario_completes_with_partial_results(settings):
    # asked for 20, the feed stalls at 10
    page = FakePage(maps_routes(10))
    scraper = MapsScraper(settings, Recorder())
    records = run(scraper.scrape(page, 'bakeries in Utrecht', 20))
    assert 0 < len(records) <= 10
    assert all(r.name and r.address for r in records)
    assert page.visits[0] == 'https://www.google.com/maps/search/bakeries%20in%20Utrecht'


def test_records_without_address_are_dropped(settings):
    page = FakePage(maps_routes(3, {1: place_view(1, address=False)}))
    records = run(MapsScraper(settings, Recorder()).scrape(page, 'bakeries', 3))
    assert [r.name for r in records] == ['Bakery 0', 'Bakery 2']


def test_unreachable_detail_page_is_skipped(settings):
    page = FakePage(maps_routes(3), unreachable={PLACE.format(i=0)})
    rec = Recorder()
    records = run(MapsScraper(settings, rec).scrape(page, 'bakeries', 3))
    assert [r.name for r in records] == ['Bakery 1', 'Bakery 2']
    assert any('Skipped' in line for line in rec.lines)


def test_consecutive_failures_with_nothing_gathered_fail_the_job(settings):
    settings = settings.with_overrides(max_consecutive_failures=2)
    page = FakePage(maps_routes(5), unreachable={PLACE.format(i=i) for i in range(5)})
    with pytest.raises(GatewayFatal):
        run(MapsScraper(settings, Recorder()).scrape(page, 'bakeries', 5))
    assert len([v for v in page.visits if '/maps/place/' in v]) == 2


def test_consecutive_failures_keep_what_was_gathered(settings):
    settings = settings.with_overrides(max_consecutive_failures=2)
    page = FakePage(maps_routes(5), unreachable={PLACE.format(i=i) for i in range(1, 5)})
    records = run(MapsScraper(settings, Recorder()).scrape(page, 'bakeries', 5))
    assert [r.name for r in records] == ['Bakery 0']
    assert len([v for v in page.visits if '/maps/place/' in v]) == 3


class CrashingPage(FakePage):
    """Browser dies as soon as the first detail page is requested."""

    async def goto(self, url, wait_until=None, timeout=None):
        if '/maps/place/' in url:
            self.closed = True
        await super().goto(url, wait_until, timeout)


def test_browser_crash_in_detail_loop_is_fatal(settings):
    page = CrashingPage(maps_routes(5))
    with pytest.raises(GatewayFatal):
        run(MapsScraper(settings, Recorder()).scrape(page, 'bakeries', 5))
    assert len([v for v in page.visits if '/maps/place/' in v]) == 1


def test_same_business_under_two_links_is_kept_once(settings):
    routes = maps_routes(3, {1: place_view(0)})
    records = run(MapsScraper(settings, Recorder()).scrape(FakePage(routes), 'bakeries', 3))
    assert [r.name for r in records] == ['Bakery 0', 'Bakery 2']


def test_website_emails_are_attached(settings):
    site = 'https://bakery0.nl/'
    routes = maps_routes(1, {0: place_view(0, website=f'https://www.google.com/url?q={site}&sa=U')})
    routes[site] = View(body='Bestellen: bestel@bakery0.nl')
    page = FakePage(routes)
    records = run(MapsScraper(settings, Recorder()).scrape(page, 'bakeries', 1))
    assert records[0].website == site
    assert records[0].emails == ('bestel@bakery0.nl',)
    assert records[0].source is Provenance.WEBSITE_SCAN


def test_consent_wall_dismissed_then_results_load(settings):
    results = results_view(2)

    def accept(p):
        p.show(results, 'https://www.google.com/maps/search/bakeries')

    consent = View(title='Before you continue to Google', body='Before you continue to Google',
                   elements={CONSENT_CONTROLS: [el('Reject all'), el('Accept all', on_click=accept)]})
    routes = maps_routes(2)
    routes[SEARCH] = consent
    page = FakePage(routes)
    records = run(MapsScraper(settings, Recorder()).scrape(page, 'bakeries', 2))
    assert page.clicks == ['Accept all']
    assert len(records) == 2


def test_consent_wall_that_stays_raises(settings, tmp_path):
    settings = settings.with_overrides(debug_dir=str(tmp_path))
    consent = View(title='Before you continue to Google', body='Before you continue to Google',
                   elements={CONSENT_CONTROLS: [el('More options')]})
    page = FakePage({SEARCH: consent})
    with pytest.raises(ConsentUnresolved):
        run(MapsScraper(settings, Recorder()).scrape(page, 'bakeries', 5))
    assert len(page.screenshots) == 1


def test_empty_search_raises_no_results(settings):
    page = FakePage({SEARCH: View(title='Google Maps', elements={'div[role="feed"]': [el()]})})
    with pytest.raises(NoResultsFound):
        run(MapsScraper(settings, Recorder()).scrape(page, 'nothing here', 5))


def test_search_timeout_is_retried_then_fatal(settings):
    page = FakePage(unreachable={'https://www.google.com/maps/search/bakeries'})
    with pytest.raises(GatewayFatal) as exc:
        run(MapsScraper(settings, Recorder()).scrape(page, 'bakeries', 5))
    assert exc.value.user_message == 'Google Maps did not load in time'
    assert len(page.visits) == settings.search_retries + 1


def test_run_uses_its_own_page(settings):
    page = FakePage(maps_routes(2))
    scraper = MapsScraper(settings, Recorder(), page_factory=fake_page_factory(page))
    assert len(run(scraper.run('bakeries', 2))) == 2


def test_progress_is_reported_in_order(settings):
    page = FakePage(maps_routes(2))
    rec = Recorder()
    run(MapsScraper(settings, rec).scrape(page, 'bakeries', 2))
    progress = [p for _, p in rec.messages if p is not None]
    assert progress == sorted(progress)
    assert rec.messages[0][0] == 'Opening Google Maps...'
