import pytest
from conftest import FakePage, View, el, run

from leadscraper.detail import clean_text, extract_detail, normalize_website, unwrap_redirect
from leadscraper.errors import DetailExtractionFailed
from leadscraper.models import ResultLink

PLACE_URL = 'https://www.google.com/maps/place/Bakker+Bart'


def detail_view(name='Bakker Bart', address='Address: Oudegracht 12, 3511 AP Utrecht',
                phone='Phone: 030 231 4455', website='https://www.google.com/url?q=https://bakkerbart.nl/&sa=U'):
    elements = {}
    if name is not None:
        elements['h1.DUwDvf'] = [el(name)]
    if address is not None:
        elements['button[data-item-id="address"]'] = [el('Oudegracht 12', aria_label=address)]
    if phone is not None:
        elements['button[data-item-id^="phone:tel:"]'] = [el('030 231 4455', aria_label=phone)]
    if website is not None:
        elements['a[data-item-id="authority"]'] = [el('bakkerbart.nl', href=website)]
    return View(title='Bakker Bart - Google Maps', body='Bakker Bart', elements=elements)


def test_unwrap_google_redirect():
    assert unwrap_redirect('https://www.google.com/url?q=https%3A%2F%2Fshop.nl%2F&sa=U') == 'https://shop.nl/'
    assert unwrap_redirect('/url?q=http://shop.nl/&opi=1') == 'http://shop.nl/'
    assert unwrap_redirect('https://shop.nl/url?q=x') == 'https://shop.nl/url?q=x'


def test_normalize_website_adds_scheme_and_drops_google_links():
    assert normalize_website('bakkerbart.nl') == 'https://bakkerbart.nl'
    assert normalize_website('//bakkerbart.nl/') == 'https://bakkerbart.nl/'
    assert normalize_website('https://maps.google.com/place/x') == ''
    assert normalize_website('/maps/place/x') == ''
    assert normalize_website('') == ''


def test_clean_text_removes_icon_glyphs():
    assert clean_text('\ue0c8  Oudegracht 12,\n Utrecht ') == 'Oudegracht 12, Utrecht'


def test_extract_detail_reads_every_field(settings):
    page = FakePage({PLACE_URL: detail_view()})
    record = run(extract_detail(page, ResultLink(PLACE_URL, 'Bakker Bart'), settings))
    assert record.name == 'Bakker Bart'
    assert record.address == 'Oudegracht 12, 3511 AP Utrecht'
    assert record.phone == '030 231 4455'
    assert record.website == 'https://bakkerbart.nl/'
    assert record.maps_url == PLACE_URL
    assert record.emails == ()


def test_fallback_selectors_are_used(settings):
    view = View(elements={
        'h1': [el('Bakker Bart')],
        'button[aria-label^="Address"]': [el('', aria_label='Address: Oudegracht 12')],
        'a[href^="tel:"]': [el('', href='tel:+31302314455')],
        'a[aria-label^="Website"]': [el('', href='bakkerbart.nl')],
    })
    page = FakePage({PLACE_URL: view})
    record = run(extract_detail(page, ResultLink(PLACE_URL), settings))
    assert record.address == 'Oudegracht 12'
    assert record.phone == '+31302314455'
    assert record.website == 'https://bakkerbart.nl'


def test_missing_address_drops_record(settings):
    page = FakePage({PLACE_URL: detail_view(address=None)})
    assert run(extract_detail(page, ResultLink(PLACE_URL, 'Bakker Bart'), settings)) is None


def test_missing_name_drops_record(settings):
    page = FakePage({PLACE_URL: detail_view(name=None)})
    assert run(extract_detail(page, ResultLink(PLACE_URL, ''), settings)) is None


def test_harvested_name_fills_in_for_missing_heading(settings):
    page = FakePage({PLACE_URL: detail_view(name=None)})
    record = run(extract_detail(page, ResultLink(PLACE_URL, 'Bakker Bart'), settings))
    assert record.name == 'Bakker Bart'


def test_navigation_failure_raises_item_error(settings):
    page = FakePage(unreachable={PLACE_URL})
    with pytest.raises(DetailExtractionFailed):
        run(extract_detail(page, ResultLink(PLACE_URL), settings))
