"""Google Maps lead scraper with credit-governed scrape jobs."""

__version__ = '0.1.0'
