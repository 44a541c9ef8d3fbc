import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path


def log_dir(environ=None) -> Path:
    """LEADSCRAPER_LOG_DIR, else logs/ under the working directory."""
    environ = os.environ if environ is None else environ
    return Path(environ.get('LEADSCRAPER_LOG_DIR') or Path.cwd() / 'logs')


_FILE_FORMAT = '%(asctime)s %(levelname)s %(name)s %(message)s'

DISABLE_FILE_LOGS = bool(os.getenv('LEADSCRAPER_DISABLE_FILE_LOGS'))


def setup_logging(debug: bool = False):
    root = logging.getLogger()
    if root.handlers:
        # already configured
        return
    root.setLevel(logging.DEBUG if debug else logging.INFO)

    ch = logging.StreamHandler()
    ch.setFormatter(logging.Formatter('%(levelname)s %(name)s %(message)s'))
    ch.setLevel(logging.DEBUG if debug else logging.INFO)
    root.addHandler(ch)

    if not DISABLE_FILE_LOGS:
        directory = log_dir()
        directory.mkdir(parents=True, exist_ok=True)
        fh = RotatingFileHandler(directory / 'leadscraper.log', maxBytes=1_000_000,
                                 backupCount=5, encoding='utf-8')
        fh.setFormatter(logging.Formatter(_FILE_FORMAT))
        root.addHandler(fh)

    logging.getLogger('playwright').setLevel(logging.WARNING)
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('werkzeug').setLevel(logging.WARNING)
