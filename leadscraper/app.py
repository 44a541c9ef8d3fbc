#!/usr/bin/env python3
"""
Lead Scraper - HTTP API
Run this to start the local API at http://localhost:5500

Callers submit a search, get back a session id, and poll its status until it
is completed or failed. Each search costs credits up front; failed searches
are refunded. Sessions are kept in memory for one hour.

The caller is identified by the X-User-Id header; login lives elsewhere.

Usage:
    python -m leadscraper.app
"""

import logging

from flask import Flask, Response, jsonify, request

from leadscraper.config import get_settings
from leadscraper.credits import HttpLedger, InMemoryLedger
from leadscraper.errors import InsufficientCredits, LedgerError
from leadscraper.export import records_to_csv, records_to_json
from leadscraper.jobs import JobManager
from leadscraper.logging_config import setup_logging
from leadscraper.models import SessionStatus
from leadscraper.sessions import SessionStore

log = logging.getLogger(__name__)

USER_HEADER = 'X-User-Id'


def build_ledger(settings):
    if settings.ledger_url:
        return HttpLedger(settings.ledger_url)
    return InMemoryLedger(starting_credits=settings.starting_credits)


def build_manager(settings) -> JobManager:
    store = SessionStore(retention_seconds=settings.retention_seconds)
    return JobManager(store, build_ledger(settings), settings)


def _search_query(data: dict) -> str:
    query = (data.get('searchQuery') or '').strip()
    if query:
        return query
    business_type = (data.get('businessType') or '').strip()
    location = (data.get('location') or '').strip()
    if business_type and location:
        return f'{business_type} in {location}'
    return business_type


def create_app(manager: JobManager = None, settings=None) -> Flask:
    settings = settings or get_settings()
    manager = manager or build_manager(settings)

    app = Flask(__name__)
    app.config['JOB_MANAGER'] = manager

    def current_user():
        return (request.headers.get(USER_HEADER) or '').strip()

    # =========================================================================
    #  Routes
    # =========================================================================

    @app.route('/api/scrape', methods=['POST'])
    def api_scrape():
        """Start a new scrape job."""
        user_id = current_user()
        if not user_id:
            return jsonify({'error': 'Authentication required'}), 401

        data = request.get_json(silent=True) or {}
        query = _search_query(data)
        if not query:
            return jsonify({'error': 'Search query is required'}), 400

        try:
            submission = manager.submit(user_id, query, data.get('maxResults'))
        except InsufficientCredits as e:
            return jsonify({
                'error': 'Insufficient credits',
                'required': e.required,
                'available': e.available,
            }), 402
        except LedgerError as e:
            log.error('Ledger unavailable: %s', e)
            return jsonify({'error': 'Credit service unavailable'}), 503
        except (TypeError, ValueError):
            return jsonify({'error': 'Invalid request'}), 400

        return jsonify({
            'sessionId': submission.session_id,
            'status': 'Scraping started',
            'creditsUsed': submission.credits_used,
            'creditsRemaining': submission.credits_remaining,
        })

    @app.route('/api/status/<session_id>')
    def api_status(session_id):
        """Return session state for polling."""
        session = manager.store.get(session_id)
        if not session:
            return jsonify({'error': 'Session not found'}), 404
        return jsonify(session.snapshot())

    @app.route('/api/export/<session_id>/<fmt>')
    def api_export(session_id, fmt):
        """Download a completed session's results as CSV or JSON."""
        session = manager.store.get(session_id)
        if not session or session.status is not SessionStatus.COMPLETED:
            return jsonify({'error': 'No results found'}), 404
        if fmt == 'csv':
            body, mimetype = records_to_csv(session.results), 'text/csv'
        elif fmt == 'json':
            body, mimetype = records_to_json(session.results), 'application/json'
        else:
            return jsonify({'error': f'Unknown export format: {fmt}'}), 400
        return Response(body, mimetype=mimetype, headers={
            'Content-Disposition': f'attachment; filename="businesses.{fmt}"',
        })

    @app.route('/api/credits')
    def api_credits():
        user_id = current_user()
        if not user_id:
            return jsonify({'error': 'Authentication required'}), 401
        try:
            return jsonify({'credits': manager.ledger.balance(user_id)})
        except LedgerError as e:
            log.error('Ledger unavailable: %s', e)
            return jsonify({'error': 'Credit service unavailable'}), 503

    @app.route('/api/user/history')
    def api_history():
        user_id = current_user()
        if not user_id:
            return jsonify({'error': 'Authentication required'}), 401
        try:
            history = manager.ledger.usage_history(user_id, 20)
        except LedgerError as e:
            log.error('Ledger unavailable: %s', e)
            return jsonify({'error': 'Credit service unavailable'}), 503
        return jsonify({'history': [r.to_dict() for r in history]})

    return app


# =========================================================================
#  Main
# =========================================================================

def main():
    settings = get_settings()
    setup_logging(settings.log_debug)
    manager = build_manager(settings)
    manager.start()
    app = create_app(manager, settings)

    print("\n" + "=" * 50)
    print("  Lead Scraper API")
    print(f"  http://{settings.host}:{settings.port}")
    print(f"  {settings.job_cost} credits per search")
    print("=" * 50 + "\n")
    app.run(debug=False, host=settings.host, port=settings.port, threaded=True)


if __name__ == '__main__':
    main()
