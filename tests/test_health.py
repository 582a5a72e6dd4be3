"""Tests for health check endpoint."""
import sqlite3
from unittest.mock import patch


def test_healthz_returns_200(client):
    """GET /healthz should return status 200."""
    response = client.get('/healthz')
    assert response.status_code == 200


def test_healthz_reports_components(client):
    """GET /healthz should describe database, cache and last rate update."""
    data = client.get('/healthz').get_json()
    assert data == {
        'status': 'ok',
        'database': 'ok',
        'cache': {'backend': 'file', 'reachable': True},
        'last_rate_update': None,
        'background_sync': False,
    }


def test_healthz_last_rate_update(db_client):
    data = db_client.get('/healthz').get_json()
    assert data['last_rate_update'] == '2026-01-15T09:30:00.000000Z'


def test_healthz_degraded_when_cache_down(app, client):
    with patch.object(app.extensions['rate_cache'], 'ping', return_value=False):
        response = client.get('/healthz')
    assert response.status_code == 200
    assert response.get_json()['status'] == 'degraded'


def test_healthz_503_when_database_down(client):
    with patch('jewelry_pricing.routes.health.get_db', side_effect=sqlite3.OperationalError('unable to open')):
        response = client.get('/healthz')
    assert response.status_code == 503
    data = response.get_json()
    assert data['status'] == 'error'
    assert data['database'] == 'unreachable'
