"""Tests for Flask CLI commands."""
from jewelry_pricing import create_app
from jewelry_pricing.db import get_db
from tests.conftest import make_config

RATES_CSV = """recorded_at,symbol,rate_per_gram,source
2026-01-10T10:00:00.000000Z,AU,6650.00,seed
2026-01-10T10:00:00.000000Z,AG,82.50,seed
"""

RULES_CSV = """category_id,purity_id,charge_type,rate_value,minimum_charge,maximum_charge,effective_from,is_active
bangles,,percentage,9,500,,2025-01-01,true
,14K,per_gram,350,,,2025-01-01,
"""


def count_rows(app, table):
    with app.app_context():
        return get_db().execute(f'SELECT COUNT(*) FROM {table}').fetchone()[0]


def test_init_db(app):
    result = app.test_cli_runner().invoke(args=['init-db'])
    assert result.exit_code == 0
    assert 'Initialized database' in result.output


def test_import_rates_csv(app, tmp_path):
    path = tmp_path / 'rates.csv'
    path.write_text(RATES_CSV)

    result = app.test_cli_runner().invoke(args=['import-rates-csv', str(path)])

    assert result.exit_code == 0
    assert 'Imported 2 metal rate records' in result.output
    assert count_rows(app, 'metal_rates') == 2


def test_import_rates_csv_normalizes_timestamps(app, tmp_path):
    path = tmp_path / 'rates.csv'
    path.write_text('recorded_at,symbol,rate_per_gram,source\n2026-01-10T15:30:00+05:30,AU,6650,seed\n')

    result = app.test_cli_runner().invoke(args=['import-rates-csv', str(path)])

    assert result.exit_code == 0
    with app.app_context():
        row = get_db().execute('SELECT recorded_at FROM metal_rates').fetchone()
    assert row['recorded_at'] == '2026-01-10T10:00:00.000000Z'


def test_import_of_old_history_keeps_current_rate(db_app, tmp_path):
    path = tmp_path / 'old.csv'
    path.write_text('recorded_at,symbol,rate_per_gram,source\n2020-01-01T00:00:00Z,AU,4000.00,seed\n')

    result = db_app.test_cli_runner().invoke(args=['import-rates-csv', str(path)])

    assert result.exit_code == 0
    data = db_app.test_client().get('/api/v1/gold-rates/current').get_json()
    assert data['rates']['AU'] == 6800.0
    assert data['details']['AU']['source'] == 'goldapi'


def test_import_rates_csv_rejects_bad_timestamp(app, tmp_path):
    path = tmp_path / 'rates.csv'
    path.write_text('recorded_at,symbol,rate_per_gram,source\nyesterday,AU,6650,seed\n')

    result = app.test_cli_runner().invoke(args=['import-rates-csv', str(path)])

    assert result.exit_code == 1
    assert count_rows(app, 'metal_rates') == 0


def test_import_rates_csv_rejects_bad_row(app, tmp_path):
    path = tmp_path / 'rates.csv'
    path.write_text(RATES_CSV + '2026-01-10T10:00:00.000000Z,XX,abc,seed\n')

    result = app.test_cli_runner().invoke(args=['import-rates-csv', str(path)])

    assert result.exit_code == 1
    assert 'rates.csv:4' in result.output
    assert count_rows(app, 'metal_rates') == 0


def test_import_rules_csv(app, tmp_path):
    path = tmp_path / 'rules.csv'
    path.write_text(RULES_CSV)

    result = app.test_cli_runner().invoke(args=['import-rules-csv', str(path)])

    assert result.exit_code == 0
    assert 'Imported 2 making charge rules' in result.output
    with app.app_context():
        rows = get_db().execute('SELECT category_id, purity_id, maximum_charge FROM making_charge_rules').fetchall()
    assert [(r['category_id'], r['purity_id'], r['maximum_charge']) for r in rows] == [
        ('bangles', None, None),
        (None, '14K', None),
    ]


def test_import_rules_csv_rejects_invalid_rule(app, tmp_path):
    path = tmp_path / 'rules.csv'
    path.write_text('charge_type,rate_value\nweekly,5\n')

    result = app.test_cli_runner().invoke(args=['import-rules-csv', str(path)])

    assert result.exit_code == 1
    assert 'rules.csv:2' in result.output


def test_seed_all_without_seed_dir(app):
    result = app.test_cli_runner().invoke(args=['seed-all'])
    assert result.exit_code == 0
    assert 'Seed directory not found' in result.output


def test_seed_all(app, tmp_path):
    seed_dir = tmp_path / 'seed'
    seed_dir.mkdir()
    (seed_dir / 'metal_rates.csv').write_text(RATES_CSV)
    (seed_dir / 'making_charge_rules.csv').write_text(RULES_CSV)

    result = app.test_cli_runner().invoke(args=['seed-all'])

    assert result.exit_code == 0
    assert 'Seed complete!' in result.output
    assert count_rows(app, 'metal_rates') == 2
    assert count_rows(app, 'making_charge_rules') == 2
    with app.app_context():
        row = get_db().execute("SELECT value FROM meta WHERE key = 'last_seed'").fetchone()
    assert row['value'] == 'completed'


def test_update_rates_with_static_fallback(app):
    result = app.test_cli_runner().invoke(args=['update-rates'])
    assert result.exit_code == 0
    assert 'Rates updated from static_fallback' in result.output
    assert 'AU: 6500.00 INR/g' in result.output


def test_update_rates_all_sources_down(tmp_path):
    app = create_app({
        'TESTING': True,
        'DATA_DIR': str(tmp_path),
        'PRICING_CONFIG': make_config(allow_static_fallback=False),
    })
    result = app.test_cli_runner().invoke(args=['update-rates'])
    assert result.exit_code == 1
    assert 'All rate sources unavailable' in result.output
