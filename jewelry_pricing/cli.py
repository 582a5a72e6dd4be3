"""Flask CLI commands for database management, rate refresh and data import."""
import csv
import os
import click
from flask import current_app
from flask.cli import with_appcontext

from jewelry_pricing.data.metals import is_valid_metal
from jewelry_pricing.db import get_db, init_db, get_db_path
from jewelry_pricing.services.exceptions import PricingError
from jewelry_pricing.services.time_provider import parse_iso, to_iso


@click.command('init-db')
@with_appcontext
def init_db_command():
    """Initialize the SQLite database with schema."""
    init_db()
    click.echo(f'Initialized database at {get_db_path()}')


@click.command('update-rates')
@with_appcontext
def update_rates_command():
    """Fetch current rates from the configured providers now."""
    from jewelry_pricing.services.gold_rate import get_gold_rate_service

    try:
        result = get_gold_rate_service().update_rates(trigger='cli')
    except PricingError as e:
        raise click.ClickException(e.message)

    click.echo(f'Rates updated from {result.provider} at {result.recorded_at}')
    for symbol, rate in result.rates.items():
        click.echo(f'  {symbol}: {rate.rate_per_gram} INR/g')


@click.command('import-rates-csv')
@click.argument('csv_path', type=click.Path(exists=True))
@with_appcontext
def import_rates_csv_command(csv_path):
    """Import historical metal rates from CSV file.

    CSV format: recorded_at,symbol,rate_per_gram,source
    Example: 2026-01-15T10:30:00.000000Z,AU,6800.00,seed
    """
    count = import_rates_csv(csv_path)
    click.echo(f'Imported {count} metal rate records from {csv_path}')


@click.command('import-rules-csv')
@click.argument('csv_path', type=click.Path(exists=True))
@with_appcontext
def import_rules_csv_command(csv_path):
    """Import making charge rules from CSV file.

    CSV columns: category_id,purity_id,charge_type,rate_value,minimum_charge,
    maximum_charge,weight_range_min,weight_range_max,effective_from,effective_to
    Empty cells are treated as unset.
    """
    count = import_rules_csv(csv_path)
    click.echo(f'Imported {count} making charge rules from {csv_path}')


@click.command('seed-all')
@with_appcontext
def seed_all_command():
    """Initialize DB and import all seed CSVs from data/seed/."""
    init_db()
    click.echo(f'Initialized database at {get_db_path()}')

    data_dir = current_app.config.get('DATA_DIR', os.path.join(os.path.dirname(__file__), '..', 'data'))
    seed_dir = os.path.join(data_dir, 'seed')

    if not os.path.exists(seed_dir):
        click.echo(f'Seed directory not found: {seed_dir}')
        return

    rates_path = os.path.join(seed_dir, 'metal_rates.csv')
    if os.path.exists(rates_path):
        count = import_rates_csv(rates_path)
        click.echo(f'Imported {count} metal rate records')
    else:
        click.echo('No metal_rates.csv found in seed directory')

    rules_path = os.path.join(seed_dir, 'making_charge_rules.csv')
    if os.path.exists(rules_path):
        count = import_rules_csv(rules_path)
        click.echo(f'Imported {count} making charge rules')
    else:
        click.echo('No making_charge_rules.csv found in seed directory')

    # Update meta
    db = get_db()
    db.execute(
        "INSERT OR REPLACE INTO meta (key, value, updated_at) VALUES (?, ?, datetime('now'))",
        ('last_seed', 'completed')
    )
    db.commit()
    click.echo('Seed complete!')


def import_rates_csv(csv_path: str) -> int:
    """Import metal rates from CSV file. Returns count of records imported."""
    db = get_db()
    count = 0

    with open(csv_path, 'r', newline='', encoding='utf-8') as f:
        reader = csv.DictReader(f)
        for line, row in enumerate(reader, start=2):
            symbol = (row.get('symbol') or '').strip().upper()
            try:
                rate = float(row.get('rate_per_gram') or 'nan')
            except ValueError:
                rate = float('nan')
            try:
                # Stored in to_iso() form so string comparisons in history queries hold
                recorded_at = to_iso(parse_iso((row.get('recorded_at') or '').strip()))
            except ValueError:
                recorded_at = None
            if not is_valid_metal(symbol) or not rate > 0 or recorded_at is None:
                raise click.ClickException(f'{csv_path}:{line}: invalid rate row {row}')
            db.execute('''
                INSERT INTO metal_rates (symbol, rate_per_gram, source, recorded_at)
                VALUES (?, ?, ?, ?)
            ''', (symbol, rate, row.get('source') or 'csv', recorded_at))
            count += 1

    db.commit()
    return count


def import_rules_csv(csv_path: str) -> int:
    """Import making charge rules through the validating repository."""
    from jewelry_pricing.services.making_charges import get_making_charge_repository

    repo = get_making_charge_repository()
    count = 0

    with open(csv_path, 'r', newline='', encoding='utf-8') as f:
        reader = csv.DictReader(f)
        for line, row in enumerate(reader, start=2):
            data = {key: value.strip() for key, value in row.items() if value and value.strip()}
            if 'is_active' in data:
                data['is_active'] = data['is_active'].lower() in ('1', 'true', 'yes')
            try:
                repo.create_rule(data)
            except PricingError as e:
                raise click.ClickException(f'{csv_path}:{line}: {e.message}')
            count += 1

    return count


def register_cli(app):
    """Register CLI commands with the Flask app."""
    app.cli.add_command(init_db_command)
    app.cli.add_command(update_rates_command)
    app.cli.add_command(import_rates_csv_command)
    app.cli.add_command(import_rules_csv_command)
    app.cli.add_command(seed_all_command)
