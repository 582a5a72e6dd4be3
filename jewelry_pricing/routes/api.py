"""API routes for gold rates, making charges and price calculation."""
from datetime import date

from flask import Blueprint, current_app, jsonify, request

from jewelry_pricing.constants import BASE_CURRENCY, HISTORY_DEFAULT_DAYS
from jewelry_pricing.db import get_db
from jewelry_pricing.data.metals import get_purities, get_supported_metals, is_valid_metal, is_valid_purity
from jewelry_pricing.services.calc import calculate_gst, calculate_order_total, calculate_price, to_decimal
from jewelry_pricing.services.config import get_provider_keys_status, get_sync_config
from jewelry_pricing.services.exceptions import InvalidInputError, UnknownPurityError
from jewelry_pricing.services.gold_rate import get_gold_rate_service
from jewelry_pricing.services.making_charges import (
    MakingChargeRuleUpdate,
    get_making_charge_repository,
    inline_rule,
)
from jewelry_pricing.services.providers.registry import get_provider_status
from jewelry_pricing.services.rate_history import RateHistoryRepository
from jewelry_pricing.services.time_provider import get_today

api_bp = Blueprint('api', __name__)


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidInputError('Request body must be a JSON object')
    return data


def _int_arg(name: str, default: int) -> int:
    raw = request.args.get(name)
    if raw is None or raw == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidInputError(f'{name} must be an integer')


def _date_arg(name: str) -> date | None:
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError:
        raise InvalidInputError(f'Invalid {name} format. Use YYYY-MM-DD')


def _first(data: dict, *names):
    """First non-None value among alternative key spellings."""
    for name in names:
        if data.get(name) is not None:
            return data[name]
    return None


# Gold rates

@api_bp.route('/gold-rates/current')
def current_rates():
    """Return the current rate per gram for every metal.

    Read from the cache when fresh, otherwise from the latest persisted rows.
    Never triggers an upstream fetch.
    """
    current = get_gold_rate_service().get_current_rates()
    response = current.to_dict()
    response['currency'] = BASE_CURRENCY
    response['unit'] = 'per_gram'
    return jsonify(response)


@api_bp.route('/gold-rates/history')
def rate_history():
    """Return rate history for the last `days` days (default 30, max 365).

    Query Parameters:
        days: Number of days to look back
        symbol: Optional metal symbol filter (AU, AG, PT)
    """
    days = _int_arg('days', HISTORY_DEFAULT_DAYS)
    symbol = request.args.get('symbol') or None
    rows = get_gold_rate_service().get_rate_history(days, symbol=symbol)
    return jsonify({
        'days': days,
        'count': len(rows),
        'rates': [row.to_dict() for row in rows],
    })


@api_bp.route('/gold-rates/update', methods=['POST'])
def update_rates():
    """Force a refresh from upstream providers. 503 if every provider fails."""
    result = get_gold_rate_service().update_rates(trigger='api')
    return jsonify({'status': 'updated', **result.to_dict()})


@api_bp.route('/gold-rates/manual-update', methods=['POST'])
def manual_update():
    """Record an operator-entered rate.

    Body: {"symbol": "AU", "ratePerGram": 6850.5, "source": "counter"}
    """
    data = _json_body()
    row = get_gold_rate_service().manual_rate_update(
        symbol=_first(data, 'symbol', 'metal'),
        rate_per_gram=_first(data, 'ratePerGram', 'rate_per_gram', 'rate'),
        source=data.get('source'),
    )
    return jsonify({'status': 'recorded', 'rate': row.to_dict()}), 201


@api_bp.route('/gold-rates/providers')
def providers():
    """Provider order, configuration status and recent refresh attempts."""
    config = current_app.config['PRICING_CONFIG']
    service = get_gold_rate_service()
    return jsonify({
        'providers': get_provider_status(config),
        'keys_configured': get_provider_keys_status(config),
        'static_fallback_enabled': config.allow_static_fallback,
        'sync': get_sync_config(config),
        'last_update': service.get_last_update_time(),
        'recent_syncs': RateHistoryRepository(get_db()).recent_syncs(),
        'metals': get_supported_metals(),
    })


# Making charges

@api_bp.route('/making-charges', methods=['GET'])
def list_making_charges():
    include_inactive = request.args.get('include_inactive', '').lower() in ('1', 'true', 'yes')
    rules = get_making_charge_repository().list_rules(active_only=not include_inactive)
    return jsonify({'count': len(rules), 'rules': [rule.to_dict() for rule in rules]})


@api_bp.route('/making-charges/<int:rule_id>', methods=['GET'])
def get_making_charge(rule_id):
    return jsonify(get_making_charge_repository().get_rule(rule_id).to_dict())


@api_bp.route('/making-charges/category/<category_id>')
def making_charges_by_category(category_id):
    rules = get_making_charge_repository().list_by_category(category_id)
    return jsonify({'category_id': category_id, 'count': len(rules), 'rules': [r.to_dict() for r in rules]})


@api_bp.route('/making-charges/purity/<purity_id>')
def making_charges_by_purity(purity_id):
    rules = get_making_charge_repository().list_by_purity(purity_id)
    return jsonify({'purity_id': purity_id, 'count': len(rules), 'rules': [r.to_dict() for r in rules]})


@api_bp.route('/making-charges/resolve')
def resolve_making_charge():
    """Return the single rule that applies.

    Query Parameters:
        category_id, purity_id: optional rule keys
        weight: optional piece weight in grams, matched against weight ranges
        date: optional YYYY-MM-DD (default: today)
    """
    weight = request.args.get('weight')
    rule = get_making_charge_repository().resolve(
        category_id=request.args.get('category_id') or None,
        purity_id=request.args.get('purity_id') or None,
        weight=to_decimal(weight, 'weight') if weight else None,
        on=_date_arg('date'),
    )
    return jsonify(rule.to_dict())


@api_bp.route('/making-charges', methods=['POST'])
def create_making_charge():
    rule = get_making_charge_repository().create_rule(_json_body())
    return jsonify(rule.to_dict()), 201


@api_bp.route('/making-charges/<int:rule_id>', methods=['PUT'])
def update_making_charge(rule_id):
    update = MakingChargeRuleUpdate.from_payload(_json_body())
    rule = get_making_charge_repository().update_rule(rule_id, update)
    return jsonify(rule.to_dict())


@api_bp.route('/making-charges/<int:rule_id>', methods=['DELETE'])
def delete_making_charge(rule_id):
    """Soft delete: the rule is deactivated, not removed."""
    rule = get_making_charge_repository().deactivate_rule(rule_id)
    return jsonify({'status': 'deactivated', 'rule': rule.to_dict()})


# Pricing

@api_bp.route('/pricing/calculate', methods=['POST'])
def calculate():
    """Calculate a full price breakdown for one piece.

    Request body:
        {
            "weight": 10,
            "purity": "22K",
            "metal": "AU",                   (optional, default AU)
            "categoryId": "rings",           (optional rule key)
            "purityId": "22K",               (optional rule key)
            "makingChargeType": "percentage" (optional, with makingChargeValue
            "makingChargeValue": 12           bypasses rule resolution)
            "wastagePct": 2,                 (optional, configured default)
            "gstPct": 3                      (optional, configured default)
        }
    """
    data = _json_body()
    config = current_app.config['PRICING_CONFIG']

    weight = to_decimal(data.get('weight'), 'weight')
    if weight <= 0:
        raise InvalidInputError('weight must be greater than zero')

    purity = data.get('purity')
    if not isinstance(purity, str) or not is_valid_purity(purity):
        raise UnknownPurityError(str(purity))

    metal = str(data.get('metal') or 'AU').upper()
    if not is_valid_metal(metal):
        raise InvalidInputError(f'Unsupported metal: {metal}')

    charge_type = _first(data, 'makingChargeType', 'making_charge_type')
    charge_value = _first(data, 'makingChargeValue', 'making_charge_value')
    if charge_type is not None or charge_value is not None:
        if charge_type is None or charge_value is None:
            raise InvalidInputError('makingChargeType and makingChargeValue must be given together')
        rule = inline_rule(charge_type, charge_value, get_today())
    else:
        rule = get_making_charge_repository().resolve(
            category_id=_first(data, 'categoryId', 'category_id'),
            purity_id=_first(data, 'purityId', 'purity_id'),
            weight=weight,
        )

    rate = get_gold_rate_service().get_rate(metal)

    wastage_pct = _first(data, 'wastagePct', 'wastage_pct')
    gst_pct = _first(data, 'gstPct', 'gst_pct')
    breakdown = calculate_price(
        weight=weight,
        purity=purity,
        rule=rule,
        base_rate_per_gram=rate.rate_per_gram,
        wastage_pct=wastage_pct if wastage_pct is not None else config.default_wastage_pct,
        gst_pct=gst_pct if gst_pct is not None else config.default_gst_pct,
        metal=metal,
        rate_source=rate.source,
    )

    response = breakdown.to_dict()
    response['making_charge_rule_id'] = rule.id
    response['rate_recorded_at'] = rate.recorded_at
    response['currency'] = BASE_CURRENCY
    return jsonify(response)


@api_bp.route('/pricing/calculate-gst', methods=['POST'])
def gst():
    data = _json_body()
    gst_pct = _first(data, 'gstPct', 'gst_pct')
    if gst_pct is None:
        gst_pct = current_app.config['PRICING_CONFIG'].default_gst_pct
    return jsonify(calculate_gst(data.get('amount'), gst_pct))


@api_bp.route('/pricing/calculate-order-total', methods=['POST'])
def order_total():
    """Totals for an order.

    Body: {"items": [{"quantity": 1, "unit_price": 50000, "making_charges": 6000,
           "wastage_amount": 1000}], "gstPct": 3}
    """
    data = _json_body()
    gst_pct = _first(data, 'gstPct', 'gst_pct')
    if gst_pct is None:
        gst_pct = current_app.config['PRICING_CONFIG'].default_gst_pct
    return jsonify(calculate_order_total(data.get('items'), gst_pct))


@api_bp.route('/pricing/price-trends')
def price_trends():
    """Daily min/max/average rate for one metal over the last `days` days."""
    symbol = (request.args.get('symbol') or 'AU').upper()
    days = _int_arg('days', HISTORY_DEFAULT_DAYS)
    trends = get_gold_rate_service().get_price_trends(symbol, days)
    return jsonify({'symbol': symbol, 'days': days, 'trends': trends})


@api_bp.route('/pricing/purities')
def purities():
    return jsonify({'purities': get_purities()})
