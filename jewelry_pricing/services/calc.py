"""Jewelry price calculation.

Pure functions over Decimal. Intermediate values keep full precision and
every monetary output is rounded to paise (ROUND_HALF_UP) once, at the end.
"""
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional

from jewelry_pricing.constants import (
    CHARGE_TYPE_FIXED,
    CHARGE_TYPE_PER_GRAM,
    CHARGE_TYPE_PERCENTAGE,
    DEFAULT_GST_PCT,
    MONEY_QUANTUM,
)
from jewelry_pricing.data.metals import get_purity_factor, normalize_purity
from jewelry_pricing.services.exceptions import InvalidInputError, UnknownPurityError

HUNDRED = Decimal('100')


def round_money(value: Decimal) -> Decimal:
    return value.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def to_decimal(value, name: str) -> Decimal:
    """Coerce a JSON number or numeric string to Decimal, or raise InvalidInputError."""
    if value is None or isinstance(value, bool):
        raise InvalidInputError(f'{name} must be a number')
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise InvalidInputError(f'{name} must be a number')
    if not result.is_finite():
        raise InvalidInputError(f'{name} must be a finite number')
    return result


@dataclass(frozen=True)
class PriceBreakdown:
    """Result of one price calculation. All money fields already rounded."""
    metal: str
    purity: str
    purity_factor: Decimal
    weight: Decimal
    base_rate: Decimal
    adjusted_rate: Decimal
    base_price: Decimal
    charge_type: str
    making_charges: Decimal
    wastage_pct: Decimal
    wastage_amount: Decimal
    subtotal: Decimal
    gst_pct: Decimal
    gst_amount: Decimal
    total_price: Decimal
    rate_source: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'metal': self.metal,
            'purity': self.purity,
            'purity_factor': float(self.purity_factor),
            'weight': float(self.weight),
            'base_rate': float(self.base_rate),
            'adjusted_rate': float(self.adjusted_rate),
            'base_price': float(self.base_price),
            'charge_type': self.charge_type,
            'making_charges': float(self.making_charges),
            'wastage_pct': float(self.wastage_pct),
            'wastage_amount': float(self.wastage_amount),
            'subtotal': float(self.subtotal),
            'gst_pct': float(self.gst_pct),
            'gst_amount': float(self.gst_amount),
            'total_price': float(self.total_price),
            'rate_source': self.rate_source,
        }


def calculate_making_charges(rule, base_price: Decimal, weight: Decimal) -> Decimal:
    """Making charges for a rule, clamped to [minimum_charge, maximum_charge]. Unrounded."""
    rate_value = Decimal(rule.rate_value)
    if rule.charge_type == CHARGE_TYPE_PERCENTAGE:
        charges = base_price * rate_value / HUNDRED
    elif rule.charge_type == CHARGE_TYPE_PER_GRAM:
        charges = rate_value * weight
    elif rule.charge_type == CHARGE_TYPE_FIXED:
        charges = rate_value
    else:
        raise InvalidInputError(f'Unknown charge type: {rule.charge_type}')

    minimum = Decimal(rule.minimum_charge or 0)
    if charges < minimum:
        charges = minimum
    if rule.maximum_charge is not None and charges > Decimal(rule.maximum_charge):
        charges = Decimal(rule.maximum_charge)
    return charges


def calculate_price(
    weight,
    purity: str,
    rule,
    base_rate_per_gram,
    wastage_pct,
    gst_pct,
    metal: str = 'AU',
    rate_source: Optional[str] = None,
) -> PriceBreakdown:
    """Price one piece of jewelry.

    Order of operations:
        adjusted_rate  = base_rate * purity_factor
        base_price     = adjusted_rate * weight
        making_charges = per rule.charge_type, clamped to the rule's min/max
        wastage_amount = base_price * wastage_pct / 100
        subtotal       = base_price + making_charges + wastage_amount
        gst_amount     = subtotal * gst_pct / 100
        total_price    = subtotal + gst_amount

    Raises:
        InvalidInputError: non-positive weight or base rate, negative percentage
        UnknownPurityError: purity label not in the purity table
    """
    weight = to_decimal(weight, 'weight')
    if weight <= 0:
        raise InvalidInputError('weight must be greater than zero')

    label = normalize_purity(purity) if isinstance(purity, str) else None
    purity_factor = get_purity_factor(label) if label else None
    if purity_factor is None:
        raise UnknownPurityError(str(purity))

    base_rate = to_decimal(base_rate_per_gram, 'base_rate_per_gram')
    if base_rate <= 0:
        raise InvalidInputError('base rate must be greater than zero')

    wastage_pct = to_decimal(wastage_pct, 'wastage_pct')
    gst_pct = to_decimal(gst_pct, 'gst_pct')
    if wastage_pct < 0:
        raise InvalidInputError('wastage_pct must not be negative')
    if gst_pct < 0:
        raise InvalidInputError('gst_pct must not be negative')

    adjusted_rate = base_rate * purity_factor
    base_price = adjusted_rate * weight
    making_charges = calculate_making_charges(rule, base_price, weight)
    wastage_amount = base_price * wastage_pct / HUNDRED
    subtotal = base_price + making_charges + wastage_amount
    gst_amount = subtotal * gst_pct / HUNDRED
    total_price = subtotal + gst_amount

    return PriceBreakdown(
        metal=metal,
        purity=label,
        purity_factor=purity_factor,
        weight=weight,
        base_rate=round_money(base_rate),
        adjusted_rate=round_money(adjusted_rate),
        base_price=round_money(base_price),
        charge_type=rule.charge_type,
        making_charges=round_money(making_charges),
        wastage_pct=wastage_pct,
        wastage_amount=round_money(wastage_amount),
        subtotal=round_money(subtotal),
        gst_pct=gst_pct,
        gst_amount=round_money(gst_amount),
        total_price=round_money(total_price),
        rate_source=rate_source,
    )


def calculate_gst(amount, gst_pct=DEFAULT_GST_PCT) -> dict:
    """GST on an arbitrary amount."""
    amount = to_decimal(amount, 'amount')
    gst_pct = to_decimal(gst_pct, 'gst_pct')
    if amount < 0:
        raise InvalidInputError('amount must not be negative')
    if gst_pct < 0:
        raise InvalidInputError('gst_pct must not be negative')

    gst_amount = amount * gst_pct / HUNDRED
    return {
        'amount': float(round_money(amount)),
        'gst_pct': float(gst_pct),
        'gst_amount': float(round_money(gst_amount)),
        'total': float(round_money(amount + gst_amount)),
    }


def _item_value(item: dict, *names) -> Optional[object]:
    for name in names:
        if item.get(name) is not None:
            return item[name]
    return None


def calculate_order_total(items: list, gst_pct=DEFAULT_GST_PCT) -> dict:
    """Totals for an order: line items plus their making charges and wastage, then GST.

    Each item: {quantity, unit_price, making_charges?, wastage_amount?}
    (camelCase keys are accepted too).
    """
    if not isinstance(items, list) or not items:
        raise InvalidInputError('items must be a non-empty list')
    gst_pct = to_decimal(gst_pct, 'gst_pct')
    if gst_pct < 0:
        raise InvalidInputError('gst_pct must not be negative')

    subtotal = Decimal('0')
    total_making = Decimal('0')
    total_wastage = Decimal('0')

    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise InvalidInputError(f'items[{index}] must be an object')
        quantity = to_decimal(item.get('quantity'), f'items[{index}].quantity')
        unit_price = to_decimal(_item_value(item, 'unit_price', 'unitPrice'), f'items[{index}].unit_price')
        if quantity <= 0:
            raise InvalidInputError(f'items[{index}].quantity must be greater than zero')
        if unit_price < 0:
            raise InvalidInputError(f'items[{index}].unit_price must not be negative')
        subtotal += quantity * unit_price

        making = _item_value(item, 'making_charges', 'makingCharges')
        if making is not None:
            total_making += to_decimal(making, f'items[{index}].making_charges')
        wastage = _item_value(item, 'wastage_amount', 'wastageAmount')
        if wastage is not None:
            total_wastage += to_decimal(wastage, f'items[{index}].wastage_amount')

    before_gst = subtotal + total_making + total_wastage
    gst_amount = before_gst * gst_pct / HUNDRED

    return {
        'item_count': len(items),
        'subtotal': float(round_money(subtotal)),
        'making_charges': float(round_money(total_making)),
        'wastage_amount': float(round_money(total_wastage)),
        'gst_pct': float(gst_pct),
        'gst_amount': float(round_money(gst_amount)),
        'total_amount': float(round_money(before_gst + gst_amount)),
    }
