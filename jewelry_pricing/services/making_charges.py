"""Making-charge rules: SQLite store and resolver.

Rules are keyed by an optional category and an optional purity. A NULL
key acts as a wildcard, so resolution picks the most specific active rule
whose effective window covers the requested date:

    (category, purity) -> (category, *) -> (*, purity) -> (*, *)

Within one tier the rule with the latest effective_from wins.
"""
import logging
import sqlite3
from dataclasses import dataclass, fields
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional

from jewelry_pricing.constants import CHARGE_TYPES
from jewelry_pricing.db import get_db
from jewelry_pricing.services.exceptions import (
    InvalidInputError,
    RatesUnavailableError,
    RuleNotFoundError,
)
from jewelry_pricing.services.time_provider import TimeProvider, get_now, to_iso

logger = logging.getLogger(__name__)

# camelCase request keys accepted alongside the column names
FIELD_ALIASES = {
    'categoryId': 'category_id',
    'purityId': 'purity_id',
    'chargeType': 'charge_type',
    'rateValue': 'rate_value',
    'minimumCharge': 'minimum_charge',
    'maximumCharge': 'maximum_charge',
    'weightRangeMin': 'weight_range_min',
    'weightRangeMax': 'weight_range_max',
    'effectiveFrom': 'effective_from',
    'effectiveTo': 'effective_to',
    'isActive': 'is_active',
}

DECIMAL_FIELDS = ('rate_value', 'minimum_charge', 'maximum_charge', 'weight_range_min', 'weight_range_max')
DATE_FIELDS = ('effective_from', 'effective_to')
KEY_FIELDS = ('category_id', 'purity_id')


@dataclass(frozen=True)
class MakingChargeRule:
    charge_type: str
    rate_value: Decimal
    effective_from: date
    id: Optional[int] = None
    category_id: Optional[str] = None
    purity_id: Optional[str] = None
    minimum_charge: Decimal = Decimal('0')
    maximum_charge: Optional[Decimal] = None
    weight_range_min: Optional[Decimal] = None
    weight_range_max: Optional[Decimal] = None
    effective_to: Optional[date] = None
    is_active: bool = True
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> dict:
        def num(value):
            return float(value) if value is not None else None

        return {
            'id': self.id,
            'category_id': self.category_id,
            'purity_id': self.purity_id,
            'charge_type': self.charge_type,
            'rate_value': num(self.rate_value),
            'minimum_charge': num(self.minimum_charge),
            'maximum_charge': num(self.maximum_charge),
            'weight_range_min': num(self.weight_range_min),
            'weight_range_max': num(self.weight_range_max),
            'effective_from': self.effective_from.isoformat(),
            'effective_to': self.effective_to.isoformat() if self.effective_to else None,
            'is_active': self.is_active,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }

    @classmethod
    def from_row(cls, row) -> 'MakingChargeRule':
        def dec(value):
            return Decimal(str(value)) if value is not None else None

        return cls(
            id=row['id'],
            category_id=row['category_id'],
            purity_id=row['purity_id'],
            charge_type=row['charge_type'],
            rate_value=dec(row['rate_value']),
            minimum_charge=dec(row['minimum_charge']) or Decimal('0'),
            maximum_charge=dec(row['maximum_charge']),
            weight_range_min=dec(row['weight_range_min']),
            weight_range_max=dec(row['weight_range_max']),
            effective_from=date.fromisoformat(row['effective_from']),
            effective_to=date.fromisoformat(row['effective_to']) if row['effective_to'] else None,
            is_active=bool(row['is_active']),
            created_at=row['created_at'],
            updated_at=row['updated_at'],
        )


class _Unset:
    def __repr__(self):
        return 'UNSET'


UNSET = _Unset()


@dataclass(frozen=True)
class MakingChargeRuleUpdate:
    """Typed partial update. Fields left as UNSET are not written.

    Setting an optional field to None clears it (e.g. maximum_charge=None
    removes the cap).
    """
    category_id: object = UNSET
    purity_id: object = UNSET
    charge_type: object = UNSET
    rate_value: object = UNSET
    minimum_charge: object = UNSET
    maximum_charge: object = UNSET
    weight_range_min: object = UNSET
    weight_range_max: object = UNSET
    effective_from: object = UNSET
    effective_to: object = UNSET
    is_active: object = UNSET

    def changes(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not UNSET}

    @classmethod
    def from_payload(cls, payload: dict) -> 'MakingChargeRuleUpdate':
        """Build an update from a JSON body, parsing each field to its column type."""
        values = _normalize_keys(payload)
        unknown = set(values) - {f.name for f in fields(cls)}
        if unknown:
            raise InvalidInputError(f"Unknown fields: {', '.join(sorted(unknown))}")
        return cls(**_parse_values(values))


def _normalize_keys(payload) -> dict:
    if not isinstance(payload, dict):
        raise InvalidInputError('Request body must be a JSON object')
    return {FIELD_ALIASES.get(key, key): value for key, value in payload.items()}


def _parse_decimal(name: str, value) -> Optional[Decimal]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidInputError(f'{name} must be a number')
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidInputError(f'{name} must be a number')
    if not result.is_finite():
        raise InvalidInputError(f'{name} must be a finite number')
    return result


def _parse_date(name: str, value) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise InvalidInputError(f'{name} must be a YYYY-MM-DD date')


def _parse_values(values: dict) -> dict:
    parsed = {}
    for name, value in values.items():
        if name in DECIMAL_FIELDS:
            parsed[name] = _parse_decimal(name, value)
        elif name in DATE_FIELDS:
            parsed[name] = _parse_date(name, value)
        elif name in KEY_FIELDS:
            parsed[name] = str(value) if value not in (None, '') else None
        elif name == 'is_active':
            if not isinstance(value, bool):
                raise InvalidInputError('is_active must be a boolean')
            parsed[name] = value
        else:
            parsed[name] = value
    return parsed


def validate_rule(rule: MakingChargeRule) -> None:
    """Raise InvalidInputError if the rule breaks a field invariant."""
    if rule.charge_type not in CHARGE_TYPES:
        raise InvalidInputError(f"charge_type must be one of: {', '.join(CHARGE_TYPES)}")
    if rule.rate_value is None or rule.rate_value < 0:
        raise InvalidInputError('rate_value must be zero or positive')
    if rule.minimum_charge is None or rule.minimum_charge < 0:
        raise InvalidInputError('minimum_charge must be zero or positive')
    if rule.maximum_charge is not None and rule.maximum_charge < rule.minimum_charge:
        raise InvalidInputError('maximum_charge must not be less than minimum_charge')
    for bound in (rule.weight_range_min, rule.weight_range_max):
        if bound is not None and bound < 0:
            raise InvalidInputError('weight range bounds must be zero or positive')
    if (rule.weight_range_min is not None and rule.weight_range_max is not None
            and rule.weight_range_max < rule.weight_range_min):
        raise InvalidInputError('weight_range_max must not be less than weight_range_min')
    if rule.effective_from is None:
        raise InvalidInputError('effective_from is required')
    if rule.effective_to is not None and rule.effective_to <= rule.effective_from:
        raise InvalidInputError('effective_to must be after effective_from')


def inline_rule(charge_type, rate_value, on: date) -> MakingChargeRule:
    """Ad hoc rule from request values; bypasses the store."""
    rule = MakingChargeRule(
        charge_type=charge_type,
        rate_value=_parse_decimal('makingChargeValue', rate_value),
        effective_from=on,
    )
    validate_rule(rule)
    return rule


class MakingChargeRepository:
    """CRUD and resolution over the making_charge_rules table."""

    def __init__(self, db: sqlite3.Connection, time_provider: Optional[TimeProvider] = None):
        self._db = db
        self._time_provider = time_provider

    def _today(self) -> date:
        return (self._time_provider or TimeProvider.get_default()).today()

    def _query(self, sql: str, params=()) -> list[MakingChargeRule]:
        try:
            rows = self._db.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Rule query failed: {e}")
            raise RatesUnavailableError('Rule store unavailable') from e
        return [MakingChargeRule.from_row(row) for row in rows]

    def list_rules(self, active_only: bool = True) -> list[MakingChargeRule]:
        sql = 'SELECT * FROM making_charge_rules'
        if active_only:
            sql += ' WHERE is_active = 1'
        sql += ' ORDER BY category_id IS NULL, category_id, purity_id IS NULL, purity_id, effective_from DESC, id'
        return self._query(sql)

    def get_rule(self, rule_id: int) -> MakingChargeRule:
        rules = self._query('SELECT * FROM making_charge_rules WHERE id = ?', (rule_id,))
        if not rules:
            raise RuleNotFoundError(f'Making charge rule {rule_id} not found')
        return rules[0]

    def list_by_category(self, category_id: str, active_only: bool = True) -> list[MakingChargeRule]:
        sql = 'SELECT * FROM making_charge_rules WHERE category_id = ?'
        if active_only:
            sql += ' AND is_active = 1'
        return self._query(sql + ' ORDER BY purity_id IS NULL, purity_id, effective_from DESC, id', (str(category_id),))

    def list_by_purity(self, purity_id: str, active_only: bool = True) -> list[MakingChargeRule]:
        sql = 'SELECT * FROM making_charge_rules WHERE purity_id = ?'
        if active_only:
            sql += ' AND is_active = 1'
        return self._query(sql + ' ORDER BY category_id IS NULL, category_id, effective_from DESC, id', (str(purity_id),))

    def create_rule(self, data: dict) -> MakingChargeRule:
        """Validate and insert a rule. effective_from defaults to today."""
        values = _parse_values(_normalize_keys(data))
        values.pop('id', None)
        values.pop('created_at', None)
        values.pop('updated_at', None)
        if values.get('effective_from') is None:
            values['effective_from'] = self._today()
        if values.get('minimum_charge') is None:
            values['minimum_charge'] = Decimal('0')
        for required in ('charge_type', 'rate_value'):
            if values.get(required) is None:
                raise InvalidInputError(f'{required} is required')

        try:
            rule = MakingChargeRule(**values)
        except TypeError as e:
            raise InvalidInputError(f'Invalid rule fields: {e}')
        validate_rule(rule)

        stamp = to_iso(get_now(self._time_provider))
        try:
            with self._db:
                cursor = self._db.execute('''
                    INSERT INTO making_charge_rules (
                        category_id, purity_id, charge_type, rate_value,
                        minimum_charge, maximum_charge, weight_range_min, weight_range_max,
                        effective_from, effective_to, is_active, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ''', (*_row_values(rule), stamp, stamp))
        except sqlite3.Error as e:
            logger.error(f"Failed to create rule: {e}")
            raise RatesUnavailableError('Rule store unavailable') from e

        logger.info(f"Created making charge rule {cursor.lastrowid} ({rule.charge_type} {rule.rate_value})")
        return self.get_rule(cursor.lastrowid)

    def update_rule(self, rule_id: int, update: MakingChargeRuleUpdate) -> MakingChargeRule:
        """Apply the set fields of a typed update. Empty updates are rejected."""
        changes = update.changes()
        if not changes:
            raise InvalidInputError('No fields to update')

        current = self.get_rule(rule_id)
        merged = {f.name: getattr(current, f.name) for f in fields(current)}
        merged.update(changes)
        if merged['minimum_charge'] is None:
            raise InvalidInputError('minimum_charge cannot be cleared')
        candidate = MakingChargeRule(**merged)
        validate_rule(candidate)

        stamp = to_iso(get_now(self._time_provider))
        try:
            with self._db:
                self._db.execute('''
                    UPDATE making_charge_rules SET
                        category_id = ?, purity_id = ?, charge_type = ?, rate_value = ?,
                        minimum_charge = ?, maximum_charge = ?, weight_range_min = ?, weight_range_max = ?,
                        effective_from = ?, effective_to = ?, is_active = ?, updated_at = ?
                    WHERE id = ?
                ''', (*_row_values(candidate), stamp, rule_id))
        except sqlite3.Error as e:
            logger.error(f"Failed to update rule {rule_id}: {e}")
            raise RatesUnavailableError('Rule store unavailable') from e

        logger.info(f"Updated making charge rule {rule_id}: {', '.join(sorted(changes))}")
        return self.get_rule(rule_id)

    def deactivate_rule(self, rule_id: int) -> MakingChargeRule:
        """Soft delete: the row stays for audit but no longer resolves."""
        return self.update_rule(rule_id, MakingChargeRuleUpdate(is_active=False))

    def resolve(
        self,
        category_id: Optional[str] = None,
        purity_id: Optional[str] = None,
        weight=None,
        on: Optional[date] = None,
    ) -> MakingChargeRule:
        """Return the single most specific applicable rule.

        Raises:
            RuleNotFoundError: no active rule matches
        """
        on = on or self._today()
        weight_value = float(weight) if weight is not None else None
        rules = self._query('''
            SELECT * FROM making_charge_rules
            WHERE is_active = 1
              AND effective_from <= ?
              AND (effective_to IS NULL OR effective_to >= ?)
              AND (category_id IS NULL OR category_id = ?)
              AND (purity_id IS NULL OR purity_id = ?)
              AND (? IS NULL OR (
                    (weight_range_min IS NULL OR weight_range_min <= ?)
                AND (weight_range_max IS NULL OR weight_range_max >= ?)))
            ORDER BY category_id IS NULL, purity_id IS NULL, effective_from DESC, id DESC
            LIMIT 1
        ''', (
            on.isoformat(), on.isoformat(),
            str(category_id) if category_id is not None else None,
            str(purity_id) if purity_id is not None else None,
            weight_value, weight_value, weight_value,
        ))
        if not rules:
            raise RuleNotFoundError(
                f'No making charge rule for category={category_id} purity={purity_id} on {on.isoformat()}'
            )
        return rules[0]


def _row_values(rule: MakingChargeRule) -> tuple:
    def num(value):
        return float(value) if value is not None else None

    return (
        rule.category_id,
        rule.purity_id,
        rule.charge_type,
        num(rule.rate_value),
        num(rule.minimum_charge),
        num(rule.maximum_charge),
        num(rule.weight_range_min),
        num(rule.weight_range_max),
        rule.effective_from.isoformat(),
        rule.effective_to.isoformat() if rule.effective_to else None,
        1 if rule.is_active else 0,
    )


def get_making_charge_repository(db=None) -> MakingChargeRepository:
    return MakingChargeRepository(db if db is not None else get_db())
