# Overview: The single company settings document, seeded from configuration on first read.

from __future__ import annotations

import logging

from flask import current_app

from ..extensions import db
from ..models import Settings
from ..validation import to_int
from stockroom.errors import ValidationFailure

logger = logging.getLogger(__name__)

CURRENCY_SYMBOLS = {"USD": "$", "EUR": "€", "GBP": "£", "JPY": "¥", "INR": "₹", "CAD": "$", "AUD": "$"}

# section -> {api field: (column, max length or None for ints/bools)}
SETTINGS_FIELDS = {
    "company": {
        "name": ("company_name", 100),
        "email": ("company_email", 255),
        "phone": ("company_phone", 32),
        "address": ("company_address", 500),
    },
    "currency": {
        "code": ("currency_code", 3),
        "symbol": ("currency_symbol", 8),
    },
    "inventory": {
        "lowStockThreshold": ("low_stock_threshold", None),
        "lowStockAlert": ("low_stock_alert", None),
    },
}


def get_settings() -> Settings:
    settings = db.session.query(Settings).order_by(Settings.id.asc()).first()
    if settings is not None:
        return settings

    config = current_app.config
    currency = (config.get("DEFAULT_CURRENCY") or "USD").upper()
    settings = Settings(
        company_name=config.get("COMPANY_NAME") or "My Company",
        company_email=config.get("COMPANY_EMAIL") or None,
        company_phone=config.get("COMPANY_PHONE") or None,
        currency_code=currency,
        currency_symbol=CURRENCY_SYMBOLS.get(currency, currency),
        low_stock_threshold=10,
        low_stock_alert=True,
    )
    db.session.add(settings)
    db.session.commit()
    logger.info("Seeded settings for %s", settings.company_name)
    return settings


def _coerce(section: str, field: str, column: str, max_length, value):
    label = f"{section}.{field}"
    if column == "low_stock_threshold":
        return to_int(value, label, minimum=0)
    if column == "low_stock_alert":
        if not isinstance(value, bool):
            raise ValidationFailure(f"{label} must be a boolean")
        return value
    if value is None:
        if column in ("company_name", "currency_code", "currency_symbol"):
            raise ValidationFailure(f"{label} cannot be null")
        return None
    value = str(value).strip()
    if column == "company_name" and not value:
        raise ValidationFailure("Company name cannot be blank")
    if column == "currency_code":
        value = value.upper()
        if len(value) != 3 or not value.isalpha():
            raise ValidationFailure("Currency code must be a 3-letter ISO code")
    if len(value) > max_length:
        raise ValidationFailure(f"{label} exceeds max length {max_length}")
    return value


def update_settings(payload: dict) -> Settings:
    """Partial update of the nested {company, currency, inventory} document."""
    if not isinstance(payload, dict):
        raise ValidationFailure("Invalid JSON payload")

    settings = get_settings()
    for section, values in payload.items():
        fields = SETTINGS_FIELDS.get(section)
        if fields is None:
            raise ValidationFailure(f"Unknown settings section: {section}")
        if not isinstance(values, dict):
            raise ValidationFailure(f"{section} must be an object")
        for field, value in values.items():
            if field not in fields:
                raise ValidationFailure(f"Unknown setting: {section}.{field}")
            column, max_length = fields[field]
            setattr(settings, column, _coerce(section, field, column, max_length, value))

    db.session.commit()
    logger.info("Settings updated")
    return settings
