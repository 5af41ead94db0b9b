from __future__ import annotations

from ..extensions import db
from stockroom.time_utils import to_utc_z


class Settings(db.Model):
    """Single-row company settings document, seeded from configuration."""
    __tablename__ = "settings"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_name = db.Column(db.String(100), nullable=False)
    company_email = db.Column(db.String(255), nullable=True)
    company_phone = db.Column(db.String(32), nullable=True)
    company_address = db.Column(db.String(500), nullable=True)

    currency_code = db.Column(db.String(3), nullable=False, default="USD")
    currency_symbol = db.Column(db.String(8), nullable=False, default="$")

    low_stock_threshold = db.Column(db.Integer, nullable=False, default=10)
    low_stock_alert = db.Column(db.Boolean, nullable=False, default=True)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "company": {
                "name": self.company_name,
                "email": self.company_email,
                "phone": self.company_phone,
                "address": self.company_address,
            },
            "currency": {
                "code": self.currency_code,
                "symbol": self.currency_symbol,
            },
            "inventory": {
                "lowStockThreshold": self.low_stock_threshold,
                "lowStockAlert": self.low_stock_alert,
            },
            "updatedAt": to_utc_z(self.updated_at),
        }
