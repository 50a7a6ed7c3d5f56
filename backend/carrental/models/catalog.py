from __future__ import annotations

from ..extensions import db
from carrental.time_utils import to_utc_z


class Car(db.Model):
    """
    Rentable car listed by a provider.

    `available` is a denormalized cache of "no pending/active rent references
    this car". The rental engine never trusts it for conflict detection; it
    is refreshed from the rents table whenever a rent changes state.
    """
    __tablename__ = "cars"
    __table_args__ = (
        db.CheckConstraint("tier >= 0", name="tier_non_negative"),
        db.CheckConstraint("daily_rate > 0", name="daily_rate_positive"),
        db.Index("ix_cars_provider_id", "provider_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    license_plate = db.Column(db.String(20), nullable=False, unique=True)
    brand = db.Column(db.String(64), nullable=False)
    model = db.Column(db.String(64), nullable=False)
    type = db.Column(db.String(16), nullable=False)
    color = db.Column(db.String(32), nullable=False)
    manufacture_date = db.Column(db.DateTime(timezone=True), nullable=False)

    provider_id = db.Column(db.Integer, db.ForeignKey("providers.id"), nullable=False)

    tier = db.Column(db.Integer, nullable=False, default=0)
    daily_rate = db.Column(db.Integer, nullable=False)
    available = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    provider = db.relationship("Provider", backref=db.backref("cars", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "license_plate": self.license_plate,
            "brand": self.brand,
            "model": self.model,
            "type": self.type,
            "color": self.color,
            "manufacture_date": to_utc_z(self.manufacture_date),
            "provider_id": self.provider_id,
            "tier": self.tier,
            "daily_rate": self.daily_rate,
            "available": self.available,
            "created_at": to_utc_z(self.created_at),
        }
