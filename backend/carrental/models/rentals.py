from __future__ import annotations

from ..extensions import db
from carrental.time_utils import to_utc_z

RENT_STATUS_PENDING = "pending"
RENT_STATUS_ACTIVE = "active"
RENT_STATUS_COMPLETED = "completed"
RENT_STATUS_CANCELLED = "cancelled"

NON_TERMINAL_STATUSES = (RENT_STATUS_PENDING, RENT_STATUS_ACTIVE)


class Rent(db.Model):
    """
    One booking of a car by a user.

    STATE MACHINE:
        pending -> active -> completed
        pending -> completed        (returned before confirmation)
        pending -> cancelled        (deleted by holder or admin)

    completed and cancelled are terminal. `price` is fixed at creation;
    the late fee is computed at completion and reported, never stored in it.
    """
    __tablename__ = "rents"
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('pending', 'active', 'completed', 'cancelled')",
            name="status_valid",
        ),
        db.CheckConstraint("return_date > start_date", name="window_positive"),
        db.CheckConstraint("price >= 0", name="price_non_negative"),
        db.CheckConstraint("additional_charges >= 0", name="additional_charges_non_negative"),
        db.Index("ix_rents_car_status", "car_id", "status"),
        db.Index("ix_rents_user_status", "user_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    car_id = db.Column(db.Integer, db.ForeignKey("cars.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    # Naive UTC, compared directly with utcnow() when pricing
    start_date = db.Column(db.DateTime, nullable=False)
    return_date = db.Column(db.DateTime, nullable=False)
    actual_return_date = db.Column(db.DateTime, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=RENT_STATUS_PENDING)

    price = db.Column(db.Integer, nullable=False)
    additional_charges = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    car = db.relationship("Car", backref=db.backref("rents", lazy=True))
    user = db.relationship("User", backref=db.backref("rents", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "car_id": self.car_id,
            "user_id": self.user_id,
            "start_date": to_utc_z(self.start_date),
            "return_date": to_utc_z(self.return_date),
            "actual_return_date": to_utc_z(self.actual_return_date),
            "status": self.status,
            "price": self.price,
            "additional_charges": self.additional_charges,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
