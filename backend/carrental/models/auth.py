from __future__ import annotations

from ..extensions import db
from carrental.time_utils import to_utc_z

ROLE_USER = "user"
ROLE_ADMIN = "admin"
VALID_ROLES = {ROLE_USER, ROLE_ADMIN}

# Every TIER_SPEND_STEP of lifetime spend unlocks one car tier
TIER_SPEND_STEP = 10_000


def tier_for_spend(total_spend: int) -> int:
    return max(total_spend, 0) // TIER_SPEND_STEP


class User(db.Model):
    """
    Renter and admin accounts.

    `tier` is derived from `total_spend` and only ever changes through
    add_spend(), which the rental engine calls when a rent completes.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.CheckConstraint("role IN ('user', 'admin')", name="role_valid"),
        db.CheckConstraint("total_spend >= 0", name="total_spend_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    telephone_number = db.Column(db.String(11), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    role = db.Column(db.String(16), nullable=False, default=ROLE_USER, index=True)

    total_spend = db.Column(db.Integer, nullable=False, default=0)
    tier = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def add_spend(self, amount: int) -> None:
        """Increase lifetime spend and recompute the derived tier."""
        if amount < 0:
            raise ValueError("Spend can only increase")
        self.total_spend = (self.total_spend or 0) + amount
        self.tier = tier_for_spend(self.total_spend)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "telephone_number": self.telephone_number,
            "email": self.email,
            "role": self.role,
            "total_spend": self.total_spend,
            "tier": self.tier,
            "created_at": to_utc_z(self.created_at),
        }


class Provider(db.Model):
    """Car provider account. Providers own cars but never book them."""
    __tablename__ = "providers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    address = db.Column(db.String(255), nullable=False)
    telephone_number = db.Column(db.String(11), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "telephone_number": self.telephone_number,
            "email": self.email,
            "created_at": to_utc_z(self.created_at),
        }


class SessionToken(db.Model):
    """
    Server-side allow-list of issued session tokens.

    A token is valid only while its row exists, is not revoked and has not
    expired. Exactly one of user_id / provider_id is set.

    SECURITY NOTES:
    - Tokens stored hashed in database (SHA-256)
    - Absolute and idle timeouts (see Config)
    - Revocable on logout or account deletion
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.CheckConstraint(
            "(user_id IS NULL) <> (provider_id IS NULL)",
            name="single_principal",
        ),
        db.Index("ix_session_tokens_user_active", "user_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    provider_id = db.Column(db.Integer, db.ForeignKey("providers.id", ondelete="CASCADE"), nullable=True, index=True)

    # Token hash (never store plaintext tokens!)
    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False, index=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    user = db.relationship("User", backref=db.backref("session_tokens", lazy=True, cascade="all, delete-orphan"))
    provider = db.relationship("Provider", backref=db.backref("session_tokens", lazy=True, cascade="all, delete-orphan"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "provider_id": self.provider_id,
            "created_at": to_utc_z(self.created_at),
            "last_used_at": to_utc_z(self.last_used_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_revoked": self.is_revoked,
        }
