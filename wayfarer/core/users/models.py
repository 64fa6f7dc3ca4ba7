"""Account models."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import Mapped, mapped_column, relationship

from wayfarer.extensions import db

# Written only by the rewards claim transaction; see wayfarer.domains.rewards.guards.
LEDGER_FIELDS = frozenset({"credits", "bonus_claimed"})


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, onupdate=datetime.utcnow)


class User(db.Model, TimestampMixin):
    __tablename__ = "user"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(db.String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(db.String(255), nullable=False)
    display_name: Mapped[str | None] = mapped_column(db.String(255))
    home_city: Mapped[str | None] = mapped_column(db.String(128))
    timezone: Mapped[str | None] = mapped_column(db.String(64))
    is_active: Mapped[bool] = mapped_column(default=True)

    credits: Mapped[int] = mapped_column(nullable=False, default=0)
    bonus_claimed: Mapped[bool] = mapped_column(nullable=False, default=False)
    version_id: Mapped[int] = mapped_column(nullable=False)

    roles = relationship("Role", secondary="user_role", backref="users", lazy="joined")

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def role_codes(self) -> list[str]:
        return [role.name for role in self.roles] if self.roles else []
