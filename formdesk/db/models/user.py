from __future__ import annotations

import enum
import json
from datetime import datetime

from sqlalchemy import String, Integer, Enum, Text, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from formdesk.db.base import Base, utcnow


class Role(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"


class UserStatus(str, enum.Enum):
    ACTIVE = "active"
    DELETED = "deleted"


# Admin sub-areas a non-super admin may be granted.
MODULES = ("users", "forms")

ROLE_LABELS = {
    Role.USER: "User",
    Role.ADMIN: "Admin",
    Role.SUPERADMIN: "Super Admin",
}


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    name: Mapped[str] = mapped_column(String(120), default="")

    role: Mapped[Role] = mapped_column(Enum(Role), index=True, default=Role.USER)
    # {"users": bool, "forms": bool}; only meaningful for Role.ADMIN
    module_permissions_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    city: Mapped[str | None] = mapped_column(String(120), nullable=True)
    employee_id: Mapped[str | None] = mapped_column(String(80), nullable=True, index=True)
    vendor_id: Mapped[str | None] = mapped_column(String(80), nullable=True, index=True)

    status: Mapped[UserStatus] = mapped_column(Enum(UserStatus), index=True, default=UserStatus.ACTIVE)
    last_heartbeat: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def role_label(self) -> str:
        return ROLE_LABELS.get(self.role, getattr(self.role, "value", str(self.role)))

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE

    @property
    def module_permissions(self) -> dict[str, bool] | None:
        if not self.module_permissions_json:
            return None
        try:
            data = json.loads(self.module_permissions_json)
        except ValueError:
            return None
        if not isinstance(data, dict):
            return None
        return {m: bool(data.get(m)) for m in MODULES}

    @module_permissions.setter
    def module_permissions(self, value: dict[str, bool] | None) -> None:
        if value is None:
            self.module_permissions_json = None
            return
        self.module_permissions_json = json.dumps({m: bool(value.get(m)) for m in MODULES})
