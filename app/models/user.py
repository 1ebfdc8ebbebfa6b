from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import DateTime, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base


class RoleName(str, PyEnum):
    CUSTOMER = "customer"
    PHARMACIST = "pharmacist"
    ADMIN = "admin"


STAFF_ROLES = {RoleName.PHARMACIST.value, RoleName.ADMIN.value}


class User(Base):
    """
    Account owning prescriptions, orders and refill requests.

    Authentication lives outside this service; the row only carries what the
    fulfillment core needs (ownership, contact details, staff role).
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    role: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=RoleName.CUSTOMER.value,
        server_default=text("'customer'"),
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def display_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or self.email
