from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import BaseModel


class Company(BaseModel):
    """
    Tenant that owns NCF batches and users.

    The RNC is the company's taxpayer number at DGII (9 digits for legal
    entities, 11 for individuals registered with their cédula).
    """

    __tablename__ = "companies"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    rnc: Mapped[str] = mapped_column(String(11), unique=True, nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
