"""
CRM deal model.

Deals are owned per user, not per team; team-wide deal quotas sum the
deals of every user in the team.
"""

from typing import Optional
from uuid import uuid4

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class CrmDeal(Base, TimestampMixin):
    """Sales pipeline deal."""

    __tablename__ = "crm_deals"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    owner_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    value_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_won: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_lost: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (Index("ix_crm_deals_owner_lost", "owner_id", "is_lost"),)

    def __repr__(self) -> str:
        return f"<CrmDeal(id={self.id}, owner_id={self.owner_id}, title={self.title})>"
