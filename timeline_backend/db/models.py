"""
SQLAlchemy Database Models

Users, timeline nodes and organizations are owned by other parts of the
platform. Only the columns the permission engine reads are mapped here.
"""

import uuid
from typing import Any, Dict, Optional

from sqlalchemy import JSON, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from timeline_backend.db.base import Base, TimestampMixin, UUIDMixin


class User(TimestampMixin, Base):
    """User SQLAlchemy model"""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    user_name: Mapped[Optional[str]] = mapped_column(
        String(100), unique=True, nullable=True, index=True
    )
    first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)


class TimelineNode(UUIDMixin, TimestampMixin, Base):
    """Timeline node SQLAlchemy model (job, education, project, ...)"""

    __tablename__ = "timeline_nodes"

    type: Mapped[str] = mapped_column(String(50), nullable=False)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    parent_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("timeline_nodes.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    meta: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    @property
    def title(self) -> Optional[str]:
        if isinstance(self.meta, dict):
            return self.meta.get("title")
        return None


class Organization(TimestampMixin, Base):
    """Organization SQLAlchemy model"""

    __tablename__ = "organizations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False, default="other")


class OrgMember(Base):
    """Organization membership"""

    __tablename__ = "org_members"

    org_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True, index=True
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="member")
