"""
Node Policy Model
Database model for timeline node access policies
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Enum, ForeignKey, Index, Integer, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from timeline_backend.core.permissions import (
    PermissionAction,
    PolicyEffect,
    PolicyRule,
    SubjectType,
    VisibilityLevel,
    make_subject,
)
from timeline_backend.db.base import Base, TimestampMixin, UUIDMixin


def _enum_column(enum_cls, name: str) -> Enum:
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        length=20,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )


class NodePolicy(Base, TimestampMixin, UUIDMixin):
    """Node-level access policy (one subject, one action, one level)"""

    __tablename__ = "node_policies"
    __table_args__ = (
        CheckConstraint(
            "(subject_type = 'public' AND subject_id IS NULL) OR "
            "(subject_type <> 'public' AND subject_id IS NOT NULL)",
            name="ck_node_policies_subject",
        ),
        UniqueConstraint(
            "node_id", "level", "action", "subject_type", "subject_id",
            name="uq_node_policies_subject_grant",
        ),
        Index("ix_node_policies_subject", "subject_type", "subject_id"),
    )

    # Resource
    node_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("timeline_nodes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Grant
    level: Mapped[VisibilityLevel] = mapped_column(
        _enum_column(VisibilityLevel, "visibility_level"), nullable=False
    )
    action: Mapped[PermissionAction] = mapped_column(
        _enum_column(PermissionAction, "permission_action"),
        nullable=False,
        default=PermissionAction.VIEW,
    )
    effect: Mapped[PolicyEffect] = mapped_column(
        _enum_column(PolicyEffect, "policy_effect"),
        nullable=False,
        default=PolicyEffect.ALLOW,
    )

    # Subject (who the policy applies to)
    subject_type: Mapped[SubjectType] = mapped_column(
        _enum_column(SubjectType, "subject_type"), nullable=False
    )
    subject_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    granted_by: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )

    @property
    def subject(self):
        return make_subject(self.subject_type, self.subject_id)

    def to_rule(self) -> PolicyRule:
        """Convert to the value object used by the decision function"""
        return PolicyRule(
            subject=self.subject,
            action=self.action,
            level=self.level,
            effect=self.effect,
            expires_at=self.expires_at,
        )
