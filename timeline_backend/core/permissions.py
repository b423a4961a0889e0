"""
Node Permission Rules
Policy vocabulary and the access decision shared by every evaluation path

A policy grants (ALLOW) or revokes (DENY) an action at a visibility level for
one subject. Subjects form three tiers of specificity:

    user (3)  >  organization (2)  >  public (1)

For a given request the most specific tier holding an applicable policy
decides the outcome. Inside that tier DENY beats ALLOW.

Level containment: ``full`` implies ``overview``. An ALLOW at ``full``
satisfies an ``overview`` request; a DENY at ``overview`` blocks a ``full``
request. This keeps decisions monotonic across levels.
"""

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import FrozenSet, Iterable, Optional, Tuple, Union


NODE_ID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


class VisibilityLevel(str, Enum):
    """Granularity of visibility"""

    OVERVIEW = "overview"
    FULL = "full"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]


_LEVEL_RANK = {
    VisibilityLevel.OVERVIEW: 1,
    VisibilityLevel.FULL: 2,
}

# Highest first
LEVELS_DESCENDING: Tuple[VisibilityLevel, ...] = (
    VisibilityLevel.FULL,
    VisibilityLevel.OVERVIEW,
)


class PermissionAction(str, Enum):
    """Operation gated by a policy"""

    VIEW = "view"
    EDIT = "edit"
    SHARE = "share"
    DELETE = "delete"


class PolicyEffect(str, Enum):
    """Grant or revoke"""

    ALLOW = "ALLOW"
    DENY = "DENY"


class SubjectType(str, Enum):
    """Who a policy applies to"""

    PUBLIC = "public"
    ORGANIZATION = "organization"
    USER = "user"


@dataclass(frozen=True)
class PublicSubject:
    """Everyone, including anonymous viewers"""

    @property
    def subject_type(self) -> SubjectType:
        return SubjectType.PUBLIC

    @property
    def subject_id(self) -> None:
        return None


@dataclass(frozen=True)
class OrganizationSubject:
    """Current members of one organization"""

    organization_id: int

    @property
    def subject_type(self) -> SubjectType:
        return SubjectType.ORGANIZATION

    @property
    def subject_id(self) -> int:
        return self.organization_id


@dataclass(frozen=True)
class UserSubject:
    """A single user"""

    user_id: int

    @property
    def subject_type(self) -> SubjectType:
        return SubjectType.USER

    @property
    def subject_id(self) -> int:
        return self.user_id


Subject = Union[PublicSubject, OrganizationSubject, UserSubject]

SUBJECT_SPECIFICITY = {
    SubjectType.USER: 3,
    SubjectType.ORGANIZATION: 2,
    SubjectType.PUBLIC: 1,
}


def make_subject(subject_type: Union[SubjectType, str], subject_id: Optional[int] = None) -> Subject:
    """
    Build a subject from its persisted (type, id) pair

    Raises:
        ValueError: If the pair is inconsistent (public with an id, or
            organization/user without a positive integer id)
    """
    subject_type = SubjectType(subject_type)

    if subject_type is SubjectType.PUBLIC:
        if subject_id is not None:
            raise ValueError("Public policies must not have a subject id")
        return PublicSubject()

    if isinstance(subject_id, bool) or not isinstance(subject_id, int) or subject_id <= 0:
        raise ValueError(f"{subject_type.value} policies require a positive subject id")

    if subject_type is SubjectType.ORGANIZATION:
        return OrganizationSubject(organization_id=subject_id)
    return UserSubject(user_id=subject_id)


def is_valid_node_id(node_id: object) -> bool:
    """Check a node id against the RFC 4122 UUID format"""
    if isinstance(node_id, uuid.UUID):
        node_id = str(node_id)
    return isinstance(node_id, str) and NODE_ID_PATTERN.match(node_id) is not None


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class PolicyRule:
    """A policy as seen by the decision function"""

    subject: Subject
    action: PermissionAction
    level: VisibilityLevel
    effect: PolicyEffect
    expires_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and as_utc(self.expires_at) <= as_utc(now)

    def covers_level(self, requested: VisibilityLevel) -> bool:
        """Whether this rule speaks about a request at ``requested`` level"""
        if self.effect is PolicyEffect.ALLOW:
            return self.level.rank >= requested.rank
        return self.level.rank <= requested.rank


@dataclass(frozen=True)
class ViewerContext:
    """The viewer identity policies are matched against"""

    viewer_id: Optional[int] = None
    organization_ids: FrozenSet[int] = field(default_factory=frozenset)

    @property
    def is_anonymous(self) -> bool:
        return self.viewer_id is None

    def specificity(self, subject: Subject) -> Optional[int]:
        """Tier of ``subject`` for this viewer, or None when it does not apply"""
        if isinstance(subject, PublicSubject):
            return SUBJECT_SPECIFICITY[SubjectType.PUBLIC]
        if self.is_anonymous:
            return None
        if isinstance(subject, UserSubject):
            if subject.user_id == self.viewer_id:
                return SUBJECT_SPECIFICITY[SubjectType.USER]
            return None
        if subject.organization_id in self.organization_ids:
            return SUBJECT_SPECIFICITY[SubjectType.ORGANIZATION]
        return None


def evaluate_policies(
    policies: Iterable[PolicyRule],
    viewer: ViewerContext,
    action: PermissionAction = PermissionAction.VIEW,
    level: VisibilityLevel = VisibilityLevel.OVERVIEW,
    now: Optional[datetime] = None,
) -> bool:
    """
    Decide a non-owner request against a node's policies

    Owner bypass is not handled here; callers check ownership first.
    """
    now = now or datetime.now(timezone.utc)
    winning_tier = 0
    effects = set()

    for policy in policies:
        if policy.action != action or policy.is_expired(now):
            continue
        if not policy.covers_level(level):
            continue

        tier = viewer.specificity(policy.subject)
        if tier is None:
            continue

        if tier > winning_tier:
            winning_tier = tier
            effects = {policy.effect}
        elif tier == winning_tier:
            effects.add(policy.effect)

    if winning_tier == 0:
        return False
    return PolicyEffect.DENY not in effects


def resolve_access_level(
    policies: Iterable[PolicyRule],
    viewer: ViewerContext,
    action: PermissionAction = PermissionAction.VIEW,
    now: Optional[datetime] = None,
) -> Optional[VisibilityLevel]:
    """Highest level granted to a non-owner viewer, or None"""
    policies = list(policies)
    for level in LEVELS_DESCENDING:
        if evaluate_policies(policies, viewer, action, level, now):
            return level
    return None
