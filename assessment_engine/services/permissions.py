"""
Permission oracle

authorize() is a pure function over string-keyed capability sets so it can
gate every mutating operation without I/O. The capability catalog lives in
the permissions table and is loaded once at startup into CapabilityRegistry.
"""
import logging
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Optional, Set, Union
from uuid import UUID

from sqlalchemy.orm import Session

from assessment_engine.exceptions import Unauthorized
from assessment_engine.models import Permission, User, UserStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Single:
    code: str


@dataclass(frozen=True, init=False)
class All:
    codes: FrozenSet[str]

    def __init__(self, *codes: str):
        object.__setattr__(self, "codes", frozenset(codes))


@dataclass(frozen=True, init=False)
class Any:
    codes: FrozenSet[str]

    def __init__(self, *codes: str):
        object.__setattr__(self, "codes", frozenset(codes))


Requirement = Union[Single, All, Any]


def authorize(capabilities: Iterable[str], is_system_role: bool, required: Requirement) -> bool:
    """
    Decide whether an actor may perform an operation

    Args:
        capabilities: Granted capability codes
        is_system_role: True when one of the actor's roles bypasses all checks
        required: Single(code), All(*codes) or Any(*codes)

    Returns:
        True if authorized
    """
    if is_system_role:
        return True

    granted = capabilities if isinstance(capabilities, (set, frozenset)) else set(capabilities)

    if isinstance(required, Single):
        return required.code in granted
    if isinstance(required, All):
        return required.codes <= granted
    if isinstance(required, Any):
        return bool(required.codes & granted)

    raise TypeError(f"Unknown requirement: {required!r}")


@dataclass(frozen=True)
class Actor:
    """Who is calling, as handed to the engine by the authentication layer"""
    user_id: UUID
    capabilities: FrozenSet[str] = field(default_factory=frozenset)
    is_system_role: bool = False

    def can(self, required: Requirement) -> bool:
        return authorize(self.capabilities, self.is_system_role, required)


def require_permission(actor: Actor, required: Union[str, Requirement]) -> None:
    """Raise Unauthorized unless the actor satisfies the requirement"""
    if isinstance(required, str):
        required = Single(required)
    if not actor.can(required):
        logger.warning(f"Permission denied for {actor.user_id}: {required}")
        raise Unauthorized("You are not allowed to perform this action", {"required": str(required)})


class CapabilityRegistry:
    """
    Known capability codes, loaded from the permissions table at startup

    Unknown codes are still accepted by authorize(); the registry exists so the
    catalog stays data-driven and typos in role grants surface in the logs.
    """

    def __init__(self, codes: Optional[Iterable[str]] = None):
        self._codes: Set[str] = set(codes or [])

    def load(self, db: Session, seed: Iterable[str] = ()) -> "CapabilityRegistry":
        """Read the catalog, seeding the table when it is empty"""
        rows = db.query(Permission.code).all()
        if not rows and seed:
            for code in seed:
                db.add(Permission(code=code, category=code.split(".", 1)[0]))
            db.commit()
            rows = db.query(Permission.code).all()
            logger.info(f"Seeded {len(rows)} capabilities")

        self._codes = {code for (code,) in rows}
        return self

    def __contains__(self, code: str) -> bool:
        return code in self._codes

    def __len__(self) -> int:
        return len(self._codes)

    @property
    def codes(self) -> FrozenSet[str]:
        return frozenset(self._codes)


def resolve_actor(db: Session, user_id: UUID, registry: Optional[CapabilityRegistry] = None) -> Optional[Actor]:
    """
    Build an Actor from a user's roles

    Returns None for missing, deleted or non-active users.
    """
    user = db.get(User, user_id)
    if not user or user.deleted_at is not None or user.status != UserStatus.ACTIVE:
        return None

    capabilities: Set[str] = set()
    is_system = False
    for role in user.roles:
        if role.deleted_at is not None:
            continue
        is_system = is_system or bool(role.is_system)
        capabilities.update(p.code for p in role.permissions)

    if registry is not None and len(registry):
        unknown = capabilities - registry.codes
        if unknown:
            logger.warning(f"User {user_id} holds unregistered capabilities: {sorted(unknown)}")

    return Actor(user_id=user.id, capabilities=frozenset(capabilities), is_system_role=is_system)


# Global instance
capability_registry = CapabilityRegistry()
