"""
User, role and capability models

Capabilities are opaque codes stored as data; nothing in the engine branches on
a specific role name.
"""
from sqlalchemy import Column, String, Boolean, TIMESTAMP, ForeignKey, Table, Uuid, func
from sqlalchemy.orm import relationship
from assessment_engine.database import Base
import uuid


role_permissions = Table(
    "role_permissions",
    Base.metadata,
    Column("role_id", Uuid, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", Uuid, ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
)

user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", Uuid, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)


class UserStatus:
    ACTIVE = "ACTIVE"
    PENDING_ACTIVATION = "PENDING_ACTIVATION"
    FROZEN = "FROZEN"


class User(Base):
    """
    Users table - students, instructors and administrators alike
    """
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True)
    name = Column(String(255))
    status = Column(String(30), nullable=False, default=UserStatus.ACTIVE)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    deleted_at = Column(TIMESTAMP(timezone=True))

    roles = relationship("Role", secondary=user_roles, lazy="selectin")

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, status={self.status})>"


class Role(Base):
    """
    Roles table - a named bundle of capabilities; is_system bypasses all checks
    """
    __tablename__ = "roles"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    code = Column(String(100), unique=True, nullable=False)
    name = Column(String(255))
    is_system = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(TIMESTAMP(timezone=True))

    permissions = relationship("Permission", secondary=role_permissions, lazy="selectin")

    def __repr__(self):
        return f"<Role(code={self.code}, is_system={self.is_system})>"


class Permission(Base):
    """
    Permissions table - the capability catalog
    """
    __tablename__ = "permissions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    code = Column(String(100), unique=True, nullable=False, index=True)
    category = Column(String(50))
    description = Column(String(255))

    def __repr__(self):
        return f"<Permission(code={self.code})>"
