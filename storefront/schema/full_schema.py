import enum
import uuid
from sqlalchemy import JSON, Date, DateTime, ForeignKey, Integer, Text, UniqueConstraint, Uuid
from uuid_utils.compat import uuid7
from datetime import date, datetime
from typing import Any, Dict, List, Optional
from sqlmodel import Column, SQLModel, Field, Relationship, String
from storefront.common.utils import now

# Join tables
class UserRole(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: Optional[int] = Field(default=None, foreign_key="users.id", index=True,nullable=False)
    role_id: Optional[int] = Field(default=None, foreign_key="role.id", index=True,nullable=False)

    __table_args__ = (UniqueConstraint("user_id", "role_id", name="uq_user_role_user_id_role_id"),)


class Users(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)  #* optional just means for the created object before saving in db .
    public_id: uuid.UUID = Field(
        default_factory=uuid7,
        sa_column=Column(Uuid(as_uuid=True), unique=True, index=True, nullable=False)
    )
    # either email or phone_number identifies the account, registration needs at least one
    email: Optional[str] = Field(default=None,sa_column=Column(String(320), nullable=True,unique=True))
    phone_number: Optional[str] = Field(default=None,sa_column=Column(String(20), nullable=True,unique=True))
    name: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    role_version:int=Field(default=0,nullable=False)
    # bumped whenever the password changes
    credential_version:int=Field(default=0,nullable=False)
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False,default=now))
    updated_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False,default=now, onupdate=now))
    deleted_at: Optional[datetime] = Field(default=None,
        sa_column=Column(DateTime(timezone=True)))

    credentials: List["Credential"] = Relationship(back_populates="user")
    roles: List["Role"] = Relationship(back_populates="users",link_model=UserRole)
    profile: Optional["CustomerProfile"] = Relationship(back_populates="user", sa_relationship_kwargs={"uselist": False})
    cart: Optional["Cart"] = Relationship(back_populates="user", sa_relationship_kwargs={"uselist": False})


class Role(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(sa_column=Column(String(length=200), unique=True, nullable=False))
    description: Optional[str] = None
    users: List["Users"] = Relationship(back_populates="roles",link_model=UserRole)


class CredentialType(str, enum.Enum):
    PASSWORD = "password"
    OAUTH = "oauth"


class Credential(SQLModel, table=True):
    """Holds password hashes (and later oauth provider ids)."""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(sa_column=Column(ForeignKey("users.id", ondelete="CASCADE"),
            index=True,nullable=False))
    type: CredentialType = Field(sa_column=Column(String(16), nullable=False))
    provider: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    password_hash: Optional[str] = Field(default=None, sa_column=Column(Text(),nullable=True))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), default=now,nullable=False))
    updated_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), default=now,nullable=False, onupdate=now))
    revoked_at: Optional[datetime] = Field(default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True))

    user: "Users" = Relationship(back_populates="credentials")


class CustomerProfile(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(sa_column=Column(ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False))
    first_name: str = Field(sa_column=Column(String(50), nullable=False))
    last_name: str = Field(sa_column=Column(String(50), nullable=False))
    gender: Optional[str] = Field(default=None, sa_column=Column(String(16), nullable=True))
    date_of_birth: Optional[date] = Field(default=None, sa_column=Column(Date(), nullable=True))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=now))

    user: "Users" = Relationship(back_populates="profile")


class PasswordResetToken(SQLModel, table=True):
    """Only the hash of the reset token is stored."""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(sa_column=Column(ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False))
    token_hash: str = Field(sa_column=Column(String(128), unique=True, nullable=False))
    expires_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    used_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=now))


class Cart(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: Optional[int] = Field(
        default=None,
        sa_column=Column(ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True,unique= True),
    )
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
    updated_at: datetime = Field(default_factory=now,sa_column=Column(DateTime(timezone=True), nullable=False,default=now, onupdate=now))

    user: Optional["Users"] = Relationship(back_populates="cart")

# --------------------------------------------------------------------------------------------

class OutboxEventStatus(enum.IntEnum):
    PENDING = 0
    DONE = 1
    FAILED = 2


class OutboxEvent(SQLModel, table=True):
    """Durable post-commit work, written in the same transaction as the change that caused it."""
    id: Optional[int] = Field(default=None, primary_key=True)
    topic: str = Field(sa_column=Column(String(128), nullable=False, index=True))
    payload: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    aggregate_type: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    aggregate_id: Optional[int] = Field(default=None, sa_column=Column(Integer, nullable=True, index=True))
    status: int = Field(default=OutboxEventStatus.PENDING.value,
        sa_column=Column(Integer, nullable=False, index=True, default=OutboxEventStatus.PENDING.value))
    attempts: int = Field(default=0, nullable=False)
    next_retry_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    locked_until: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    last_error: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
    updated_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=now, onupdate=now))
    processed_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
