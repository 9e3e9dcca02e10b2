from __future__ import annotations
from sqlalchemy.orm import declarative_base, Mapped, mapped_column
from sqlalchemy import String, Boolean, JSON, DateTime, func
from typing import Optional, Dict, Any

Base = declarative_base()

# --- Tenancy & identity ---
class Organization(Base):
    __tablename__ = 'organizations'
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now())


class AuthCredential(Base):
    """Login credential; the identity provider side of a user."""
    __tablename__ = 'auth_credentials'
    uid: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str] = mapped_column(String(128), unique=True, index=True, nullable=False)
    # Owning organization; lets a credential whose profile is gone still be tenant-checked
    organization_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now())

    def set_password(self, raw: str):
        from werkzeug.security import generate_password_hash
        self.password_hash = generate_password_hash(raw)

    def verify_password(self, raw: str) -> bool:
        from werkzeug.security import check_password_hash
        return check_password_hash(self.password_hash, raw)


class OrgUser(Base):
    """Organization-scoped user profile.

    `permissions` holds the expanded capability flags. Records written before the
    flag structure existed only carry `is_admin`; both shapes are normalized by
    repairdesk.services.policy.normalize_permissions right after fetch.
    """
    __tablename__ = 'org_users'
    uid: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str] = mapped_column(String(128), index=True, nullable=False)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    permissions: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    is_admin: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    role: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class RevokedToken(Base):
    __tablename__ = 'revoked_tokens'
    jti: Mapped[str] = mapped_column(String(64), primary_key=True)
    uid: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    revoked_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now())
