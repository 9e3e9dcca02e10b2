from __future__ import annotations
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, DateTime, ForeignKey, func
from repairdesk.models.authz import Base

class Client(Base):
    __tablename__ = 'clients'
    TYPE_INDIVIDUAL = 'individual'
    TYPE_COMPANY = 'company'
    ALL_TYPES = (TYPE_INDIVIDUAL, TYPE_COMPANY)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False, default=TYPE_INDIVIDUAL)
    name: Mapped[Optional[str]] = mapped_column(String(160), nullable=True)
    company_name: Mapped[Optional[str]] = mapped_column(String(160), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    nip: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    contacts = relationship('Contact', back_populates='client', cascade='all, delete-orphan', order_by='Contact.id')

    @property
    def display_name(self) -> str:
        if self.type == self.TYPE_COMPANY:
            return self.company_name or ''
        return self.name or ''


class Contact(Base):
    __tablename__ = 'contacts'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    client_id: Mapped[int] = mapped_column(ForeignKey('clients.id', ondelete='CASCADE'), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(160), nullable=False)
    phone: Mapped[str] = mapped_column(String(40), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    client = relationship('Client', back_populates='contacts')
