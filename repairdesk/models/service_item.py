from __future__ import annotations
from datetime import date, datetime
from typing import Optional, List
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Text, Date, DateTime, ForeignKey, UniqueConstraint
from repairdesk.models.authz import Base

class ServiceItem(Base):
    __tablename__ = 'service_items'
    # Status constants, in intended forward order
    STATUS_RECEIVED = 'Received'
    STATUS_DIAGNOSING = 'Diagnosing'
    STATUS_AWAITING_PARTS = 'AwaitingParts'
    STATUS_REPAIRING = 'Repairing'
    STATUS_READY_FOR_PICKUP = 'ReadyForPickup'
    STATUS_RETURNED = 'ReturnedToClient'
    ALL_STATUSES = (STATUS_RECEIVED, STATUS_DIAGNOSING, STATUS_AWAITING_PARTS, STATUS_REPAIRING, STATUS_READY_FOR_PICKUP, STATUS_RETURNED)

    doc_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tag_id: Mapped[str] = mapped_column(String(128), nullable=False)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # Soft references: no FK, a deleted client leaves these dangling
    client_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    contact_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    client_name: Mapped[Optional[str]] = mapped_column(String(160), nullable=True)
    client_phone: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    client_email: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    device_name: Mapped[str] = mapped_column(String(160), nullable=False)
    device_model: Mapped[Optional[str]] = mapped_column(String(160), nullable=True)
    serial_number: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    reported_fault: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=STATUS_RECEIVED, index=True)
    assigned_to: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    assigned_to_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    next_service_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True, index=True)
    date_received: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    notes: Mapped[List['ServiceNote']] = relationship(
        'ServiceNote', back_populates='service_item', cascade='all, delete-orphan',
        order_by='ServiceNote.position',
    )
    history = relationship('HistoryEntry', back_populates='service_item', cascade='all, delete-orphan')

    __table_args__ = (UniqueConstraint('organization_id', 'tag_id', name='uq_service_item_org_tag'),)


class ServiceNote(Base):
    """Append-only note; never edited or removed except with its ticket."""
    __tablename__ = 'service_notes'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    service_item_id: Mapped[int] = mapped_column(ForeignKey('service_items.doc_id', ondelete='CASCADE'), nullable=False, index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    user: Mapped[str] = mapped_column('user_email', String(128), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    service_item = relationship('ServiceItem', back_populates='notes')

# Status flow: Received -> Diagnosing -> AwaitingParts -> Repairing -> ReadyForPickup -> ReturnedToClient
# Backward moves (reopen) are allowed and recorded like any other change.
