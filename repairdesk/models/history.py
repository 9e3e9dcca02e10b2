from __future__ import annotations
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Text, DateTime, ForeignKey, Index
from repairdesk.models.authz import Base

class HistoryEntry(Base):
    __tablename__ = 'history_entries'
    TYPE_CREATED = 'Created'
    TYPE_STATUS_CHANGED = 'StatusChanged'
    TYPE_NOTE_ADDED = 'NoteAdded'
    TYPE_DATA_EDITED = 'DataEdited'
    ALL_TYPES = (TYPE_CREATED, TYPE_STATUS_CHANGED, TYPE_NOTE_ADDED, TYPE_DATA_EDITED)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    service_item_id: Mapped[int] = mapped_column(ForeignKey('service_items.doc_id', ondelete='CASCADE'), nullable=False, index=True)
    # Denormalized for the organization-wide feed
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    service_item_tag: Mapped[str] = mapped_column(String(128), nullable=False)
    service_item_name: Mapped[str] = mapped_column(String(160), nullable=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    details: Mapped[str] = mapped_column(Text, nullable=False)
    user: Mapped[str] = mapped_column('user_email', String(128), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    service_item = relationship('ServiceItem', back_populates='history')

    # Composite index backing the organization feed (organization_id, timestamp desc)
    __table_args__ = (Index('ix_history_org_timestamp', 'organization_id', 'timestamp'),)
