from sqlalchemy import Column, String, DateTime, ForeignKey, JSON, Text
from sqlalchemy.orm import relationship
import uuid
from datetime import datetime, timezone

from formsweep.database import Base


# Helper for consistent UTC timestamps
def utc_now():
    return datetime.now(timezone.utc)


class Entity(Base):
    """
    Data owner (business or individual), decoupled from any login.
    Created alongside a public form token to anchor partial answers.
    """
    __tablename__ = "entities"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    entity_type = Column(String, nullable=True)  # business, individual
    display_name = Column(String, nullable=True)
    profile = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    corpus_items = relationship("CorpusItem", back_populates="entity")
    relationships = relationship("Relationship", back_populates="entity")


class PublicFormToken(Base):
    """One visitor session on a public form."""
    __tablename__ = "public_forms_tokens"

    token = Column(String, primary_key=True)
    product_id = Column(String, nullable=False, index=True)
    entity_id = Column(String, ForeignKey("entities.id"), nullable=True, index=True)  # Lookup only, not ownership
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False, index=True)  # UTC


class Relationship(Base):
    """Links an entity to a product; its status drives liveness."""
    __tablename__ = "relationships"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    product_id = Column(String, nullable=False, index=True)
    entity_id = Column(String, ForeignKey("entities.id"), nullable=False, index=True)
    status = Column(String, nullable=False, default="new")
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    entity = relationship("Entity", back_populates="relationships")


class CorpusItem(Base):
    """Answers, attachments and derived content owned by one entity."""
    __tablename__ = "corpus_items"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    entity_id = Column(String, ForeignKey("entities.id"), nullable=False, index=True)
    content = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    entity = relationship("Entity", back_populates="corpus_items")


class JobScheduleQueue(Base):
    __tablename__ = "job_schedule_queue"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    job_name = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, default="pending")  # pending, running, completed, failed
    summary = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
