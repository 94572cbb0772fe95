"""Request document model."""

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, String

from transcript_pipeline.database import Base


class RequestDocument(Base):
    """One persisted RequestRecord, stored as a JSON document keyed by request_id."""

    __tablename__ = "request_documents"

    collection = Column(String(128), primary_key=True)
    document_id = Column(String(36), primary_key=True)
    data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
