"""Video analysis job model."""

from sqlalchemy import Column, String, DateTime, Integer, Text, JSON
from sqlalchemy.sql import func
import uuid

from database import Base


class VideoAnalysis(Base):
    """One transcript/topics/summary analysis of a submitted video."""

    __tablename__ = "video_analyses"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_ref = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    source = Column(String, nullable=False)  # youtube, upload
    source_url = Column(Text, nullable=False, default="")
    status = Column(String, nullable=False, default="processing", index=True)  # processing, completed, failed
    progress = Column(Integer, nullable=False, default=0)
    transcript = Column(Text, nullable=False, default="")
    transcript_source = Column(String, nullable=True)  # transcript_api, speech_to_text, template
    duration_seconds = Column(Integer, nullable=True)
    topics = Column(JSON, nullable=False, default=list)
    summary = Column(Text, nullable=True)
    flashcards = Column(JSON, nullable=True)
    error = Column(String, nullable=True)
    staged_media_path = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)
