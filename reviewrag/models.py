"""Database ORM models.

Defines the corpus tables the retrieval core reads:
- App: a tracked store listing (the corpus a review belongs to).
- Review: one app review with its rating, text, and a pgvector embedding tagged with the
  provider that produced it.

Rows are written by the ingestion jobs; this package only reads them.
"""
from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from reviewrag.db import Base


class App(Base):
    __tablename__ = "apps"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    platform = Column(String(10), nullable=False)
    app_id = Column(String(255), nullable=False)  # store listing id
    country = Column(String(10), nullable=False, default="us")
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("platform", "app_id", "country"),
        CheckConstraint("platform IN ('ios', 'android')", name="apps_platform_check"),
    )


class Review(Base):
    """Vector-embedded app review used for retrieval.

    Notes:
        ``embedding`` has no fixed dimension; its length must equal the dimension of
        ``embedding_provider`` (768 for google, 1536 for openai).
    """
    __tablename__ = "reviews"

    id = Column(Integer, primary_key=True, autoincrement=True)
    app_id = Column(Integer, ForeignKey("apps.id", ondelete="CASCADE"), nullable=False)
    platform_review_id = Column(String(255), nullable=False)
    platform = Column(String(10), nullable=False)
    author = Column(String(255), nullable=True)
    rating = Column(Integer, nullable=False)
    title = Column(Text, nullable=True)
    content = Column(Text, nullable=True)
    review_date = Column(DateTime, nullable=True)
    app_version = Column(String(50), nullable=True)

    embedding = Column(Vector(), nullable=True)
    embedding_provider = Column(String(20), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("platform_review_id", "app_id"),
        Index("idx_reviews_app_id", "app_id"),
        Index("idx_reviews_rating", "rating"),
        Index("idx_reviews_date", "review_date"),
        CheckConstraint("platform IN ('ios', 'android')", name="reviews_platform_check"),
        CheckConstraint("rating >= 1 AND rating <= 5", name="reviews_rating_check"),
    )
