"""
📅 DATECAST · One date, many guesses. The median decides.

SQLAlchemy models for DATECAST database schema.
"""

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Double,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from datecast.db import Base


IDENTITY_CONSTRAINT = "uq_submissions_identity_token"
FINGERPRINT_CONSTRAINT = "uq_submissions_network_fingerprint"


class Submission(Base):
    """One submitter's predicted date, with its stored weight."""

    __tablename__ = "submissions"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    predicted_date = Column(Date, nullable=False)
    identity_token = Column(String(64), nullable=False)
    network_fingerprint = Column(String(128), nullable=False)
    weight = Column(
        Double,
        CheckConstraint("weight >= 0.1 AND weight <= 1.0", name="ck_submissions_weight_range"),
        nullable=False
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Indexes and constraints
    __table_args__ = (
        UniqueConstraint("identity_token", name=IDENTITY_CONSTRAINT),
        UniqueConstraint("network_fingerprint", name=FINGERPRINT_CONSTRAINT),
        Index("idx_submissions_predicted_date", "predicted_date"),
        Index("idx_submissions_created_at", "created_at"),
    )
