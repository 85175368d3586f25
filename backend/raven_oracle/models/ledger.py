from sqlalchemy import BigInteger, Column, ForeignKey, Index, String, Text
from sqlalchemy.orm import relationship

from raven_oracle.core.database import Base


class User(Base):
    __tablename__ = "users"

    address = Column(String(42), primary_key=True)
    pending_credits = Column(BigInteger, nullable=False, default=0)
    calculated_credits = Column(BigInteger, nullable=False, default=0)

    # HAS_ENGAGEMENT / HAS_CREDIT_CALCULATION edges
    engagements = relationship("Engagement", back_populates="user")
    credit_calculations = relationship("CreditCalculation", back_populates="user")


class Engagement(Base):
    __tablename__ = "engagements"

    id = Column(String(36), primary_key=True)
    user_address = Column(String(42), ForeignKey("users.address"), nullable=False, index=True)
    action = Column(String, nullable=False, index=True)
    credits = Column(BigInteger, nullable=False)
    metadata_json = Column(Text, nullable=True)
    created_at_ms = Column(BigInteger, nullable=False)
    status = Column(String(16), nullable=False, default="pending", index=True)
    tx_hash = Column(String(66), nullable=True)
    settled_at_ms = Column(BigInteger, nullable=True)

    user = relationship("User", back_populates="engagements")

    __table_args__ = (Index("ix_engagements_user_status", "user_address", "status"),)


class CreditCalculation(Base):
    __tablename__ = "credit_calculations"

    id = Column(String(36), primary_key=True)
    user_address = Column(String(42), ForeignKey("users.address"), nullable=False, index=True)
    reason = Column(String, nullable=False, index=True)
    # uint256 argument, kept exact as decimal text
    parameter = Column(String(78), nullable=False)
    credits = Column(BigInteger, nullable=False)
    metadata_json = Column(Text, nullable=True)
    created_at_ms = Column(BigInteger, nullable=False)
    status = Column(String(16), nullable=False, default="pending", index=True)
    tx_hash = Column(String(66), nullable=True)
    settled_at_ms = Column(BigInteger, nullable=True)

    user = relationship("User", back_populates="credit_calculations")
