from sqlalchemy import Column, Integer, String, Text, Enum, JSON, DateTime, Index, CheckConstraint

from greenpoints.database import Base

TransactionTypes = ("earned", "redeemed", "bonus")


class UserPoints(Base):
    __tablename__ = "user_points"

    user_id = Column(String(64), primary_key=True)
    points = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("points >= 0", name="ck_user_points_non_negative"),
    )


class UserTransaction(Base):
    __tablename__ = "user_transactions"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    type = Column(Enum(*TransactionTypes, name="transaction_type"), nullable=False)
    points = Column(Integer, nullable=False)
    description = Column(Text, nullable=False, default="")
    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_user_transactions_user_created", "user_id", "created_at"),
    )
