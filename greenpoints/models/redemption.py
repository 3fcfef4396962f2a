from sqlalchemy import Column, Integer, String, Enum, DateTime, ForeignKey, Index

from greenpoints.database import Base

RedemptionStatuses = ("active", "used", "expired")


class VoucherRedemption(Base):
    __tablename__ = "voucher_redemptions"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    voucher_id = Column(String(64), ForeignKey("vouchers.id"), nullable=False, index=True)
    voucher_code = Column(String(32), nullable=False, unique=True)
    points_used = Column(Integer, nullable=False)
    status = Column(Enum(*RedemptionStatuses, name="redemption_status"), nullable=False, default="active")
    redeemed_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_voucher_redemptions_user_redeemed", "user_id", "redeemed_at"),
    )
