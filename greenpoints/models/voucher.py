from sqlalchemy import Column, Integer, String, Text, Enum, Boolean, JSON, DateTime, Numeric, Index, CheckConstraint
from sqlalchemy.sql import func

from greenpoints.database import Base

VoucherCategories = ("shopping", "food", "travel", "eco-friendly", "entertainment", "services")
DiscountTypes = ("percentage", "fixed", "free")


class Voucher(Base):
    __tablename__ = "vouchers"

    id = Column(String(64), primary_key=True)
    category = Column(Enum(*VoucherCategories, name="voucher_category"), nullable=False, index=True)
    brand = Column(String(120), nullable=False)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default="")
    points_required = Column(Integer, nullable=False)
    original_value = Column(Numeric(12, 2, asdecimal=False), nullable=False, default=0)
    discount_type = Column(Enum(*DiscountTypes, name="discount_type"), nullable=False)
    discount_value = Column(Numeric(12, 2, asdecimal=False), nullable=False, default=0)
    validity_days = Column(Integer, nullable=False)
    terms_and_conditions = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    stock_limit = Column(Integer, nullable=True)
    current_stock = Column(Integer, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_vouchers_active_points", "is_active", "points_required"),
        CheckConstraint("points_required >= 0", name="ck_vouchers_points_required"),
        CheckConstraint("validity_days > 0", name="ck_vouchers_validity_days"),
        CheckConstraint("current_stock IS NULL OR current_stock >= 0", name="ck_vouchers_stock_floor"),
        CheckConstraint(
            "(stock_limit IS NULL AND current_stock IS NULL) OR "
            "(stock_limit IS NOT NULL AND current_stock IS NOT NULL AND current_stock <= stock_limit)",
            name="ck_vouchers_stock_pair",
        ),
    )
