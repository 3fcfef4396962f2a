from pydantic import BaseModel, Field, ConfigDict, computed_field, model_validator
from typing import List, Literal, Optional
from datetime import datetime

VoucherCategory = Literal["shopping", "food", "travel", "eco-friendly", "entertainment", "services"]
DiscountType = Literal["percentage", "fixed", "free"]


class VoucherBase(BaseModel):
    id: str = Field(..., min_length=1, max_length=64)
    category: VoucherCategory
    brand: str
    title: str
    description: str = ""
    points_required: int = Field(..., ge=0)
    original_value: float = Field(default=0, ge=0)
    discount_type: DiscountType
    discount_value: float = Field(default=0, ge=0)
    validity_days: int = Field(..., gt=0)
    terms_and_conditions: List[str] = Field(default_factory=list)
    is_active: bool = True
    stock_limit: Optional[int] = Field(default=None, ge=0)
    current_stock: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_stock_pair(self):
        if (self.stock_limit is None) != (self.current_stock is None):
            raise ValueError("current_stock and stock_limit must be set together")
        if self.stock_limit is not None and self.current_stock > self.stock_limit:
            raise ValueError("current_stock cannot exceed stock_limit")
        return self

    @property
    def tracks_stock(self) -> bool:
        return self.current_stock is not None

    @property
    def in_stock(self) -> bool:
        return not self.tracks_stock or self.current_stock > 0


def value_label(voucher: VoucherBase) -> str:
    """Short badge text shown on a voucher card, e.g. "10% OFF" or "FREE"."""
    if voucher.discount_type == "percentage":
        return f"{voucher.discount_value:g}% OFF"
    elif voucher.discount_type == "fixed":
        return f"₹{voucher.discount_value:g} OFF"
    elif voucher.discount_type == "free":
        return "FREE"
    return f"₹{voucher.original_value:g} VALUE"


# Request schema (catalog seeding / management)
class VoucherCreate(VoucherBase):
    pass


# Response schema
class VoucherResponse(VoucherBase):
    updated_at: Optional[datetime] = None

    # Pydantic v2 style config (replaces class Config)
    model_config = ConfigDict(from_attributes=True)

    @computed_field
    @property
    def value_label(self) -> str:
        return value_label(self)
