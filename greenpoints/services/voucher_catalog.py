from typing import List, Optional

from greenpoints.errors import VoucherNotFound
from greenpoints.schemas.voucher import VoucherCreate, VoucherResponse, value_label
from greenpoints.storage.base import StorageBackend


class VoucherCatalog:
    """Reward definitions and their available stock"""

    def __init__(self, storage: StorageBackend):
        self.storage = storage

    def list_active(self) -> List[VoucherResponse]:
        return self.storage.list_vouchers(active_only=True)

    def list_by_category(self, category: str) -> List[VoucherResponse]:
        return [v for v in self.list_active() if v.category == category]

    def get_by_id(self, voucher_id: str) -> VoucherResponse:
        voucher = self.storage.get_voucher(voucher_id)
        if voucher is None:
            raise VoucherNotFound(voucher_id)
        return voucher

    def get_active(self, voucher_id: str) -> VoucherResponse:
        voucher = self.get_by_id(voucher_id)
        if not voucher.is_active:
            raise VoucherNotFound(voucher_id)
        return voucher

    def decrement_stock(self, voucher_id: str) -> Optional[int]:
        return self.storage.decrement_stock(voucher_id)

    def increment_stock(self, voucher_id: str) -> Optional[int]:
        return self.storage.increment_stock(voucher_id)

    def filter_affordable(self, user_points: int) -> List[VoucherResponse]:
        return [
            v for v in self.list_active()
            if v.points_required <= user_points and v.in_stock
        ]

    def save(self, voucher: VoucherCreate) -> VoucherResponse:
        return self.storage.upsert_voucher(voucher)

    value_label = staticmethod(value_label)
