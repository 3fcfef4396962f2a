from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from greenpoints.schemas.voucher import VoucherCreate, VoucherResponse
from greenpoints.schemas.redemption import RedemptionCreate, RedemptionResponse
from greenpoints.schemas.transaction import TransactionCreate, TransactionResponse


class StorageBackend(ABC):
    """Persistence contract shared by the catalog, ledger, log and redemption service.

    Implementations must make ``decrement_stock``, ``debit_points`` and
    ``transition_redemption`` atomic conditional updates, translate their own
    driver failures into ``StorageUnavailable`` and report a duplicate
    ``voucher_code`` as ``UniquenessConflict``.
    """

    name = "abstract"

    # vouchers

    @abstractmethod
    def list_vouchers(self, active_only: bool = True) -> List[VoucherResponse]:
        """Vouchers ordered by points_required ascending."""

    @abstractmethod
    def get_voucher(self, voucher_id: str) -> Optional[VoucherResponse]:
        ...

    @abstractmethod
    def upsert_voucher(self, voucher: VoucherCreate) -> VoucherResponse:
        ...

    @abstractmethod
    def decrement_stock(self, voucher_id: str) -> Optional[int]:
        """Decrement current_stock by one if it is positive.

        Returns the new stock, or None when stock is untracked. Raises
        VoucherNotFound or VoucherOutOfStock without changing anything.
        """

    @abstractmethod
    def increment_stock(self, voucher_id: str) -> Optional[int]:
        """Give back one unit, never above stock_limit. None when untracked."""

    # points

    @abstractmethod
    def get_points(self, user_id: str) -> int:
        ...

    @abstractmethod
    def debit_points(self, user_id: str, amount: int) -> int:
        """Subtract amount only if the balance covers it. Raises InsufficientPoints."""

    @abstractmethod
    def credit_points(self, user_id: str, amount: int) -> int:
        ...

    # redemptions

    @abstractmethod
    def insert_redemption(self, redemption: RedemptionCreate) -> RedemptionResponse:
        ...

    @abstractmethod
    def get_redemption(self, redemption_id: str) -> Optional[RedemptionResponse]:
        ...

    @abstractmethod
    def get_redemption_by_code(self, voucher_code: str) -> Optional[RedemptionResponse]:
        ...

    @abstractmethod
    def list_redemptions(self, user_id: str) -> List[RedemptionResponse]:
        """A user's redemptions, newest first."""

    @abstractmethod
    def transition_redemption(
        self,
        redemption_id: str,
        from_status: str,
        to_status: str,
        used_at: Optional[datetime] = None,
    ) -> Optional[RedemptionResponse]:
        """Move a redemption from one status to another.

        Returns None when the redemption is missing or no longer in from_status.
        """

    def voucher_code_exists(self, voucher_code: str) -> bool:
        return self.get_redemption_by_code(voucher_code) is not None

    # transactions

    @abstractmethod
    def append_transaction(
        self, entry: TransactionCreate, entry_id: str, created_at: datetime
    ) -> TransactionResponse:
        ...

    @abstractmethod
    def list_transactions(self, user_id: str, limit: Optional[int] = None) -> List[TransactionResponse]:
        """A user's entries, newest first. No limit returns all of them."""

    # lifecycle

    def init_schema(self) -> None:
        pass

    def ping(self) -> None:
        pass

    def close(self) -> None:
        pass
