import logging
import threading
import uuid
import weakref
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from greenpoints.errors import (
    InsufficientPoints,
    RedemptionNotActive,
    RedemptionNotFound,
    RewardsError,
    UniquenessConflict,
    Unexpected,
    VoucherOutOfStock,
)
from greenpoints.schemas.redemption import RedemptionCreate, RedemptionResponse
from greenpoints.schemas.transaction import TransactionCreate
from greenpoints.schemas.voucher import VoucherResponse
from greenpoints.services.points_ledger import PointsLedger
from greenpoints.services.transaction_log import TransactionLog
from greenpoints.services.voucher_catalog import VoucherCatalog
from greenpoints.services.voucher_codes import generate_voucher_code, unique_voucher_code
from greenpoints.storage.base import StorageBackend
from greenpoints.timeutil import utcnow

logger = logging.getLogger(__name__)

DEFAULT_CODE_ATTEMPTS = 5


class RedemptionService:
    """Spends a user's points on a voucher.

    ``redeem`` runs validate -> debit points -> decrement stock -> persist
    redemption -> log transaction. The store offers no transaction spanning
    those steps, so every completed mutation registers an undo action and a
    failure replays them newest first before the error is raised. On any
    error the caller sees, balance and stock are back where they started.
    Logging the transaction is the one step allowed to fail on its own.
    """

    def __init__(
        self,
        storage: StorageBackend,
        catalog: Optional[VoucherCatalog] = None,
        ledger: Optional[PointsLedger] = None,
        log: Optional[TransactionLog] = None,
        code_max_attempts: int = DEFAULT_CODE_ATTEMPTS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.storage = storage
        self.catalog = catalog or VoucherCatalog(storage)
        self.ledger = ledger or PointsLedger(storage)
        self.log = log or TransactionLog(storage)
        self.code_max_attempts = max(code_max_attempts, 1)
        self._clock = clock
        # entries vanish once no request holds the lock
        self._locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def _user_lock(self, user_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = self._locks[user_id] = threading.Lock()
            return lock

    def redeem(self, voucher_id: str, user_id: str) -> RedemptionResponse:
        try:
            return self._redeem(voucher_id, user_id)
        except RewardsError as exc:
            logger.info("Redemption of %s by %s failed: %s", voucher_id, user_id, exc.code.value)
            raise
        except Exception as exc:
            logger.exception("Unexpected error redeeming %s for %s", voucher_id, user_id)
            raise Unexpected(f"Redemption failed: {exc.__class__.__name__}") from exc

    def _redeem(self, voucher_id: str, user_id: str) -> RedemptionResponse:
        voucher = self.catalog.get_active(voucher_id)
        if not voucher.in_stock:
            raise VoucherOutOfStock(voucher_id)

        cost = voucher.points_required
        with self._user_lock(user_id):
            available = self.ledger.get_balance(user_id)
            if available < cost:
                raise InsufficientPoints(cost, available)

            code = unique_voucher_code(voucher.id, self.storage.voucher_code_exists, self.code_max_attempts)
            if code is None:
                raise UniquenessConflict(f"No free voucher code for {voucher.id}")

            # nothing has changed yet; a lost race here is still a clean failure
            self.ledger.debit(user_id, cost)
            undo: List[tuple] = []
            if cost > 0:
                undo.append(("credit points", lambda: self.ledger.credit(
                    user_id, cost, f"Refund for failed redemption of {voucher.id}")))

            try:
                remaining = self.catalog.decrement_stock(voucher.id)
                if remaining is not None:
                    voucher = voucher.model_copy(update={"current_stock": remaining})
                    undo.append(("restore stock", lambda: self.catalog.increment_stock(voucher.id)))
                redemption = self._persist(voucher, user_id, code)
            except Exception as exc:
                self._compensate(undo, voucher.id, user_id, exc)
                raise

        redemption.voucher = voucher
        self._record_redemption(redemption, voucher)
        logger.info(
            "User %s redeemed %s for %s points (code %s)",
            user_id, voucher.id, cost, redemption.voucher_code,
        )
        return redemption

    def _persist(self, voucher: VoucherResponse, user_id: str, code: str) -> RedemptionResponse:
        attempts = 0
        while True:
            attempts += 1
            redeemed_at = self._clock()
            try:
                return self.storage.insert_redemption(RedemptionCreate(
                    id=str(uuid.uuid4()),
                    user_id=user_id,
                    voucher_id=voucher.id,
                    voucher_code=code,
                    points_used=voucher.points_required,
                    redeemed_at=redeemed_at,
                    expires_at=redeemed_at + timedelta(days=voucher.validity_days),
                ))
            except UniquenessConflict:
                if attempts >= self.code_max_attempts:
                    raise
                logger.warning("Voucher code %s collided, regenerating", code)
                code = generate_voucher_code(voucher.id)

    @staticmethod
    def _compensate(undo: List[tuple], voucher_id: str, user_id: str, cause: Exception) -> None:
        for label, action in reversed(undo):
            try:
                action()
            except Exception:
                # TODO: persist failed compensations so a sweeper can retry them
                logger.exception(
                    "Compensation '%s' failed for %s/%s after %r; manual repair needed",
                    label, user_id, voucher_id, cause,
                )
        if undo:
            logger.warning(
                "Rolled back redemption of %s for %s after %s",
                voucher_id, user_id, cause.__class__.__name__,
            )

    def _record_redemption(self, redemption: RedemptionResponse, voucher: VoucherResponse) -> None:
        if redemption.points_used == 0:
            return
        try:
            self.log.append(TransactionCreate(
                user_id=redemption.user_id,
                type="redeemed",
                points=-redemption.points_used,
                description=f"Redeemed: {voucher.title}",
                metadata={
                    "voucher_id": voucher.id,
                    "voucher_code": redemption.voucher_code,
                    "redemption_id": redemption.id,
                },
            ))
        except Exception:
            # the ledger already holds the truth; the log is best effort
            logger.exception("Could not record transaction for redemption %s", redemption.id)

    def _refresh_expiry(self, redemption: RedemptionResponse) -> RedemptionResponse:
        if redemption.status != "active" or not redemption.is_past_expiry(self._clock()):
            return redemption
        expired = self.storage.transition_redemption(redemption.id, "active", "expired")
        if expired is None:
            # someone else moved it first
            expired = self.storage.get_redemption(redemption.id) or redemption
        else:
            logger.info("Redemption %s expired", redemption.id)
        return expired

    def _with_voucher(self, redemption: RedemptionResponse) -> RedemptionResponse:
        redemption.voucher = self.storage.get_voucher(redemption.voucher_id)
        return redemption

    def get_redemption(self, redemption_id: str) -> RedemptionResponse:
        redemption = self.storage.get_redemption(redemption_id)
        if redemption is None:
            raise RedemptionNotFound(redemption_id)
        return self._with_voucher(self._refresh_expiry(redemption))

    def list_redemptions(self, user_id: str) -> List[RedemptionResponse]:
        vouchers: Dict[str, Optional[VoucherResponse]] = {}
        out = []
        for redemption in self.storage.list_redemptions(user_id):
            redemption = self._refresh_expiry(redemption)
            if redemption.voucher_id not in vouchers:
                vouchers[redemption.voucher_id] = self.storage.get_voucher(redemption.voucher_id)
            redemption.voucher = vouchers[redemption.voucher_id]
            out.append(redemption)
        return out

    def validate_code(self, voucher_code: str) -> Optional[RedemptionResponse]:
        """The redemption behind a code if it can still be used, else None."""
        redemption = self.storage.get_redemption_by_code(voucher_code)
        if redemption is None:
            return None
        redemption = self._refresh_expiry(redemption)
        if redemption.status != "active":
            return None
        return self._with_voucher(redemption)

    def mark_used(self, redemption_id: str) -> RedemptionResponse:
        current = self.get_redemption(redemption_id)
        if current.status != "active":
            raise RedemptionNotActive(redemption_id, current.status)
        used = self.storage.transition_redemption(redemption_id, "active", "used", used_at=self._clock())
        if used is None:
            latest = self.storage.get_redemption(redemption_id)
            raise RedemptionNotActive(redemption_id, latest.status if latest else "missing")
        logger.info("Redemption %s marked as used", redemption_id)
        return self._with_voucher(used)

    def available_vouchers(self, user_id: str) -> List[VoucherResponse]:
        return self.catalog.filter_affordable(self.ledger.get_balance(user_id))

    def award_points(
        self,
        user_id: str,
        points: int,
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
        type: str = "earned",
    ) -> int:
        """Credit points and record why. Returns the new balance."""
        if type not in ("earned", "bonus"):
            raise ValueError("awards must be 'earned' or 'bonus'")
        entry = TransactionCreate(
            user_id=user_id, type=type, points=points,
            description=description, metadata=metadata or {},
        )
        with self._user_lock(user_id):
            balance = self.ledger.credit(user_id, points, description)
        try:
            self.log.append(entry)
        except Exception:
            logger.exception("Could not record %s transaction for %s", type, user_id)
        return balance
