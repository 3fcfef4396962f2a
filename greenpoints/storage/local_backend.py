import copy
import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from greenpoints.errors import (
    InsufficientPoints,
    StorageUnavailable,
    UniquenessConflict,
    VoucherNotFound,
    VoucherOutOfStock,
)
from greenpoints.schemas.voucher import VoucherCreate, VoucherResponse
from greenpoints.schemas.redemption import RedemptionCreate, RedemptionResponse
from greenpoints.schemas.transaction import TransactionCreate, TransactionResponse
from greenpoints.storage.base import StorageBackend
from greenpoints.timeutil import utcnow

logger = logging.getLogger(__name__)


def _empty_state() -> Dict[str, Any]:
    return {
        "vouchers": {},
        "user_points": {},
        "voucher_redemptions": {},
        "user_transactions": [],
    }


class LocalStorageBackend(StorageBackend):
    """Device-local fallback store kept in a JSON file.

    Survives restarts on the same machine but is never shared between
    devices, so it is only meant for development and offline use. With no
    path the data lives in memory for the lifetime of the process.

    Every mutation snapshots the whole state and rewrites the whole file, so
    a write costs time proportional to the stored history. Fine for a single
    device; anything busier belongs on the SQL backend.
    """

    name = "local"

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._lock = threading.RLock()
        self._state = self._load()

    def _load(self) -> Dict[str, Any]:
        if not self.path or not os.path.exists(self.path):
            return _empty_state()
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as exc:
            raise StorageUnavailable(f"Local store at {self.path} is unreadable") from exc
        state = _empty_state()
        state.update(data)
        return state

    def _flush(self) -> None:
        if not self.path:
            return
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=".greenpoints-", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(self._state, fh, default=str)
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    @contextmanager
    def _write(self):
        """Apply a mutation atomically: all of it reaches disk or none of it stays."""
        with self._lock:
            snapshot = copy.deepcopy(self._state)
            try:
                yield self._state
                self._flush()
            except OSError as exc:
                self._state = snapshot
                raise StorageUnavailable(f"Could not write local store: {exc}") from exc
            except Exception:
                self._state = snapshot
                raise

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _voucher_out(row: Dict[str, Any]) -> VoucherResponse:
        return VoucherResponse.model_validate(row)

    @staticmethod
    def _redemption_out(row: Dict[str, Any]) -> RedemptionResponse:
        return RedemptionResponse.model_validate(row)

    @staticmethod
    def _transaction_out(row: Dict[str, Any]) -> TransactionResponse:
        return TransactionResponse.model_validate(row)

    # ------------------------------------------------------------------
    # Vouchers
    # ------------------------------------------------------------------

    def list_vouchers(self, active_only: bool = True) -> List[VoucherResponse]:
        with self._lock:
            rows = [v for v in self._state["vouchers"].values() if v["is_active"] or not active_only]
            rows = sorted(rows, key=lambda v: (v["points_required"], v["id"]))
            return [self._voucher_out(v) for v in rows]

    def get_voucher(self, voucher_id: str) -> Optional[VoucherResponse]:
        with self._lock:
            row = self._state["vouchers"].get(voucher_id)
            return self._voucher_out(row) if row else None

    def upsert_voucher(self, voucher: VoucherCreate) -> VoucherResponse:
        with self._write() as state:
            row = voucher.model_dump()
            row["updated_at"] = utcnow().isoformat()
            state["vouchers"][voucher.id] = row
            return self._voucher_out(row)

    def decrement_stock(self, voucher_id: str) -> Optional[int]:
        with self._write() as state:
            row = state["vouchers"].get(voucher_id)
            if row is None:
                raise VoucherNotFound(voucher_id)
            if row["current_stock"] is None:
                return None
            if row["current_stock"] <= 0:
                raise VoucherOutOfStock(voucher_id)
            row["current_stock"] -= 1
            row["updated_at"] = utcnow().isoformat()
            return row["current_stock"]

    def increment_stock(self, voucher_id: str) -> Optional[int]:
        with self._write() as state:
            row = state["vouchers"].get(voucher_id)
            if row is None:
                raise VoucherNotFound(voucher_id)
            if row["current_stock"] is None:
                return None
            if row["current_stock"] < row["stock_limit"]:
                row["current_stock"] += 1
                row["updated_at"] = utcnow().isoformat()
            return row["current_stock"]

    # ------------------------------------------------------------------
    # Points
    # ------------------------------------------------------------------

    def get_points(self, user_id: str) -> int:
        with self._lock:
            account = self._state["user_points"].get(user_id)
            return int(account["points"]) if account else 0

    def debit_points(self, user_id: str, amount: int) -> int:
        with self._write() as state:
            account = state["user_points"].get(user_id)
            balance = int(account["points"]) if account else 0
            if balance < amount:
                raise InsufficientPoints(amount, balance)
            if amount == 0:
                return balance
            account["points"] = balance - amount
            account["updated_at"] = utcnow().isoformat()
            return account["points"]

    def credit_points(self, user_id: str, amount: int) -> int:
        with self._write() as state:
            account = state["user_points"].setdefault(user_id, {"points": 0})
            account["points"] = int(account["points"]) + amount
            account["updated_at"] = utcnow().isoformat()
            return account["points"]

    # ------------------------------------------------------------------
    # Redemptions
    # ------------------------------------------------------------------

    def insert_redemption(self, redemption: RedemptionCreate) -> RedemptionResponse:
        with self._write() as state:
            if any(r["voucher_code"] == redemption.voucher_code for r in state["voucher_redemptions"].values()):
                raise UniquenessConflict(f"Voucher code already issued: {redemption.voucher_code}")
            if redemption.id in state["voucher_redemptions"]:
                raise StorageUnavailable(f"Duplicate redemption id {redemption.id}")
            row = redemption.model_dump(mode="json")
            row.update(status="active", used_at=None)
            state["voucher_redemptions"][redemption.id] = row
            return self._redemption_out(row)

    def get_redemption(self, redemption_id: str) -> Optional[RedemptionResponse]:
        with self._lock:
            row = self._state["voucher_redemptions"].get(redemption_id)
            return self._redemption_out(row) if row else None

    def get_redemption_by_code(self, voucher_code: str) -> Optional[RedemptionResponse]:
        with self._lock:
            for row in self._state["voucher_redemptions"].values():
                if row["voucher_code"] == voucher_code:
                    return self._redemption_out(row)
            return None

    def list_redemptions(self, user_id: str) -> List[RedemptionResponse]:
        with self._lock:
            rows = [self._redemption_out(r) for r in self._state["voucher_redemptions"].values()
                    if r["user_id"] == user_id]
        return sorted(rows, key=lambda r: r.redeemed_at, reverse=True)

    def transition_redemption(
        self,
        redemption_id: str,
        from_status: str,
        to_status: str,
        used_at: Optional[datetime] = None,
    ) -> Optional[RedemptionResponse]:
        with self._write() as state:
            row = state["voucher_redemptions"].get(redemption_id)
            if row is None or row["status"] != from_status:
                return None
            row["status"] = to_status
            if used_at is not None:
                row["used_at"] = used_at.isoformat()
            return self._redemption_out(row)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def append_transaction(
        self, entry: TransactionCreate, entry_id: str, created_at: datetime
    ) -> TransactionResponse:
        with self._write() as state:
            row = entry.model_dump(mode="json")
            row.update(id=entry_id, created_at=created_at.isoformat())
            state["user_transactions"].append(row)
            return self._transaction_out(row)

    def list_transactions(self, user_id: str, limit: Optional[int] = None) -> List[TransactionResponse]:
        with self._lock:
            rows = [self._transaction_out(t) for t in self._state["user_transactions"]
                    if t["user_id"] == user_id]
        # newest first; entries sharing a timestamp keep reverse insertion order
        rows.reverse()
        rows.sort(key=lambda t: t.created_at, reverse=True)
        return rows if limit is None else rows[:limit]
