import uuid
from typing import List

from greenpoints.schemas.transaction import AuditReport, TransactionCreate, TransactionResponse
from greenpoints.services.points_ledger import PointsLedger
from greenpoints.storage.base import StorageBackend
from greenpoints.timeutil import utcnow

DEFAULT_HISTORY_LIMIT = 100


class TransactionLog:
    """Append-only audit trail of point movements.

    Not authoritative for balances; PointsLedger is. ``audit`` compares the two.
    """

    def __init__(self, storage: StorageBackend):
        self.storage = storage

    def append(self, entry: TransactionCreate) -> TransactionResponse:
        return self.storage.append_transaction(entry, str(uuid.uuid4()), utcnow())

    def list_for_user(self, user_id: str, limit: int = DEFAULT_HISTORY_LIMIT) -> List[TransactionResponse]:
        limit = min(max(limit, 1), 500)
        return self.storage.list_transactions(user_id, limit)

    def recompute_balance(self, user_id: str) -> int:
        total = 0
        for entry in self.storage.list_transactions(user_id):
            if entry.type == "redeemed":
                total -= abs(entry.points)
            else:
                total += entry.points
        return total

    def audit(self, user_id: str, ledger: PointsLedger) -> AuditReport:
        ledger_balance = ledger.get_balance(user_id)
        recomputed = self.recompute_balance(user_id)
        return AuditReport(
            user_id=user_id,
            ledger_balance=ledger_balance,
            recomputed_balance=recomputed,
            consistent=ledger_balance == recomputed,
        )
