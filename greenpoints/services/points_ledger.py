import logging

from greenpoints.storage.base import StorageBackend

logger = logging.getLogger(__name__)


class PointsLedger:
    """Authoritative spendable balance per user"""

    def __init__(self, storage: StorageBackend):
        self.storage = storage

    def get_balance(self, user_id: str) -> int:
        return self.storage.get_points(user_id)

    def debit(self, user_id: str, amount: int) -> int:
        """Spend points. Raises InsufficientPoints when the balance does not cover amount."""
        if amount < 0:
            raise ValueError("debit amount must not be negative")
        balance = self.storage.debit_points(user_id, amount)
        logger.debug("Debited %s points from %s, balance %s", amount, user_id, balance)
        return balance

    def credit(self, user_id: str, amount: int, reason: str) -> int:
        if amount <= 0:
            raise ValueError("credit amount must be positive")
        balance = self.storage.credit_points(user_id, amount)
        logger.info("Credited %s points to %s (%s), balance %s", amount, user_id, reason, balance)
        return balance
