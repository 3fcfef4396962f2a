from enum import Enum


class ErrorCode(str, Enum):
    VOUCHER_NOT_FOUND = "voucher_not_found"
    VOUCHER_OUT_OF_STOCK = "voucher_out_of_stock"
    INSUFFICIENT_POINTS = "insufficient_points"
    STORAGE_UNAVAILABLE = "storage_unavailable"
    UNIQUENESS_CONFLICT = "uniqueness_conflict"
    REDEMPTION_NOT_FOUND = "redemption_not_found"
    REDEMPTION_NOT_ACTIVE = "redemption_not_active"
    UNEXPECTED = "unexpected"


# Messages the UI layer shows instead of raw storage errors
USER_MESSAGES = {
    ErrorCode.VOUCHER_NOT_FOUND: "This voucher is no longer available.",
    ErrorCode.VOUCHER_OUT_OF_STOCK: "This voucher is sold out.",
    ErrorCode.INSUFFICIENT_POINTS: "Not enough points.",
    ErrorCode.STORAGE_UNAVAILABLE: "Please try again.",
    ErrorCode.UNIQUENESS_CONFLICT: "Please try again.",
    ErrorCode.REDEMPTION_NOT_FOUND: "Redemption not found.",
    ErrorCode.REDEMPTION_NOT_ACTIVE: "This voucher has already been used or has expired.",
    ErrorCode.UNEXPECTED: "Something went wrong.",
}

HTTP_STATUS = {
    ErrorCode.VOUCHER_NOT_FOUND: 404,
    ErrorCode.VOUCHER_OUT_OF_STOCK: 409,
    ErrorCode.INSUFFICIENT_POINTS: 400,
    ErrorCode.STORAGE_UNAVAILABLE: 503,
    ErrorCode.UNIQUENESS_CONFLICT: 503,
    ErrorCode.REDEMPTION_NOT_FOUND: 404,
    ErrorCode.REDEMPTION_NOT_ACTIVE: 409,
    ErrorCode.UNEXPECTED: 500,
}


class RewardsError(Exception):
    """Base class for every error the redemption core reports."""

    code: ErrorCode = ErrorCode.UNEXPECTED

    @property
    def user_message(self) -> str:
        return USER_MESSAGES[self.code]

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.code]


class VoucherNotFound(RewardsError):
    code = ErrorCode.VOUCHER_NOT_FOUND

    def __init__(self, voucher_id: str):
        self.voucher_id = voucher_id
        super().__init__(f"Voucher not found: {voucher_id}")


class VoucherOutOfStock(RewardsError):
    code = ErrorCode.VOUCHER_OUT_OF_STOCK

    def __init__(self, voucher_id: str):
        self.voucher_id = voucher_id
        super().__init__(f"Voucher out of stock: {voucher_id}")


class InsufficientPoints(RewardsError):
    code = ErrorCode.INSUFFICIENT_POINTS

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(f"Insufficient points. Required: {required}, Available: {available}")

    @property
    def user_message(self) -> str:
        return f"Not enough points. You need {self.required - self.available} more."


class StorageUnavailable(RewardsError):
    """Transient storage failure; the caller may retry the whole operation."""

    code = ErrorCode.STORAGE_UNAVAILABLE


class UniquenessConflict(RewardsError):
    code = ErrorCode.UNIQUENESS_CONFLICT


class RedemptionNotFound(RewardsError):
    code = ErrorCode.REDEMPTION_NOT_FOUND

    def __init__(self, ref: str):
        self.ref = ref
        super().__init__(f"Redemption not found: {ref}")


class RedemptionNotActive(RewardsError):
    code = ErrorCode.REDEMPTION_NOT_ACTIVE

    def __init__(self, redemption_id: str, status: str):
        self.redemption_id = redemption_id
        self.status = status
        super().__init__(f"Redemption {redemption_id} is {status}")


class Unexpected(RewardsError):
    code = ErrorCode.UNEXPECTED
