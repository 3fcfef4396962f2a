import secrets
import string
import time
from typing import Callable, Optional

CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_voucher_code(voucher_id: str, now_ms: Optional[int] = None) -> str:
    """Build a redemption code: voucher prefix, clock suffix, random tail.

    ``amazon-50`` redeemed at ...123456 ms gives e.g. ``AMA123456K7QZ``.
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    prefix = voucher_id[:3].upper()
    suffix = str(now_ms)[-6:].rjust(6, "0")
    tail = "".join(secrets.choice(CODE_ALPHABET) for _ in range(4))
    return f"{prefix}{suffix}{tail}"


def unique_voucher_code(
    voucher_id: str,
    exists: Callable[[str], bool],
    max_attempts: int,
) -> Optional[str]:
    """First generated code not yet issued, or None after max_attempts."""
    for _ in range(max_attempts):
        code = generate_voucher_code(voucher_id)
        if not exists(code):
            return code
    return None
