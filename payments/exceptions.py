# payments/exceptions.py
from __future__ import annotations

from typing import Optional


class PaymentError(Exception):
    """پایه‌ی همه‌ی خطاهای پرداخت"""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class InvalidPayment(PaymentError):
    """درگاه عملیات را رد کرد؛ message همان متنی است که به کاربر نشان می‌دهیم."""

    def __init__(self, message: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        # فقط برای لاگ؛ در پیام کاربر نمی‌آید
        self.status_code = status_code


class PreconditionViolation(PaymentError):
    """Operation called before the step it depends on (e.g. verify before purchase)."""


class GatewayTransportError(PaymentError):
    """DNS / timeout / connection errors talking to the bank."""


class GatewayConfigError(PaymentError):
    """Missing or invalid gateway settings."""
