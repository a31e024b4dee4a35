# payments/translator.py
from __future__ import annotations

from typing import Mapping, Optional

from .exceptions import InvalidPayment

STATUS_MESSAGES = {
    400: "خطا در ورودی‌های درخواست یا انجام عملیات",
    401: "خطا در اطلاعات کاربری یا رمز عبور",
    500: "خطایی در سیستم رخ داده است",
}

UNKNOWN_ERROR_MESSAGE = "یک خطای ناشناخته در سیستم رخ داده است."


def message_for(status: int, messages: Optional[Mapping[int, str]] = None) -> str:
    table = dict(STATUS_MESSAGES)
    if messages:
        # کلیدهای settings ممکن است رشته باشند ("401")
        table.update({int(k): v for k, v in messages.items()})
    return table.get(status, UNKNOWN_ERROR_MESSAGE)


def invalid_payment(status: int, messages: Optional[Mapping[int, str]] = None) -> InvalidPayment:
    """خطای ترجمه‌شده را می‌سازد؛ raise کردنش با فراخوان است."""
    return InvalidPayment(message_for(status, messages), status_code=status)


def translate(status: int, strict_success: bool = False, messages: Optional[Mapping[int, str]] = None) -> bool:
    """
    وضعیت HTTP را به نتیجه تبدیل می‌کند.
    strict_success=True: فقط 200 موفق است و True برمی‌گردد.
    در بقیه‌ی حالت‌ها همیشه InvalidPayment با پیام جدول بالا raise می‌شود.
    """
    if strict_success and status == 200:
        return True
    raise invalid_payment(status, messages)
