# payments/invoice.py
"""
اشیای داده‌ای که درایور درگاه با آن‌ها کار می‌کند:
Invoice (فاکتور)، Receipt (رسید) و RedirectionForm (فرم ارسال به بانک).
"""
from __future__ import annotations

import uuid as _uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from django.utils import timezone
from django.utils.html import format_html, format_html_join

from .exceptions import PreconditionViolation


class Invoice:
    def __init__(self, amount: int, uuid: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        # مبلغ به تومان
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValueError("amount must be a positive integer")
        self.amount = amount
        self.uuid = str(uuid or _uuid.uuid4())
        self.details: Dict[str, Any] = dict(details or {})
        self._transaction_id: Optional[str] = None

    def __repr__(self):
        return f"<Invoice {self.uuid} amount={self.amount} tx={self._transaction_id!r}>"

    # ───────────── details ─────────────
    def detail(self, key: str, default: Any = None) -> Any:
        return self.details.get(key, default)

    def set_detail(self, key: str, value: Any) -> None:
        self.details[key] = value

    # ───────────── transaction id ─────────────
    @property
    def transaction_id(self) -> Optional[str]:
        return self._transaction_id

    @transaction_id.setter
    def transaction_id(self, value: str) -> None:
        if not value:
            raise ValueError("transaction id cannot be empty")
        if self._transaction_id and self._transaction_id != value:
            raise PreconditionViolation("شناسه‌ی تراکنش این فاکتور قبلاً ثبت شده است.")
        self._transaction_id = str(value)


@dataclass(frozen=True)
class Receipt:
    driver: str
    reference_id: str
    date: datetime = field(default_factory=timezone.now)


@dataclass(frozen=True)
class RedirectionForm:
    action: str
    inputs: Dict[str, Any] = field(default_factory=dict)
    method: str = "POST"

    def to_dict(self) -> dict:
        """برای فرانت (SPA) که خودش فرم را می‌سازد."""
        return {"action": self.action, "inputs": dict(self.inputs), "method": self.method}

    def render(self) -> str:
        fields = format_html_join(
            "\n",
            '<input type="hidden" name="{}" value="{}">',
            ((k, v) for k, v in self.inputs.items()),
        )
        return format_html(
            '<form id="bank-redirect" action="{}" method="{}">\n{}\n</form>\n'
            '<script>document.getElementById("bank-redirect").submit();</script>',
            self.action,
            self.method.lower(),
            fields,
        )
