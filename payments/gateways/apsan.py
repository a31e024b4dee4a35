# payments/gateways/apsan.py
from __future__ import annotations

import logging
import zlib
from typing import Optional

from .. import apsan_service as api
from ..apsan_service import ApsanClient
from ..exceptions import InvalidPayment, PreconditionViolation
from ..invoice import Invoice, Receipt, RedirectionForm
from ..translator import UNKNOWN_ERROR_MESSAGE, invalid_payment, translate
from .base import PaymentGatewayBase

log = logging.getLogger("payments")

# تبدیل تومان به ریال
AMOUNT_FACTOR = 10


class ApsanGateway(PaymentGatewayBase):
    """
    درایور درگاه آپسان برای یک تراکنش.

    purchase → pay → verify؛ در صورت شکست verify، rollback خودکار انجام می‌شود.
    refund و refund_without_limitation را فراخوان بعد از verify صدا می‌زند.
    نمونه را بین چند تراکنش یا چند thread به اشتراک نگذارید.
    """

    name = "apsan"

    def __init__(self, invoice: Invoice, options=None, client: Optional[ApsanClient] = None):
        super().__init__(invoice, config=api.get_cfg(options))
        self.client = client or ApsanClient(self.config)

    # ───────────── Helpers ─────────────
    @property
    def amount_rial(self) -> int:
        return self.invoice.amount * AMOUNT_FACTOR

    def _require_transaction_id(self) -> str:
        tx = self.invoice.transaction_id
        if not tx:
            raise PreconditionViolation("فاکتور شناسه‌ی تراکنش ندارد؛ ابتدا purchase را صدا بزنید.")
        return tx

    def _translate(self, status: int, strict_success: bool = False) -> bool:
        return translate(status, strict_success=strict_success, messages=self.config.messages)

    def resolve_unique_id(self) -> str:
        """شناسه‌ی یکتای ارسالی به بانک؛ یک‌بار از crc32 ساخته و در details کش می‌شود."""
        cached = self.invoice.detail("uuid")
        if cached:
            return str(cached)
        unique_id = str(zlib.crc32(self.invoice.uuid.encode("utf-8")))
        self.invoice.set_detail("uuid", unique_id)
        return unique_id

    # ───────────── State machine ─────────────
    def purchase(self) -> str:
        if self.invoice.transaction_id:
            # توکن قبلاً گرفته شده؛ توکن دوم در بانک بلااستفاده می‌ماند
            raise PreconditionViolation("برای این فاکتور قبلاً توکن دریافت شده است.")

        unique_id = self.resolve_unique_id()
        res = self.client.call("POST", api.TOKEN_URL, {
            "amount": self.amount_rial,
            "redirectUri": f"{self.config.redirect_uri}/{unique_id}",
            "terminalId": self.config.terminal_id,
            "uniqueIdentifier": unique_id,
        })

        if res.status_code != 200:
            log.warning("APSAN token rejected invoice=%s status=%s", self.invoice.uuid, res.status_code)
            raise invalid_payment(res.status_code, messages=self.config.messages)

        token = res.body.get("result") if isinstance(res.body, dict) else None
        if not token:
            log.warning("APSAN token missing in response invoice=%s body=%s", self.invoice.uuid, res.body)
            raise InvalidPayment(UNKNOWN_ERROR_MESSAGE, status_code=res.status_code)

        self.invoice.transaction_id = str(token)
        log.info("APSAN purchase ok invoice=%s unique_id=%s", self.invoice.uuid, unique_id)
        return self.invoice.transaction_id

    def pay(self) -> RedirectionForm:
        return RedirectionForm(
            action=self.config.bank_api_url + api.PAYMENT_URL,
            inputs={"token": self._require_transaction_id()},
            method="POST",
        )

    def verify(self) -> Receipt:
        token = self._require_transaction_id()
        res = self.client.call("POST", api.ACKNOWLEDGE_URL, {"token": token})

        result = res.body.get("result") if isinstance(res.body, dict) else None
        grant_id = result.get("grantId") if isinstance(result, dict) else None
        if res.status_code == 200 and grant_id and result.get("acknowledged"):
            log.info("APSAN verify ok invoice=%s grant=%s", self.invoice.uuid, grant_id)
            return Receipt(self.name, str(grant_id))

        verify_status = res.status_code
        log.warning("APSAN verify failed invoice=%s status=%s; rolling back", self.invoice.uuid, verify_status)

        # برگشت پول به کاربر؛ نتیجه‌ی rollback پیام خطای verify را عوض نمی‌کند
        try:
            self.rollback()
        except InvalidPayment as e:
            log.error("APSAN rollback failed invoice=%s status=%s: %s", self.invoice.uuid, e.status_code, e.message)

        raise invalid_payment(verify_status, messages=self.config.messages)

    # ───────────── Compensating operations ─────────────
    def rollback(self) -> bool:
        res = self.client.call("POST", api.ROLLBACK_URL, {"token": self._require_transaction_id()})
        ok = self._translate(res.status_code, strict_success=True)
        log.info("APSAN rollback ok invoice=%s", self.invoice.uuid)
        return ok

    def refund(self) -> bool:
        self._require_transaction_id()
        unique_id = self.invoice.detail("uuid")
        if not unique_id:
            raise PreconditionViolation("شناسه‌ی یکتای درگاه (uuid) برای این فاکتور ثبت نشده است.")

        res = self.client.call("POST", api.REFUND_URL, {
            "amount": self.amount_rial,
            "uniqueIdentifier": unique_id,
            "resNum": "",
        })
        ok = self._translate(res.status_code, strict_success=True)
        log.info("APSAN refund ok invoice=%s amount=%s", self.invoice.uuid, self.amount_rial)
        return ok

    def refund_without_limitation(self, reference_id) -> bool:
        if not reference_id:
            raise PreconditionViolation("شناسه‌ی مرجع (grantId) برای استرداد الزامی است.")

        res = self.client.call("POST", api.NOLIMIT_REFUND_URL, {
            "amount": self.amount_rial,
            "grantId": reference_id,
            "resNum": "",
        })
        ok = self._translate(res.status_code, strict_success=True)
        log.info("APSAN nolimit refund ok invoice=%s grant=%s", self.invoice.uuid, reference_id)
        return ok
