import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

import requests
from django.conf import settings

from .exceptions import GatewayConfigError, GatewayTransportError

log = logging.getLogger("payments")

# مسیرها نسبت به BANK_API_URL
TOKEN_URL       = "Token"
PAYMENT_URL     = "payment"
ACKNOWLEDGE_URL = "acknowledge"
ROLLBACK_URL    = "rollback"
REFUND_URL      = "refund"
NOLIMIT_REFUND_URL = "nolimitrefund"
TRANSACTION_URL = "transaction/status"

DEFAULT_TIMEOUT = 25


@dataclass(frozen=True)
class ApsanConfig:
    bank_api_url: str   # همیشه با / تمام می‌شود
    terminal_id: str
    redirect_uri: str   # بدون / انتهایی؛ uuid به آن اضافه می‌شود
    username: str
    password: str
    timeout: float = DEFAULT_TIMEOUT
    messages: Mapping[int, str] = field(default_factory=dict)

    def __repr__(self):
        # رمز عبور در لاگ نیاید
        return f"ApsanConfig(bank_api_url={self.bank_api_url!r}, terminal_id={self.terminal_id!r})"


def get_cfg(options: Optional[Mapping[str, Any]] = None) -> ApsanConfig:
    if options is None:
        options = (getattr(settings, "PAYMENTS", {}) or {}).get("GATEWAYS", {}).get("apsan", {}) or {}

    missing = [k for k in ("BANK_API_URL", "TERMINAL_ID", "USERNAME", "PASSWORD") if not options.get(k)]
    if missing:
        raise GatewayConfigError(f"Apsan gateway is not configured: missing {', '.join(missing)}")

    try:
        timeout = float(options.get("TIMEOUT") or DEFAULT_TIMEOUT)
    except (TypeError, ValueError) as e:
        raise GatewayConfigError(f"invalid TIMEOUT: {options.get('TIMEOUT')!r}") from e

    return ApsanConfig(
        bank_api_url=str(options["BANK_API_URL"]).rstrip("/") + "/",
        terminal_id=str(options["TERMINAL_ID"]),
        redirect_uri=str(options.get("REDIRECT_URI") or "").rstrip("/"),
        username=str(options["USERNAME"]),
        password=str(options["PASSWORD"]),
        timeout=timeout,
        messages=dict(options.get("MESSAGES") or {}),
    )


@dataclass(frozen=True)
class GatewayResponse:
    status_code: int
    body: Any


class ApsanClient:
    """
    فراخوانی JSON با Basic-Auth روی API آپسان.
    وضعیت HTTP غیر 200 خطا نیست و به صاحب فراخوانی برگردانده می‌شود؛
    فقط خطای شبکه به GatewayTransportError تبدیل می‌شود.
    """

    def __init__(self, cfg: ApsanConfig, session: Optional[requests.Session] = None):
        self.cfg = cfg
        self.session = session or requests.Session()

    def _headers(self) -> dict:
        raw = f"{self.cfg.username}:{self.cfg.password}".encode("utf-8")
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Authorization": "Basic " + base64.b64encode(raw).decode("ascii"),
        }

    def call(self, method: str, route: str, payload: Optional[dict] = None) -> GatewayResponse:
        url = self.cfg.bank_api_url + route
        try:
            r = self.session.request(
                method,
                url,
                json=payload or {},
                headers=self._headers(),
                timeout=self.cfg.timeout,
            )
        except requests.RequestException as e:
            log.error("APSAN %s %s transport error: %s", method, route, e)
            raise GatewayTransportError(f"Apsan {route} request failed: {e}") from e

        try:
            body = r.json()
        except ValueError:
            # بدنه‌ی خالی یا HTML (مثلاً 502 از پراکسی)
            log.warning("APSAN %s non-JSON body status=%s: %s", route, r.status_code, (r.text or "")[:300])
            body = {}

        log.debug("APSAN %s %s -> %s", method, route, r.status_code)
        return GatewayResponse(status_code=r.status_code, body=body if body is not None else {})
