# payments/gateways/__init__.py
from django.conf import settings

from ..exceptions import GatewayConfigError
from ..invoice import Invoice
from .base import PaymentGatewayBase
from .apsan import ApsanGateway


def get_gateway(invoice: Invoice, name=None) -> PaymentGatewayBase:
    cfg = getattr(settings, "PAYMENTS", {})
    name = (name or cfg.get("DEFAULT_GATEWAY", "apsan")).lower()
    options = cfg.get("GATEWAYS", {}).get(name)

    if name == ApsanGateway.name:
        return ApsanGateway(invoice, options=options)

    raise GatewayConfigError(f"Unknown gateway: {name}")
