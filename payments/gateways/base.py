# payments/gateways/base.py
from abc import ABC, abstractmethod

from ..invoice import Invoice, Receipt, RedirectionForm


class PaymentGatewayBase(ABC):
    """قراردادی که لایه‌ی بالاتر از هر درایور انتظار دارد؛ یک نمونه برای یک فاکتور."""

    name: str = "base"

    def __init__(self, invoice: Invoice, config=None):
        self.invoice = invoice
        self.config = config

    @abstractmethod
    def purchase(self) -> str:
        """Request a transaction token and store it on the invoice.
        Return: the transaction id"""
        raise NotImplementedError

    @abstractmethod
    def pay(self) -> RedirectionForm:
        """Build the redirect the user must follow to the bank."""
        raise NotImplementedError

    @abstractmethod
    def verify(self) -> Receipt:
        """Handle the user's return from the bank.
        Return: Receipt, or raise InvalidPayment"""
        raise NotImplementedError
