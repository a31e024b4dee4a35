# payments/management/commands/apsan_refund.py
from django.core.management.base import BaseCommand, CommandError

from payments.exceptions import PaymentError
from payments.gateways.apsan import ApsanGateway
from payments.invoice import Invoice


class Command(BaseCommand):
    help = "استرداد وجه یک تراکنش آپسان (عادی با --token/--unique-id یا بدون سقف با --grant-id)"

    def add_arguments(self, parser):
        parser.add_argument("--amount", type=int, required=True, help="مبلغ به تومان")
        parser.add_argument("--unique-id", dest="unique_id", help="uniqueIdentifier ارسال‌شده در Token")
        parser.add_argument("--token", help="شناسه‌ی تراکنش (توکن) دریافتی از purchase")
        parser.add_argument("--grant-id", dest="grant_id", help="grantId رسید؛ استرداد بدون محدودیت")

    def handle(self, *args, **opts):
        try:
            invoice = Invoice(opts["amount"])
        except ValueError as e:
            raise CommandError(str(e))

        if opts.get("unique_id"):
            invoice.set_detail("uuid", opts["unique_id"])
        if opts.get("token"):
            invoice.transaction_id = opts["token"]

        try:
            gateway = ApsanGateway(invoice)
            if opts.get("grant_id"):
                gateway.refund_without_limitation(opts["grant_id"])
                label = f"grant={opts['grant_id']}"
            else:
                gateway.refund()
                label = f"token={opts.get('token')}"
        except PaymentError as e:
            raise CommandError(e.message or str(e))

        self.stdout.write(self.style.SUCCESS(f"استرداد {invoice.amount} تومان انجام شد ({label})."))
