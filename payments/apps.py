# payments/apps.py
from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    name = "payments"
    verbose_name = "پرداخت (آپسان)"
