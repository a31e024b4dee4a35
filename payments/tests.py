import base64
import zlib
from io import StringIO
from unittest import mock

import requests
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import SimpleTestCase, override_settings

from .apsan_service import ApsanClient, GatewayResponse, get_cfg
from .exceptions import (
    GatewayConfigError,
    GatewayTransportError,
    InvalidPayment,
    PreconditionViolation,
)
from .gateways import get_gateway
from .gateways.apsan import ApsanGateway
from .invoice import Invoice, Receipt, RedirectionForm
from .translator import STATUS_MESSAGES, UNKNOWN_ERROR_MESSAGE, invalid_payment, translate

APSAN_OPTIONS = {
    "BANK_API_URL": "https://bank.test/api",
    "TERMINAL_ID": "T-100",
    "REDIRECT_URI": "https://shop.test/callback/",
    "USERNAME": "shop",
    "PASSWORD": "secret",
    "TIMEOUT": 5,
    "MESSAGES": {},
}
PAYMENTS_SETTINGS = {"DEFAULT_GATEWAY": "apsan", "GATEWAYS": {"apsan": APSAN_OPTIONS}}


def http_response(status=200, body=None):
    r = mock.Mock(spec=requests.Response)
    r.status_code = status
    if body is None:
        r.json.side_effect = ValueError("no json")
        r.text = ""
    else:
        r.json.return_value = body
        r.text = str(body)
    return r


def sent_payload(request_mock, index=-1):
    return request_mock.call_args_list[index].kwargs["json"]


def sent_url(request_mock, index=-1):
    return request_mock.call_args_list[index].args[1]


@override_settings(PAYMENTS=PAYMENTS_SETTINGS)
class ApsanGatewayTest(SimpleTestCase):
    def setUp(self):
        self.invoice = Invoice(1000, uuid="2f1c0e7e-6a0b-4d8e-9a4c-0d6f2d4c9b11")
        patcher = mock.patch("requests.Session.request")
        self.request = patcher.start()
        self.addCleanup(patcher.stop)
        self.gateway = ApsanGateway(self.invoice)

    def _purchase(self, token="TOKEN-1"):
        self.request.return_value = http_response(200, {"result": token})
        return self.gateway.purchase()

    # ───────────── purchase ─────────────
    def test_purchase_stores_token_as_transaction_id(self):
        token = self._purchase()
        self.assertEqual(token, "TOKEN-1")
        self.assertEqual(self.invoice.transaction_id, "TOKEN-1")

        unique_id = str(zlib.crc32(self.invoice.uuid.encode("utf-8")))
        self.assertEqual(sent_url(self.request), "https://bank.test/api/Token")
        self.assertEqual(sent_payload(self.request), {
            "amount": 10000,
            "redirectUri": f"https://shop.test/callback/{unique_id}",
            "terminalId": "T-100",
            "uniqueIdentifier": unique_id,
        })

    def test_purchase_sends_basic_auth_json_headers(self):
        self._purchase()
        kwargs = self.request.call_args.kwargs
        expected = "Basic " + base64.b64encode(b"shop:secret").decode("ascii")
        self.assertEqual(kwargs["headers"]["Authorization"], expected)
        self.assertEqual(kwargs["headers"]["Content-Type"], "application/json")
        self.assertEqual(kwargs["timeout"], 5.0)
        self.assertEqual(self.request.call_args.args[0], "POST")

    def test_purchase_reuses_cached_uuid_detail(self):
        self.invoice.set_detail("uuid", "777")
        self._purchase()
        self.assertEqual(sent_payload(self.request)["uniqueIdentifier"], "777")
        self.assertEqual(sent_payload(self.request)["redirectUri"], "https://shop.test/callback/777")

    def test_resolve_unique_id_is_idempotent(self):
        first = self.gateway.resolve_unique_id()
        second = self.gateway.resolve_unique_id()
        self.assertEqual(first, second)
        self.assertEqual(self.invoice.detail("uuid"), first)
        self.assertNotEqual(first, self.invoice.uuid)

    def test_purchase_rejected_status_is_translated(self):
        self.request.return_value = http_response(401, {"error": "unauthorized"})
        with self.assertRaises(InvalidPayment) as ctx:
            self.gateway.purchase()
        self.assertEqual(ctx.exception.message, STATUS_MESSAGES[401])
        self.assertIsNone(self.invoice.transaction_id)
        self.assertEqual(self.request.call_count, 1)

    def test_purchase_without_result_is_invalid(self):
        self.request.return_value = http_response(200, {})
        with self.assertRaises(InvalidPayment) as ctx:
            self.gateway.purchase()
        self.assertEqual(ctx.exception.message, UNKNOWN_ERROR_MESSAGE)
        self.assertIsNone(self.invoice.transaction_id)

    def test_purchase_twice_does_not_request_second_token(self):
        self._purchase()
        with self.assertRaises(PreconditionViolation):
            self.gateway.purchase()
        self.assertEqual(self.request.call_count, 1)
        self.assertEqual(self.invoice.transaction_id, "TOKEN-1")

    def test_purchase_transport_error_is_wrapped(self):
        self.request.side_effect = requests.ConnectionError("connection reset")
        with self.assertRaises(GatewayTransportError) as ctx:
            self.gateway.purchase()
        self.assertIsInstance(ctx.exception.__cause__, requests.ConnectionError)

    # ───────────── pay ─────────────
    def test_pay_redirects_with_purchased_token(self):
        token = self._purchase("TOKEN-XYZ")
        calls = self.request.call_count

        form = self.gateway.pay()

        self.assertIsInstance(form, RedirectionForm)
        self.assertEqual(form.action, "https://bank.test/api/payment")
        self.assertEqual(form.method, "POST")
        self.assertEqual(form.inputs, {"token": token})
        self.assertEqual(self.request.call_count, calls)

    def test_pay_before_purchase_fails_fast(self):
        with self.assertRaises(PreconditionViolation):
            self.gateway.pay()
        self.request.assert_not_called()

    # ───────────── verify ─────────────
    def test_verify_success_returns_receipt_without_rollback(self):
        self._purchase()
        self.request.return_value = http_response(200, {"result": {"acknowledged": True, "grantId": "G1"}})

        receipt = self.gateway.verify()

        self.assertIsInstance(receipt, Receipt)
        self.assertEqual(receipt.driver, "apsan")
        self.assertEqual(receipt.reference_id, "G1")
        self.assertEqual(sent_url(self.request), "https://bank.test/api/acknowledge")
        self.assertEqual(sent_payload(self.request), {"token": "TOKEN-1"})
        # Token + acknowledge
        self.assertEqual(self.request.call_count, 2)

    def test_verify_401_rolls_back_and_raises(self):
        self._purchase()
        self.request.side_effect = [
            http_response(401, {}),
            http_response(200, {"result": True}),
        ]

        with self.assertRaises(InvalidPayment) as ctx:
            self.gateway.verify()

        self.assertEqual(ctx.exception.message, "خطا در اطلاعات کاربری یا رمز عبور")
        self.assertEqual(sent_url(self.request), "https://bank.test/api/rollback")
        self.assertEqual(sent_payload(self.request), {"token": "TOKEN-1"})
        rollbacks = [c for c in self.request.call_args_list if c.args[1].endswith("/rollback")]
        self.assertEqual(len(rollbacks), 1)

    def test_verify_not_acknowledged_uses_generic_message(self):
        self._purchase()
        self.request.side_effect = [
            http_response(200, {"result": {"acknowledged": False, "grantId": "G2"}}),
            http_response(200, {}),
        ]
        with self.assertRaises(InvalidPayment) as ctx:
            self.gateway.verify()
        self.assertEqual(ctx.exception.message, UNKNOWN_ERROR_MESSAGE)
        self.assertTrue(sent_url(self.request).endswith("/rollback"))

    def test_verify_keeps_original_error_when_rollback_fails(self):
        self._purchase()
        self.request.side_effect = [
            http_response(500, None),
            http_response(400, {}),
        ]
        with self.assertRaises(InvalidPayment) as ctx:
            self.gateway.verify()
        self.assertEqual(ctx.exception.message, STATUS_MESSAGES[500])
        self.assertEqual(ctx.exception.status_code, 500)

    def test_verify_acknowledged_without_grant_id_rolls_back(self):
        self._purchase()
        self.request.side_effect = [
            http_response(200, {"result": {"acknowledged": True}}),
            http_response(200, {}),
        ]
        with self.assertRaises(InvalidPayment) as ctx:
            self.gateway.verify()
        self.assertEqual(ctx.exception.message, UNKNOWN_ERROR_MESSAGE)
        self.assertEqual(sent_url(self.request), "https://bank.test/api/rollback")

    def test_verify_rollback_transport_error_propagates(self):
        self._purchase()
        self.request.side_effect = [
            http_response(500, {}),
            requests.ConnectionError("connection reset"),
        ]
        with self.assertRaises(GatewayTransportError) as ctx:
            self.gateway.verify()
        self.assertIsInstance(ctx.exception.__cause__, requests.ConnectionError)
        self.assertEqual(sent_url(self.request), "https://bank.test/api/rollback")

    def test_verify_before_purchase_fails_fast(self):
        with self.assertRaises(PreconditionViolation):
            self.gateway.verify()
        self.request.assert_not_called()

    # ───────────── compensating ─────────────
    def test_rollback_success(self):
        self._purchase()
        self.request.return_value = http_response(200, {})
        self.assertTrue(self.gateway.rollback())

    def test_refund_sends_rial_amount_and_unique_id(self):
        self._purchase()
        self.request.return_value = http_response(200, {})

        self.assertTrue(self.gateway.refund())

        self.assertEqual(sent_url(self.request), "https://bank.test/api/refund")
        self.assertEqual(sent_payload(self.request), {
            "amount": 10000,
            "uniqueIdentifier": self.invoice.detail("uuid"),
            "resNum": "",
        })

    def test_refund_unlisted_status_raises_unknown_error(self):
        self._purchase()
        self.request.return_value = http_response(404, {})
        with self.assertRaises(InvalidPayment) as ctx:
            self.gateway.refund()
        self.assertEqual(ctx.exception.message, "یک خطای ناشناخته در سیستم رخ داده است.")

    def test_refund_uses_http_status_not_body_field(self):
        self._purchase()
        self.request.return_value = http_response(500, {"status_code": 200})
        with self.assertRaises(InvalidPayment):
            self.gateway.refund()

    def test_refund_before_purchase_fails_fast(self):
        with self.assertRaises(PreconditionViolation):
            self.gateway.refund()
        self.request.assert_not_called()

    def test_refund_without_limitation(self):
        self.request.return_value = http_response(200, {})

        self.assertTrue(self.gateway.refund_without_limitation("G1"))

        self.assertEqual(sent_url(self.request), "https://bank.test/api/nolimitrefund")
        self.assertEqual(sent_payload(self.request), {"amount": 10000, "grantId": "G1", "resNum": ""})

    def test_refund_without_limitation_rejected(self):
        self.request.return_value = http_response(400, {})
        with self.assertRaises(InvalidPayment) as ctx:
            self.gateway.refund_without_limitation("G1")
        self.assertEqual(ctx.exception.message, STATUS_MESSAGES[400])

    def test_refund_without_limitation_requires_reference(self):
        with self.assertRaises(PreconditionViolation):
            self.gateway.refund_without_limitation("")
        self.request.assert_not_called()


class TranslatorTest(SimpleTestCase):
    def test_strict_success(self):
        self.assertTrue(translate(200, strict_success=True))

    def test_non_strict_200_is_an_error(self):
        with self.assertRaises(InvalidPayment) as ctx:
            translate(200)
        self.assertEqual(ctx.exception.message, UNKNOWN_ERROR_MESSAGE)

    def test_table_messages(self):
        for status, message in STATUS_MESSAGES.items():
            with self.subTest(status=status):
                with self.assertRaises(InvalidPayment) as ctx:
                    translate(status, strict_success=True)
                self.assertEqual(ctx.exception.message, message)
                self.assertNotIn(str(status), ctx.exception.message)

    def test_invalid_payment_builds_without_raising(self):
        error = invalid_payment(500)
        self.assertIsInstance(error, InvalidPayment)
        self.assertEqual(error.message, STATUS_MESSAGES[500])
        self.assertEqual(error.status_code, 500)

    def test_message_override(self):
        with self.assertRaises(InvalidPayment) as ctx:
            translate(401, messages={"401": "invalid credentials"})
        self.assertEqual(ctx.exception.message, "invalid credentials")


class InvoiceTest(SimpleTestCase):
    def test_rejects_non_positive_amount(self):
        for amount in (0, -5, 10.5, True):
            with self.subTest(amount=amount):
                with self.assertRaises(ValueError):
                    Invoice(amount)

    def test_generates_uuid(self):
        self.assertTrue(Invoice(10).uuid)
        self.assertNotEqual(Invoice(10).uuid, Invoice(10).uuid)

    def test_transaction_id_is_set_once(self):
        invoice = Invoice(10)
        invoice.transaction_id = "A"
        invoice.transaction_id = "A"
        with self.assertRaises(PreconditionViolation):
            invoice.transaction_id = "B"
        self.assertEqual(invoice.transaction_id, "A")

    def test_redirection_form_render_escapes_values(self):
        form = RedirectionForm("https://bank.test/payment", {"token": '"><x'})
        html = form.render()
        self.assertIn('action="https://bank.test/payment"', html)
        self.assertIn('method="post"', html)
        self.assertIn("&quot;&gt;&lt;x", html)
        self.assertEqual(form.to_dict()["inputs"], {"token": '"><x'})


class ConfigTest(SimpleTestCase):
    def test_get_cfg_normalizes_urls(self):
        cfg = get_cfg(APSAN_OPTIONS)
        self.assertEqual(cfg.bank_api_url, "https://bank.test/api/")
        self.assertEqual(cfg.redirect_uri, "https://shop.test/callback")
        self.assertNotIn("secret", repr(cfg))

    def test_get_cfg_missing_credentials(self):
        options = dict(APSAN_OPTIONS, PASSWORD="")
        with self.assertRaises(GatewayConfigError):
            get_cfg(options)

    @override_settings(PAYMENTS=PAYMENTS_SETTINGS)
    def test_get_gateway_from_settings(self):
        gateway = get_gateway(Invoice(10))
        self.assertIsInstance(gateway, ApsanGateway)
        self.assertEqual(gateway.config.terminal_id, "T-100")

    @override_settings(PAYMENTS=PAYMENTS_SETTINGS)
    def test_get_gateway_unknown_name(self):
        with self.assertRaises(GatewayConfigError):
            get_gateway(Invoice(10), name="sadad")

    def test_client_returns_empty_body_for_non_json(self):
        session = mock.Mock()
        session.request.return_value = http_response(502, None)
        res = ApsanClient(get_cfg(APSAN_OPTIONS), session=session).call("POST", "rollback", {"token": "x"})
        self.assertEqual(res, GatewayResponse(status_code=502, body={}))


@override_settings(PAYMENTS=PAYMENTS_SETTINGS)
class RefundCommandTest(SimpleTestCase):
    def setUp(self):
        patcher = mock.patch("requests.Session.request")
        self.request = patcher.start()
        self.addCleanup(patcher.stop)

    def test_refund(self):
        self.request.return_value = http_response(200, {})
        out = StringIO()
        call_command("apsan_refund", "--amount", "1000", "--unique-id", "42", "--token", "TOKEN-1", stdout=out)
        self.assertEqual(sent_payload(self.request), {"amount": 10000, "uniqueIdentifier": "42", "resNum": ""})
        self.assertIn("token=TOKEN-1", out.getvalue())

    def test_refund_without_limitation(self):
        self.request.return_value = http_response(200, {})
        out = StringIO()
        call_command("apsan_refund", "--amount", "1000", "--grant-id", "G1", stdout=out)
        self.assertEqual(sent_payload(self.request), {"amount": 10000, "grantId": "G1", "resNum": ""})

    def test_gateway_error_becomes_command_error(self):
        self.request.return_value = http_response(401, {})
        with self.assertRaises(CommandError) as ctx:
            call_command("apsan_refund", "--amount", "1000", "--grant-id", "G1")
        self.assertEqual(str(ctx.exception), STATUS_MESSAGES[401])

    def test_refund_requires_token(self):
        with self.assertRaises(CommandError):
            call_command("apsan_refund", "--amount", "1000", "--unique-id", "42")
        self.request.assert_not_called()
