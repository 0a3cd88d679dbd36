import base64
import io
import json
import socket
import unittest
from unittest.mock import MagicMock, patch
from urllib import error
from urllib.parse import parse_qs

from compliance_alerts.core.errors import PermanentDeliveryError, TransientDeliveryError
from compliance_alerts.services.channels import base as channels_base
from compliance_alerts.services.channels import (
    OutboundMessage,
    ResendEmailAdapter,
    TwilioSmsAdapter,
    normalize_phone,
    phone_digits,
)
from compliance_alerts.services.channels.base import validate_api_url
from compliance_alerts.services.channels.email import build_email_payload

MESSAGE = OutboundMessage(
    alert_id=42,
    org_id="org-1",
    channel="email",
    urgency="critical",
    subject="OVERDUE: Annual report",
    text="Annual report is overdue.",
    html="<p>Annual report is overdue.</p>",
)


def _response(body, status=200):
    response = MagicMock()
    response.__enter__.return_value = response
    response.getcode.return_value = status
    response.read.return_value = json.dumps(body).encode("utf-8")
    return response


def _http_error(code, body=b""):
    return error.HTTPError("https://api.example.com", code, "error", {}, io.BytesIO(body))


def _email_adapter(**overrides):
    values = dict(
        api_key="re_test_key",
        from_email="alerts@example.com",
        from_name="Compliance Calendar",
        api_url="https://api.resend.com/emails",
        timeout=5.0,
    )
    values.update(overrides)
    return ResendEmailAdapter(**values)


def _sms_adapter(**overrides):
    values = dict(
        account_sid="AC123",
        auth_token="secret",
        from_number="+15550001111",
        api_base_url="https://api.twilio.com/2010-04-01",
        status_callback_url="https://alerts.example.com/webhooks/twilio",
    )
    values.update(overrides)
    return TwilioSmsAdapter(**values)


class EmailAdapterTest(unittest.TestCase):
    def test_payload_tags_the_alert_id(self):
        payload = build_email_payload("Alerts <alerts@example.com>", "owner@example.com", MESSAGE)
        self.assertEqual(payload["to"], ["owner@example.com"])
        self.assertEqual(payload["subject"], "OVERDUE: Annual report")
        self.assertEqual(payload["html"], "<p>Annual report is overdue.</p>")
        self.assertEqual(payload["tags"], [{"name": "alert_id", "value": "42"}])

    def test_successful_send_returns_provider_id(self):
        with patch.object(channels_base.request, "urlopen", return_value=_response({"id": "re_1"})) as urlopen:
            result = _email_adapter().send("owner@example.com", MESSAGE)

        self.assertTrue(result.success)
        self.assertEqual(result.provider_message_id, "re_1")
        req = urlopen.call_args[0][0]
        self.assertEqual(req.get_header("Authorization"), "Bearer re_test_key")
        self.assertEqual(urlopen.call_args[1]["timeout"], 5.0)
        sent = json.loads(req.data.decode("utf-8"))
        self.assertEqual(sent["from"], "Compliance Calendar <alerts@example.com>")

    def test_client_errors_are_permanent(self):
        with patch.object(
            channels_base.request,
            "urlopen",
            side_effect=_http_error(422, b'{"message": "Invalid `to` field"}'),
        ):
            result = _email_adapter().send("owner@example.com", MESSAGE)

        self.assertFalse(result.success)
        self.assertFalse(result.retryable)
        self.assertEqual(result.status_code, 422)
        self.assertIn("Invalid `to` field", result.error)

    def test_server_errors_and_timeouts_are_transient(self):
        for side_effect in (
            _http_error(503),
            error.URLError("connection refused"),
            socket.timeout("timed out"),
        ):
            with patch.object(channels_base.request, "urlopen", side_effect=side_effect):
                result = _email_adapter().send("owner@example.com", MESSAGE)
            self.assertFalse(result.success)
            self.assertTrue(result.retryable, side_effect)

    def test_missing_key_or_bad_address_fails_without_calling_out(self):
        with patch.object(channels_base.request, "urlopen") as urlopen:
            with self.assertRaises(PermanentDeliveryError):
                _email_adapter(api_key=None).deliver("owner@example.com", MESSAGE)
            with self.assertRaises(PermanentDeliveryError):
                _email_adapter().deliver("not-an-address", MESSAGE)
        urlopen.assert_not_called()


class SmsAdapterTest(unittest.TestCase):
    def test_posts_form_with_basic_auth(self):
        with patch.object(channels_base.request, "urlopen", return_value=_response({"sid": "SM1"})) as urlopen:
            provider_id = _sms_adapter().deliver("+1 (555) 123-4567", MESSAGE)

        self.assertEqual(provider_id, "SM1")
        req = urlopen.call_args[0][0]
        self.assertEqual(req.full_url, "https://api.twilio.com/2010-04-01/Accounts/AC123/Messages.json")
        expected_auth = "Basic {}".format(base64.b64encode(b"AC123:secret").decode("ascii"))
        self.assertEqual(req.get_header("Authorization"), expected_auth)
        form = parse_qs(req.data.decode("utf-8"))
        self.assertEqual(form["To"], ["+15551234567"])
        self.assertEqual(form["From"], ["+15550001111"])
        self.assertEqual(form["Body"], ["Annual report is overdue."])
        self.assertEqual(form["StatusCallback"], ["https://alerts.example.com/webhooks/twilio"])

    def test_gateway_error_is_transient(self):
        with patch.object(channels_base.request, "urlopen", side_effect=_http_error(502)):
            with self.assertRaises(TransientDeliveryError):
                _sms_adapter().deliver("+15551234567", MESSAGE)

    def test_unconfigured_adapter_is_permanent_failure(self):
        result = _sms_adapter(auth_token=None).send("+15551234567", MESSAGE)
        self.assertFalse(result.success)
        self.assertFalse(result.retryable)

    def test_phone_normalization(self):
        self.assertEqual(normalize_phone("+1 (555) 123-4567"), "+15551234567")
        self.assertEqual(normalize_phone("555.123.4567"), "5551234567")
        self.assertEqual(normalize_phone("n/a"), "")
        self.assertEqual(phone_digits("+1 555 123 4567"), "15551234567")


class ValidateApiUrlTest(unittest.TestCase):
    def test_accepts_https(self):
        self.assertEqual(
            validate_api_url("https://api.resend.com/emails", "RESEND_API_URL"),
            "https://api.resend.com/emails",
        )

    def test_rejects_non_http_scheme(self):
        with self.assertRaises(PermanentDeliveryError):
            validate_api_url("file:///tmp/messages", "RESEND_API_URL")


if __name__ == "__main__":
    unittest.main()
