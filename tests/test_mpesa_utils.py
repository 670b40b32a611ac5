import base64
import datetime
from unittest.mock import patch
from zoneinfo import ZoneInfo

import pytest
import requests

from payments import mpesa_utils
from payments.exceptions import (
    MpesaAuthenticationError,
    MpesaConfigurationError,
    MpesaRequestError,
)
from payments.mpesa_utils import (
    build_stk_push_payload,
    build_stk_query_payload,
    format_phone_number,
    generate_password,
    generate_timestamp,
    get_mpesa_access_token,
    mpesa_post,
    parse_callback_items,
    parse_result_code,
)

from conftest import mock_http_response, token_response


@pytest.mark.parametrize("raw", [
    "0712345678",
    "254712345678",
    "+254712345678",
    "712345678",
    "+254 712 345 678",
    "0712-345-678",
])
def test_format_phone_number_normalizes_kenyan_formats(raw):
    assert format_phone_number(raw) == "254712345678"


def test_format_phone_number_is_idempotent():
    once = format_phone_number("0712345678")
    assert format_phone_number(once) == once


def test_format_phone_number_passes_unknown_formats_through_as_digits():
    assert format_phone_number("+1 (555) 010-9999") == "15550109999"
    assert format_phone_number("12345") == "12345"


def test_generate_timestamp_is_compact_utc():
    now = datetime.datetime(2024, 1, 2, 3, 4, 5, tzinfo=datetime.timezone.utc)
    assert generate_timestamp(now) == "20240102030405"


def test_generate_timestamp_converts_local_time_to_utc():
    nairobi = datetime.datetime(2024, 1, 2, 6, 4, 5, tzinfo=ZoneInfo("Africa/Nairobi"))
    assert generate_timestamp(nairobi) == "20240102030405"


def test_generate_password_decodes_to_shortcode_passkey_timestamp():
    password, timestamp = generate_password("174379", "passkey", "20240102030405")
    assert timestamp == "20240102030405"
    assert base64.b64decode(password).decode() == "174379passkey20240102030405"
    assert generate_password("174379", "passkey", "20240102030405")[0] == password


def test_generate_password_returns_the_timestamp_it_used():
    password, timestamp = generate_password("174379", "passkey")
    assert len(timestamp) == 14 and timestamp.isdigit()
    assert base64.b64decode(password).decode().endswith(timestamp)


def test_build_stk_push_payload():
    payload = build_stk_push_payload(
        short_code="174379",
        password="pw",
        timestamp="20240102030405",
        amount=1000,
        phone_number="254712345678",
        callback_url="https://example.com/cb",
        account_reference="INV-1",
        transaction_desc="Consultation",
    )
    assert payload == {
        "BusinessShortCode": "174379",
        "Password": "pw",
        "Timestamp": "20240102030405",
        "TransactionType": "CustomerPayBillOnline",
        "Amount": 1000,
        "PartyA": "254712345678",
        "PartyB": "174379",
        "PhoneNumber": "254712345678",
        "CallBackURL": "https://example.com/cb",
        "AccountReference": "INV-1",
        "TransactionDesc": "Consultation",
    }


def test_build_stk_query_payload():
    payload = build_stk_query_payload(
        short_code="174379", password="pw", timestamp="20240102030405",
        checkout_request_id="ws_CO_1",
    )
    assert payload["CheckoutRequestID"] == "ws_CO_1"
    assert payload["BusinessShortCode"] == "174379"


def test_parse_callback_items_skips_items_without_value():
    values = parse_callback_items([
        {"Name": "Amount", "Value": 1},
        {"Name": "Balance"},
        {"Name": "MpesaReceiptNumber", "Value": "ABC123"},
    ])
    assert values == {"Amount": 1, "MpesaReceiptNumber": "ABC123"}
    assert parse_callback_items(None) == {}


def test_parse_callback_items_ignores_malformed_entries():
    values = parse_callback_items(["garbage", 7, None, {"Name": "Amount", "Value": 5}])
    assert values == {"Amount": 5}
    assert parse_callback_items("x") == {}
    assert parse_callback_items({"Name": "Amount", "Value": 5}) == {}


@pytest.mark.parametrize("raw, expected", [
    (0, 0),
    (1032, 1032),
    ("0", 0),
    ("1032", 1032),
    (None, None),
    ("", None),
    ("abc", None),
    (True, None),
    (1.5, None),
])
def test_parse_result_code(raw, expected):
    assert parse_result_code(raw) == expected


class TestAccessToken:

    def test_uses_basic_auth_against_sandbox(self):
        with patch.object(mpesa_utils.requests, "get", return_value=token_response()) as mock_get:
            assert get_mpesa_access_token() == "daraja_tok_abc"

        url = mock_get.call_args.args[0]
        assert url == "https://sandbox.safaricom.co.ke/oauth/v1/generate?grant_type=client_credentials"
        auth = mock_get.call_args.kwargs["auth"]
        assert (auth.username, auth.password) == ("consumer-key", "consumer-secret")

    def test_production_environment_selects_live_url(self, settings):
        settings.MPESA_ENVIRONMENT = "production"
        with patch.object(mpesa_utils.requests, "get", return_value=token_response()) as mock_get:
            get_mpesa_access_token()
        assert mock_get.call_args.args[0].startswith("https://api.safaricom.co.ke/")

    def test_missing_credentials_is_a_configuration_error(self, settings):
        settings.MPESA_CONSUMER_SECRET = ""
        with patch.object(mpesa_utils.requests, "get") as mock_get:
            with pytest.raises(MpesaConfigurationError):
                get_mpesa_access_token()
        mock_get.assert_not_called()

    def test_non_2xx_is_an_authentication_error(self):
        resp = mock_http_response({"errorMessage": "Invalid credentials"}, status_code=400)
        with patch.object(mpesa_utils.requests, "get", return_value=resp):
            with pytest.raises(MpesaAuthenticationError):
                get_mpesa_access_token()

    def test_network_error_is_an_authentication_error(self):
        with patch.object(mpesa_utils.requests, "get", side_effect=requests.ConnectionError("down")):
            with pytest.raises(MpesaAuthenticationError):
                get_mpesa_access_token()

    def test_reauthenticates_every_call_by_default(self):
        with patch.object(mpesa_utils.requests, "get", return_value=token_response()) as mock_get:
            get_mpesa_access_token()
            get_mpesa_access_token()
        assert mock_get.call_count == 2

    def test_cache_reuses_token_when_enabled(self, settings):
        settings.MPESA_TOKEN_CACHE_SECONDS = 3000
        with patch.object(mpesa_utils.requests, "get", return_value=token_response()) as mock_get:
            get_mpesa_access_token()
            get_mpesa_access_token()
        assert mock_get.call_count == 1


class TestMpesaPost:

    def test_sends_bearer_token_and_returns_body(self):
        resp = mock_http_response({"ResponseCode": "0"})
        with patch.object(mpesa_utils.requests, "post", return_value=resp) as mock_post:
            body = mpesa_post(mpesa_utils.STK_PUSH_PATH, {"a": 1}, "tok")
        assert body == {"ResponseCode": "0"}
        assert mock_post.call_args.kwargs["headers"]["Authorization"] == "Bearer tok"
        assert mock_post.call_args.kwargs["json"] == {"a": 1}

    def test_http_error_carries_provider_body(self):
        resp = mock_http_response({"errorCode": "400.002.02", "errorMessage": "Bad Request"}, 400)
        with patch.object(mpesa_utils.requests, "post", return_value=resp):
            with pytest.raises(MpesaRequestError) as exc_info:
                mpesa_post(mpesa_utils.STK_PUSH_PATH, {}, "tok")
        assert exc_info.value.provider_detail() == "Bad Request"

    def test_network_error_has_no_provider_body(self):
        with patch.object(mpesa_utils.requests, "post", side_effect=requests.Timeout("slow")):
            with pytest.raises(MpesaRequestError) as exc_info:
                mpesa_post(mpesa_utils.STK_PUSH_PATH, {}, "tok")
        assert exc_info.value.response_data is None
