import json
from unittest.mock import Mock

import pytest
from django.core.cache import cache
from rest_framework.test import APIClient


MERCHANT_REQUEST_ID = "29115-34620561-1"
CHECKOUT_REQUEST_ID = "ws_CO_191220191020363925"


def mock_http_response(json_data, status_code=200):
    """Return a mock requests.Response whose .json() returns json_data."""
    resp = Mock()
    resp.ok = 200 <= status_code < 400
    resp.status_code = status_code
    if json_data is None:
        resp.json.side_effect = ValueError("No JSON object could be decoded")
        resp.text = ""
    else:
        resp.json.return_value = json_data
        resp.text = json.dumps(json_data)
    return resp


def token_response():
    return mock_http_response({"access_token": "daraja_tok_abc", "expires_in": "3599"})


def stk_push_response(response_code="0", description="Success. Request accepted for processing"):
    return mock_http_response({
        "MerchantRequestID": MERCHANT_REQUEST_ID,
        "CheckoutRequestID": CHECKOUT_REQUEST_ID,
        "ResponseCode": response_code,
        "ResponseDescription": description,
        "CustomerMessage": description,
    })


def stk_callback(result_code=0, result_desc="The service request is processed successfully.",
                 items=None, merchant_request_id=MERCHANT_REQUEST_ID,
                 checkout_request_id=CHECKOUT_REQUEST_ID):
    callback = {
        "MerchantRequestID": merchant_request_id,
        "CheckoutRequestID": checkout_request_id,
        "ResultCode": result_code,
        "ResultDesc": result_desc,
    }
    if items is not None:
        callback["CallbackMetadata"] = {"Item": items}
    return {"Body": {"stkCallback": callback}}


def success_items(amount=1000, receipt="ABC123"):
    return [
        {"Name": "Amount", "Value": amount},
        {"Name": "MpesaReceiptNumber", "Value": receipt},
        {"Name": "Balance"},
        {"Name": "TransactionDate", "Value": 20191219102115},
        {"Name": "PhoneNumber", "Value": 254712345678},
    ]


@pytest.fixture(autouse=True)
def mpesa_settings(settings):
    settings.MPESA_ENVIRONMENT = "sandbox"
    settings.MPESA_CONSUMER_KEY = "consumer-key"
    settings.MPESA_CONSUMER_SECRET = "consumer-secret"
    settings.MPESA_BUSINESS_SHORT_CODE = "174379"
    settings.MPESA_PASSKEY = "passkey"
    settings.MPESA_CALLBACK_URL = "https://example.com/api/payments/mpesa/callback/"
    settings.MPESA_TRANSACTION_TYPE = "CustomerPayBillOnline"
    settings.MPESA_REQUEST_TIMEOUT = 30
    settings.MPESA_TOKEN_CACHE_SECONDS = 0
    settings.MPESA_RECONCILE_AFTER_SECONDS = 0
    cache.clear()
    yield settings
    cache.clear()


@pytest.fixture
def api_client():
    return APIClient()
