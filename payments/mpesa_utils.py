import base64
import datetime
import hashlib
import logging
import re

import requests
from requests.auth import HTTPBasicAuth
from django.conf import settings
from django.core.cache import cache
from django.utils import timezone

from .exceptions import (
    MpesaAuthenticationError,
    MpesaConfigurationError,
    MpesaRequestError,
)

logger = logging.getLogger(__name__)

SANDBOX_BASE_URL = "https://sandbox.safaricom.co.ke"
PRODUCTION_BASE_URL = "https://api.safaricom.co.ke"

OAUTH_PATH = "/oauth/v1/generate?grant_type=client_credentials"
STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"
STK_QUERY_PATH = "/mpesa/stkpushquery/v1/query"

# Seconds shaved off the provider's expires_in before caching a token
TOKEN_EXPIRY_MARGIN = 60


def get_base_url():
    if getattr(settings, "MPESA_ENVIRONMENT", "sandbox") == "production":
        return PRODUCTION_BASE_URL
    return SANDBOX_BASE_URL


def _token_cache_key(consumer_key, consumer_secret):
    digest = hashlib.sha256(f"{consumer_key}:{consumer_secret}".encode()).hexdigest()
    return f"mpesa_access_token:{digest}"


def get_mpesa_access_token():
    """
    Returns an access token from Safaricom Daraja.

    A fresh token is requested on every call unless MPESA_TOKEN_CACHE_SECONDS
    is positive, in which case the token is cached for at most that long and
    never past the provider's own expiry.
    """
    consumer_key = settings.MPESA_CONSUMER_KEY
    consumer_secret = settings.MPESA_CONSUMER_SECRET
    if not consumer_key or not consumer_secret:
        raise MpesaConfigurationError("M-Pesa consumer key and secret are required")

    cache_seconds = getattr(settings, "MPESA_TOKEN_CACHE_SECONDS", 0)
    cache_key = _token_cache_key(consumer_key, consumer_secret)
    if cache_seconds > 0:
        token = cache.get(cache_key)
        if token:
            return token

    api_url = get_base_url() + OAUTH_PATH
    try:
        r = requests.get(
            api_url,
            auth=HTTPBasicAuth(consumer_key, consumer_secret),
            timeout=settings.MPESA_REQUEST_TIMEOUT,
        )
    except requests.RequestException as e:
        logger.error("Failed to get M-Pesa access token: %s", e)
        raise MpesaAuthenticationError("Failed to authenticate with M-Pesa API") from e

    if not r.ok:
        logger.error("M-Pesa OAuth returned HTTP %s: %s", r.status_code, r.text)
        raise MpesaAuthenticationError("Failed to authenticate with M-Pesa API")

    try:
        body = r.json()
    except ValueError as e:
        raise MpesaAuthenticationError("Failed to authenticate with M-Pesa API") from e

    token = body.get("access_token")
    if not token:
        raise MpesaAuthenticationError("Failed to authenticate with M-Pesa API", body)

    if cache_seconds > 0:
        try:
            expires_in = int(body.get("expires_in", cache_seconds))
        except (TypeError, ValueError):
            expires_in = cache_seconds
        timeout = min(cache_seconds, expires_in - TOKEN_EXPIRY_MARGIN)
        if timeout > 0:
            cache.set(cache_key, token, timeout=timeout)
    return token


def format_phone_number(phone):
    """
    Normalizes a Kenyan phone number to the 2547XXXXXXXX form Daraja expects.

    0712345678, +254712345678, 254712345678 and 712345678 all map to
    254712345678. Anything else is returned as its digits only.
    """
    clean_phone = re.sub(r"\D", "", str(phone))

    if clean_phone.startswith("0"):
        clean_phone = "254" + clean_phone[1:]
    elif clean_phone.startswith("254"):
        pass
    elif len(clean_phone) == 9 and clean_phone.startswith("7"):
        clean_phone = "254" + clean_phone

    return clean_phone


def generate_timestamp(now=None):
    """Returns the current UTC instant as YYYYMMDDHHMMSS."""
    now = now or timezone.now()
    return now.astimezone(datetime.timezone.utc).strftime("%Y%m%d%H%M%S")


def generate_password(short_code, pass_key, timestamp=None):
    """
    Generate the M-Pesa password by concatenating ShortCode + PassKey + Timestamp,
    then base64-encoding the result.

    Returns:
        (password, timestamp) as a tuple
    """
    timestamp = timestamp or generate_timestamp()
    data_to_encode = f"{short_code}{pass_key}{timestamp}"
    encoded_string = base64.b64encode(data_to_encode.encode()).decode("utf-8")
    return encoded_string, timestamp


def build_stk_push_payload(
    *,
    short_code,
    password,
    timestamp,
    amount,
    phone_number,
    callback_url,
    account_reference,
    transaction_desc,
    transaction_type="CustomerPayBillOnline",
):
    return {
        "BusinessShortCode": short_code,
        "Password": password,
        "Timestamp": timestamp,
        "TransactionType": transaction_type,
        "Amount": int(amount),  # Daraja only accepts whole shillings
        "PartyA": phone_number,
        "PartyB": short_code,
        "PhoneNumber": phone_number,
        "CallBackURL": callback_url,
        "AccountReference": account_reference,
        "TransactionDesc": transaction_desc,
    }


def build_stk_query_payload(*, short_code, password, timestamp, checkout_request_id):
    return {
        "BusinessShortCode": short_code,
        "Password": password,
        "Timestamp": timestamp,
        "CheckoutRequestID": checkout_request_id,
    }


def parse_callback_items(items):
    """
    Turns the CallbackMetadata Item list into a {Name: Value} dict.
    Items without a Value (Daraja omits it for some fields) and entries that
    are not objects are left out.
    """
    values = {}
    if not isinstance(items, list):
        return values
    for item in items:
        if not isinstance(item, dict):
            continue
        name = item.get("Name")
        if name and "Value" in item:
            values[name] = item["Value"]
    return values


def parse_result_code(value):
    """
    Returns a ResultCode as an int. Callbacks send a number, status queries a
    string; anything else (missing, bool, non-numeric) gives None.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value)
    return None


def mpesa_post(path, payload, access_token):
    """
    POSTs a bearer-authenticated JSON payload to Daraja and returns the
    decoded response body.
    """
    headers = {
        "Authorization": f"Bearer {access_token}",
        "Content-Type": "application/json",
    }
    try:
        r = requests.post(
            get_base_url() + path,
            json=payload,
            headers=headers,
            timeout=settings.MPESA_REQUEST_TIMEOUT,
        )
    except requests.RequestException as e:
        raise MpesaRequestError(str(e)) from e

    try:
        response_json = r.json()
    except ValueError:
        response_json = None

    if not r.ok:
        logger.error("M-Pesa API error response (HTTP %s): %s", r.status_code, response_json)
        raise MpesaRequestError(f"M-Pesa API returned HTTP {r.status_code}", response_json)
    if response_json is None:
        raise MpesaRequestError("M-Pesa API returned a non-JSON response")
    return response_json
