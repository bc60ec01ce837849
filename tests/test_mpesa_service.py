import base64
import json
from datetime import datetime

import httpx
import pytest

from mpesa_gateway.config import get_settings
from mpesa_gateway.errors import UpstreamAuthError, UpstreamRequestError
from mpesa_gateway.mpesa_service import MpesaClient


def make_client(handler):
    http = httpx.Client(transport=httpx.MockTransport(handler))
    return MpesaClient(get_settings(), http_client=http)


def token_response(request):
    return httpx.Response(200, json={"access_token": "tok_abc", "expires_in": "3599"})


def test_base_url_follows_environment():
    client = make_client(token_response)

    assert client.base_url == "https://sandbox.safaricom.co.ke"
    production = get_settings().model_copy(update={"mpesa_env": "production"})
    assert MpesaClient(production, http_client=client.http).base_url == "https://api.safaricom.co.ke"


def test_access_token_uses_basic_auth_and_is_cached():
    calls = []

    def handler(request):
        calls.append(request)
        return token_response(request)

    client = make_client(handler)

    assert client.get_access_token() == "tok_abc"
    assert client.get_access_token() == "tok_abc"
    assert len(calls) == 1
    request = calls[0]
    assert request.url.path == "/oauth/v1/generate"
    assert request.url.params["grant_type"] == "client_credentials"
    expected = base64.b64encode(b"consumer_key:consumer_secret").decode()
    assert request.headers["Authorization"] == f"Basic {expected}"


def test_access_token_failure_raises_upstream_auth_error():
    client = make_client(lambda request: httpx.Response(400, json={"errorMessage": "Invalid credentials"}))

    with pytest.raises(UpstreamAuthError):
        client.get_access_token()


def test_access_token_network_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(UpstreamAuthError):
        make_client(handler).get_access_token()


def test_password_and_timestamp():
    client = make_client(token_response)
    timestamp = client.timestamp(datetime(2024, 1, 2, 3, 4, 5))

    assert timestamp == "20240102030405"
    assert base64.b64decode(client.password(timestamp)) == b"174379test_passkey20240102030405"
    assert len(client.timestamp()) == 14


def test_stk_push_payload():
    seen = {}

    def handler(request):
        seen["request"] = request
        return httpx.Response(200, json={"CheckoutRequestID": "ws_1", "MerchantRequestID": "mr_1"})

    client = make_client(handler)
    data = client.stk_push("tok_abc", "254710909198", 500, "ORD-1")

    assert data["CheckoutRequestID"] == "ws_1"
    request = seen["request"]
    assert request.url.path == "/mpesa/stkpush/v1/processrequest"
    assert request.headers["Authorization"] == "Bearer tok_abc"
    body = json.loads(request.content)
    assert body["BusinessShortCode"] == "174379"
    assert body["PartyB"] == "174379"
    assert body["TransactionType"] == "CustomerPayBillOnline"
    assert body["Amount"] == 500
    assert body["PartyA"] == body["PhoneNumber"] == "254710909198"
    assert body["AccountReference"] == "ORD-1"
    assert body["TransactionDesc"] == "Order Payment"
    assert body["CallBackURL"] == "https://gateway.example.com/api/payment/callback"
    assert base64.b64decode(body["Password"]).decode() == "174379test_passkey" + body["Timestamp"]


def test_stk_push_provider_rejection_is_a_client_error():
    client = make_client(lambda request: httpx.Response(
        400, json={"requestId": "r1", "errorCode": "400.002.02", "errorMessage": "Bad Request - Invalid Amount"}
    ))

    with pytest.raises(UpstreamRequestError) as excinfo:
        client.stk_push("tok_abc", "254710909198", 500, "ORD-1")

    assert excinfo.value.http_status == 400
    assert excinfo.value.message == "Bad Request - Invalid Amount"


def test_stk_push_timeout_is_a_server_error():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(UpstreamRequestError) as excinfo:
        make_client(handler).stk_push("tok_abc", "254710909198", 500, "ORD-1")

    assert excinfo.value.http_status == 500


def test_stk_push_unreadable_response():
    client = make_client(lambda request: httpx.Response(502, text="<html>Bad gateway</html>"))

    with pytest.raises(UpstreamRequestError) as excinfo:
        client.stk_push("tok_abc", "254710909198", 500, "ORD-1")

    assert excinfo.value.http_status == 500
