# tests/unit/test_api_client.py
import pytest
import requests

from errors import ConfigurationError, VerificationTransportFailure
from retry import detail_request_policy
from verification.api_client import DetailApiClient


def _response(mocker, status_code=200, payload=None, text=""):
    resp = mocker.MagicMock()
    resp.ok = status_code < 400
    resp.status_code = status_code
    resp.text = text
    resp.json.return_value = payload
    return resp


@pytest.fixture
def session():
    return requests.Session()


@pytest.fixture
def client(session):
    return DetailApiClient(
        authorization="test-token",
        session=session,
        retry_policy=detail_request_policy(sleep=lambda seconds: None),
    )


def test_missing_token_is_a_configuration_error(monkeypatch):
    monkeypatch.setattr("verification.api_client.EBAY_API_AUTHORIZATION", "")
    with pytest.raises(ConfigurationError):
        DetailApiClient(authorization=None)


def test_request_is_authenticated(mocker, client, session):
    get = mocker.patch.object(session, "get", return_value=_response(mocker, payload={"modules": {}}))

    assert client.get_item_details("123") == {"modules": {}}

    args, kwargs = get.call_args
    assert args[0] == "https://apisd.ebay.com/experience/listing_details/v2/view_item"
    assert kwargs["params"] == {"itemId": "123"}
    assert kwargs["timeout"] == 30
    assert session.headers["Authorization"] == "Bearer test-token"
    assert session.headers["X-EBAY-C-MARKETPLACE-ID"] == "EBAY-US"


def test_server_error_is_retried(mocker, client, session):
    get = mocker.patch.object(session, "get", side_effect=[
        _response(mocker, 503, text="unavailable"),
        _response(mocker, payload={"ok": True}),
    ])

    assert client.get_item_details("123") == {"ok": True}
    assert get.call_count == 2


def test_client_error_is_not_retried(mocker, client, session):
    get = mocker.patch.object(session, "get", return_value=_response(mocker, 404, text="missing"))

    with pytest.raises(VerificationTransportFailure) as exc_info:
        client.get_item_details("123")

    assert exc_info.value.status_code == 404
    assert get.call_count == 1


def test_connection_errors_exhaust_attempts(mocker, client, session):
    get = mocker.patch.object(session, "get", side_effect=requests.ConnectionError("refused"))

    with pytest.raises(VerificationTransportFailure, match="refused"):
        client.get_item_details("123")
    assert get.call_count == 3


def test_invalid_json_is_a_transport_failure(mocker, client, session):
    resp = _response(mocker)
    resp.json.side_effect = ValueError("Expecting value")
    mocker.patch.object(session, "get", return_value=resp)

    with pytest.raises(VerificationTransportFailure, match="Invalid JSON"):
        client.get_item_details("123")
