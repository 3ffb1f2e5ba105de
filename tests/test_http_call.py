import hashlib
import hmac

import pytest

from TheRockTrading.client import DEFAULT_TIMEOUT, TheRockTrading
from TheRockTrading.errors import (
    ErrorKind,
    HttpStatusError,
    ParseError,
    UnprocessableEntityError,
    WithdrawalError,
    describe_response,
)


def test_balances_sends_a_signed_get(api, exchange):
    exchange.respond({"balances": []})

    api.balances()

    request = exchange.last
    headers = exchange.last_headers
    nonce = headers["x-trt-nonce"]
    expected = hmac.new(b"S", f"{nonce}https://api.example.com/v1/balances".encode(), hashlib.sha512).hexdigest()
    assert request.get_method() == "GET"
    assert request.full_url == "https://api.example.com/v1/balances"
    assert request.data is None
    assert headers["content-type"] == "application/json"
    assert headers["x-trt-key"] == "K"
    assert headers["x-trt-sign"] == expected


def test_query_parameters_are_appended_but_not_signed(api, exchange):
    exchange.respond({"orders": []})

    api.get("funds/BTCEUR/orders", params={"status": "active", "after": "2024-01-01 00:00"})

    headers = exchange.last_headers
    expected = hmac.new(
        b"S", f"{headers['x-trt-nonce']}https://api.example.com/v1/funds/BTCEUR/orders".encode(), hashlib.sha512
    ).hexdigest()
    assert exchange.last.full_url == (
        "https://api.example.com/v1/funds/BTCEUR/orders?status=active&after=2024-01-01+00%3A00"
    )
    assert headers["x-trt-sign"] == expected


def test_payload_does_not_change_the_signature(api, exchange, monkeypatch):
    monkeypatch.setattr(api._nonces, "next", lambda: 1234)
    exchange.respond({"id": 1})
    exchange.respond({"id": 2})

    api.post("currencies/BTC/addresses", payload={"a": 1})
    first = exchange.last_headers["x-trt-sign"]
    api.post("currencies/BTC/addresses", payload={"b": 2})

    assert exchange.last_headers["x-trt-sign"] == first


def test_nonces_increase_between_calls(api, exchange):
    exchange.respond({})
    exchange.respond({})

    api.balances()
    first = int(exchange.last_headers["x-trt-nonce"])
    api.balances()

    assert int(exchange.last_headers["x-trt-nonce"]) > first


def test_get_returns_decoded_json(api, exchange):
    exchange.respond('{"balances": [{"currency": "BTC", "balance": 0.5}]}')

    assert api.get("balances") == {"balances": [{"currency": "BTC", "balance": 0.5}]}


def test_get_skip_json_returns_the_raw_text(api, exchange):
    exchange.respond('{"balances":  [] }')

    assert api.get("balances", skip_json=True) == '{"balances":  [] }'


def test_get_raises_parse_error_on_invalid_json(api, exchange):
    exchange.respond("<html>maintenance</html>")

    with pytest.raises(ParseError) as excinfo:
        api.get("balances")

    assert excinfo.value.body == "<html>maintenance</html>"
    assert isinstance(excinfo.value, ValueError)


def test_post_sends_the_payload_as_json(api, exchange):
    exchange.respond({"id": 1})

    result = api.post("currencies/BTC/addresses", payload={"label": "cold"})

    assert result == {"id": 1}
    assert exchange.last.get_method() == "POST"
    assert exchange.last_json == {"label": "cold"}


def test_post_without_payload_sends_an_empty_object(api, exchange):
    exchange.respond("")

    api.post("currencies/BTC/addresses")

    assert exchange.last_json == {}


@pytest.mark.parametrize("method", ["post", "delete"])
def test_empty_2xx_body_returns_none(api, exchange, method):
    exchange.respond("", status=204)

    assert getattr(api, method)("funds/BTCEUR/orders/1") is None


@pytest.mark.parametrize("method", ["post", "delete"])
def test_json_body_is_returned(api, exchange, method):
    exchange.respond('{"id": 1}')

    assert getattr(api, method)("funds/BTCEUR/orders/1") == {"id": 1}


def test_empty_body_with_non_2xx_status_raises_http_status_error(api, exchange):
    exchange.respond("", status=302)

    with pytest.raises(HttpStatusError) as excinfo:
        api.post("atms/withdraw", payload={})

    assert excinfo.value.status_code == 302


@pytest.mark.parametrize("method", ["get", "post", "delete"])
def test_server_error_raises_http_status_error(api, exchange, method):
    exchange.fail(500, reason="Internal Server Error")

    with pytest.raises(HttpStatusError) as excinfo:
        getattr(api, method)("balances")

    assert excinfo.value.status_code == 500
    assert excinfo.value.body == ""


def test_delete_sends_no_body(api, exchange):
    exchange.respond("")

    api.delete("funds/BTCEUR/orders/1", payload={"ignored": True})

    assert exchange.last.get_method() == "DELETE"
    assert exchange.last.data is None


def test_unprocessable_entity_uses_the_error_kind(api, exchange):
    exchange.fail(422, {"errors": [{"message": "Amount too low"}]}, reason="Unprocessable Entity")

    with pytest.raises(WithdrawalError, match="^Amount too low$"):
        api.post("atms/withdraw", payload={}, error_kind=ErrorKind.WITHDRAWAL)


def test_unprocessable_entity_on_get_is_generic(api, exchange):
    exchange.fail(422, "not json", reason="Unprocessable Entity")

    with pytest.raises(UnprocessableEntityError) as excinfo:
        api.get("transactions/1")

    assert excinfo.value.message == describe_response(422, "Unprocessable Entity", "not json")


def test_timeout_is_passed_to_the_transport(exchange):
    exchange.respond({})
    exchange.respond({})

    TheRockTrading("K", "S").balances()
    TheRockTrading("K", "S", timeout=2.5).balances()

    assert exchange.timeouts == [DEFAULT_TIMEOUT, 2.5]


def test_default_url_and_trailing_slash():
    assert TheRockTrading("K", "S").url == "https://api.therocktrading.com/v1/"
    assert TheRockTrading("K", "S", url="https://api.example.com/v1").url == "https://api.example.com/v1/"


@pytest.mark.parametrize("key, secret", [("", "S"), ("K", ""), (None, "S")])
def test_credentials_are_required(key, secret):
    with pytest.raises(ValueError):
        TheRockTrading(key, secret)


def test_repr_hides_the_secret():
    assert "S3CR3T" not in repr(TheRockTrading("K", "S3CR3T"))


def test_requests_are_logged_without_credentials(api, exchange, caplog):
    exchange.fail(422, {"errors": [{"message": "Invalid fund"}]}, reason="Unprocessable Entity")

    with caplog.at_level("DEBUG", logger="TheRockTrading.client"):
        with pytest.raises(UnprocessableEntityError):
            api.post("funds/XXX/orders", payload={})

    assert "POST funds/XXX/orders" in caplog.text
    assert "Invalid fund" in caplog.text
    assert exchange.last_headers["x-trt-sign"] not in caplog.text


def test_get_with_an_empty_body_raises_parse_error(api, exchange):
    exchange.respond("", status=200)

    with pytest.raises(ParseError):
        api.get("balances")


def test_get_skip_json_with_an_empty_body_returns_empty_text(api, exchange):
    exchange.respond("", status=200)

    assert api.get("balances", skip_json=True) == ""


@pytest.mark.parametrize("method", ["get", "post", "delete"])
def test_body_that_is_not_utf8_raises_parse_error(api, exchange, method):
    exchange.respond(b"\xff\xfe{", status=200)

    with pytest.raises(ParseError) as excinfo:
        getattr(api, method)("balances")

    assert excinfo.value.body == b"\xff\xfe{"


def test_skip_json_replaces_bytes_that_are_not_utf8(api, exchange):
    exchange.respond(b"ok \xff", status=200)

    assert api.get("balances", skip_json=True) == "ok \ufffd"
