#!/usr/bin/env python3

import hmac
import time
import json
import hashlib
import logging
import threading
import urllib.parse
import pandas as pd
from urllib.error import HTTPError
from urllib.request import urlopen, Request

from TheRockTrading.errors import ErrorKind, HttpStatusError, ParseError, map_error
from TheRockTrading.records import Order, OrderRequest, Withdrawal, WithdrawalRequest

base_url = "https://api.therocktrading.com/v1/"

DEFAULT_TIMEOUT = 30

logger = logging.getLogger(__name__)


def current_nonce():
    """Milliseconds since the Unix epoch, sampled now."""
    return int(time.time() * 1000)


class NonceGenerator:
    """Hands out strictly increasing nonces, even if the clock is coarse or steps backwards."""

    def __init__(self, clock=current_nonce):
        self._clock = clock
        self._last = 0
        self._lock = threading.Lock()

    def next(self):
        with self._lock:
            self._last = max(self._clock(), self._last + 1)
            return self._last


def signMessage(secret, path, nonce, base_url):
    """
    Signs a request for The Rock Trading API.

    The signed string is nonce + base_url + path with no separators. Neither the query string
    nor the request body is part of it.

    Args:
        secret (str or bytes): Your API secret.
        path (str): The endpoint path relative to base_url, e.g 'balances'.
        nonce (int): The nonce sent in the X-TRT-NONCE header.
        base_url (str): The API root, e.g 'https://api.therocktrading.com/v1/'.

    Returns (str): The lowercase hex HMAC-SHA512 of the signed string.

    Example:
        >>> signMessage("secret", "balances", 1700000000000, "https://api.therocktrading.com/v1/")
    """
    if isinstance(secret, str):
        secret = secret.encode("utf-8")
    message = f"{nonce}{base_url}{path}"
    return hmac.new(secret, message.encode("utf-8"), digestmod=hashlib.sha512).hexdigest()


def buildHeaders(apiKey, secret, base_url, path, nonce=None):
    if nonce is None:
        nonce = current_nonce()
    return {
        "Content-Type": "application/json",
        "X-TRT-KEY": apiKey,
        "X-TRT-SIGN": signMessage(secret, path, nonce, base_url),
        "X-TRT-NONCE": str(nonce),
    }


def process_panda(panda, numeric=None, time=None):
    """Processes numerical and time fields of a DataFrame, skipping columns it does not have."""
    numeric = [column for column in numeric or [] if column in panda]
    time = [column for column in time or [] if column in panda]
    if numeric:
        panda[numeric] = panda[numeric].apply(pd.to_numeric)
    if time:
        panda[time] = panda[time].apply(pd.to_datetime)
    return panda


def make_df(data, numeric=None, time=None):
    """
    Create a pandas DataFrame from a list of dictionaries and optionally
    convert specified columns to numeric and datetime types.
    Columns listed in 'numeric' or 'time' but missing from the data are skipped.

    Args:
        data (list of dict): Data to be converted into a DataFrame.
            Each dictionary in the list represents a row.
        numeric (list of str, optional): List of column names to be converted to numeric types.
            If None, no conversion is applied. Defaults to None.
        time (list of str, optional): List of column names to be converted to datetime types.
            If None, no conversion is applied. Defaults to None.

    Returns: pandas.DataFrame created from the input data with specified columns
            converted to numeric or datetime types.

    Example:
        >>> data = [{'currency': 'BTC', 'balance': '0.5'}, {'currency': 'EUR', 'balance': '100'}]
        >>> df = make_df(data, numeric=['balance'])
    """
    return process_panda(pd.DataFrame(data), numeric, time)


def decode_json(raw):
    """Decodes a UTF-8 JSON response body, raising ParseError for bad encoding or bad JSON."""
    try:
        text = str(raw, "utf-8")
    except UnicodeDecodeError as e:
        raise ParseError(f"Response is not valid UTF-8: {e}", raw) from e
    try:
        return json.loads(text)
    except ValueError as e:
        raise ParseError(f"Response is not valid JSON: {e}", text) from e


class TheRockTrading:
    """API client for The Rock Trading.

    * Every private call is signed with HMAC-SHA512 over nonce + base url + path and sent with the
        X-TRT-KEY, X-TRT-SIGN and X-TRT-NONCE headers.
    * Calls are blocking and never retried. Network failures (urllib.error.URLError, timeouts)
        reach the caller untouched, HTTP failures are raised as TheRockTrading.errors types.
    * Optional features that are not native to the API are annotated with '[Non API Feature]' in the docstring.
    """

    def __init__(self, key, secret, url=base_url, timeout=DEFAULT_TIMEOUT):
        """Creates a The Rock Trading api client.

        Args:
            key (str): Your API key.
            secret (str): Your API secret.
            url (str, optional): The API root. Defaults to https://api.therocktrading.com/v1/.
                A trailing '/' is added if missing.
            timeout (float, optional): [Non API Feature] Seconds to wait for each response.
                None waits forever. Defaults to 30.

        Example:
            >>> apiClient = TheRockTrading("your_api_key", "your_api_secret")
        """
        if not key:
            raise ValueError("An API key is required.")
        if not secret:
            raise ValueError("An API secret is required.")
        if not url.endswith("/"):
            url += "/"
        self._key = key
        self._secret = secret
        self._url = url
        self.timeout = timeout
        self._nonces = NonceGenerator()

    @property
    def key(self):
        return self._key

    @property
    def secret(self):
        return self._secret

    @property
    def url(self):
        return self._url

    def __repr__(self):
        return f"TheRockTrading(key={self._key!r}, url={self._url!r})"

    def makeHttpCall(
        self,
        method,
        path,
        query_params=None,
        data=None,
        error_kind=ErrorKind.GENERIC,
        skip_json=False,
    ):
        """
        Makes a signed HTTP request to The Rock Trading API.

        Only the path is signed; query parameters are appended to the URL afterwards and the body
        (POST only) is sent as JSON. The response is interpreted as follows:
            - skip_json: the raw body text is returned as is (undecodable bytes are replaced).
            - a non-empty body, or any GET body, is decoded as JSON and returned.
            - an empty POST or DELETE body with a 2xx status returns None.
            - 422 raises the error class of 'error_kind' with the messages of the error envelope.
            - any other non-2xx status raises HttpStatusError.

        Args:
            method (str): 'GET', 'POST' or 'DELETE'.
            path (str): The endpoint path relative to the API root, e.g 'balances'.
            query_params (dict, optional): Query string parameters. Defaults to None.
            data (dict, optional): The JSON body, only sent with POST. Defaults to None.
            error_kind (ErrorKind, optional): Which error to raise on 422. Defaults to ErrorKind.GENERIC.
            skip_json (bool, optional): Return the body text instead of decoding it. Defaults to False.

        Returns (dict, list, str or None): The decoded response.

        Raises:
            ParseError: The body is not valid UTF-8 JSON (an empty GET body included).
            UnprocessableEntityError: The server answered 422 (or the subclass chosen by 'error_kind').
            HttpStatusError: The server answered with any other non-2xx status.

        Example:
            >>> apiClient = TheRockTrading("your_api_key", "your_api_secret")
            >>> response = apiClient.makeHttpCall("GET", "balances")
        """
        headers = buildHeaders(self._key, self._secret, self._url, path, self._nonces.next())
        url = self._url + path
        if query_params:
            url += "?" + urllib.parse.urlencode(query_params)
        body = None
        if method == "POST":
            body = bytes(json.dumps(data if data is not None else {}), encoding="utf-8")

        logger.debug("%s %s", method, path)
        try:
            response = urlopen(Request(url, body, headers, method=method), timeout=self.timeout)
            status = response.status
            raw = response.read()
        except HTTPError as e:
            text = str(e.read(), "utf-8", errors="replace") if e.fp is not None else ""
            if e.code == 422:
                logger.warning("%s %s rejected: %s", method, path, text)
                raise map_error(error_kind, e.code, e.reason, text) from None
            logger.warning("%s %s failed with HTTP %s", method, path, e.code)
            raise HttpStatusError(e.code, text) from None
        logger.debug("%s %s -> %s", method, path, status)

        if skip_json:
            return str(raw, "utf-8", errors="replace")
        if not raw and (status < 200 or status >= 300):
            raise HttpStatusError(status, "")
        # Only POST and DELETE may answer with an empty body; GET always expects JSON.
        if raw or method == "GET":
            return decode_json(raw)
        return None

    def get(self, path, params=None, skip_json=False):
        return self.makeHttpCall("GET", path, query_params=params, skip_json=skip_json)

    def post(self, path, payload=None, error_kind=ErrorKind.GENERIC):
        return self.makeHttpCall("POST", path, data=payload or {}, error_kind=error_kind)

    def delete(self, path, payload=None, error_kind=ErrorKind.GENERIC):
        # The payload is neither sent nor signed; accepted so callers can treat POST and DELETE alike.
        return self.makeHttpCall("DELETE", path, error_kind=error_kind)

    # Account APIs

    def balances(self):
        """Retrieves the balance of every currency in your account.

        Returns (dict): e.g
            {
                "balances": [
                    {"currency": "BTC", "balance": 0.5, "trading_balance": 0.4},
                    ...
                ]
            }
        """
        return self.get("balances")

    def balances_frame(self, include_empty=False):
        """[Non API Feature] balances() as a pandas.DataFrame.

        Args:
            include_empty (bool): Include currencies with 0 balance (default False).

        Returns: pandas.DataFrame with columns 'currency', 'balance' (float) and
            'trading_balance' (float).
        """
        df = make_df(self.balances().get("balances", []), numeric=["balance", "trading_balance"])
        if not include_empty and "balance" in df:
            df = df[df["balance"] != 0]
        return df.reset_index(drop=True)

    def address(self, currency):
        """Retrieves the deposit addresses of a currency.

        Args:
            currency (str): The currency code, e.g 'BTC'.

        Returns (dict): The addresses as reported by the exchange.
        """
        return self.get(f"currencies/{currency}/addresses")

    def new_address(self, currency, params=None):
        """Generates a new deposit address for a currency.

        Args:
            currency (str): The currency code, e.g 'BTC'.
            params (dict, optional): Extra fields sent as the JSON body. Defaults to {}.

        Returns (dict or None): The new address, or None if the exchange sends an empty body.
        """
        return self.post(f"currencies/{currency}/addresses", payload=params or {})

    # Order APIs

    def create_order(self, fund_id, side, amount, price):
        """
        Places a limit order.

        Args:
            fund_id (str): The fund (market) identifier, e.g 'BTCEUR'.
            side (str): 'buy' or 'sell'.
            amount (str, int, float or Decimal): The amount of the base currency.
            price (str, int, float or Decimal): The limit price in the quote currency.

        Returns (Order or None): The order as accepted by the exchange, or None if the exchange
            answers with an empty body.

        Raises:
            ValueError: The order is invalid before it is sent (unknown side, amount or price <= 0).
            OrderCreationError: The exchange rejected the order, e.g "Insufficient funds".

        Example:
            >>> # Buys 0.1 BTC at 25000 EUR per BTC.
            >>> apiClient = TheRockTrading("your_api_key", "your_api_secret")
            >>> order = apiClient.create_order(fund_id="BTCEUR", side="buy", amount="0.1", price="25000")
            >>> order.status
            'active'
        """
        request = OrderRequest(fund_id, side, amount, price)
        data = self.post(
            f"funds/{request.fund_id}/orders",
            payload=request.to_payload(),
            error_kind=ErrorKind.ORDER_CREATION,
        )
        if data is None:
            return None
        return Order.from_json(data)

    def order(self, fund_id, id):
        """Retrieves a single order.

        Args:
            fund_id (str): The fund identifier, e.g 'BTCEUR'.
            id (int or str): The order id.

        Returns (Order): The order.
        """
        return Order.from_json(self.get(f"funds/{fund_id}/orders/{id}"))

    def cancel_order(self, fund_id, id):
        """Cancels an open order.

        Args:
            fund_id (str): The fund identifier, e.g 'BTCEUR'.
            id (int or str): The order id.

        Returns (Order or None): The cancelled order, or None if the exchange answers with an empty body.

        Raises:
            OrderCancellationError: The exchange refused to cancel, e.g the order is already filled.
        """
        data = self.delete(
            f"funds/{fund_id}/orders/{id}", error_kind=ErrorKind.ORDER_CANCELLATION
        )
        if data is None:
            return None
        return Order.from_json(data)

    def orders(self, fund_id, side=None, status=None, after=None, before=None, page=None, per_page=None):
        """Returns the orders of a fund. This API supports pagination.

        Args:
            fund_id (str): The fund identifier, e.g 'BTCEUR'.
            side (str, optional): Only 'buy' or 'sell' orders.
            status (str, optional): Only orders with this status, e.g 'active', 'executed', 'deleted'.
            Pagination parameters:
                after (str, optional): Only orders placed after this date.
                before (str, optional): Only orders placed before this date.
                page (int, optional): The page to fetch.
                per_page (int, optional): The number of orders per page.

        Returns (dict): {"orders": [...], "meta": {...}}
        """
        query_params = {
            "side": side,
            "status": status,
            "after": after,
            "before": before,
            "page": page,
            "per_page": per_page,
        }
        # Filter out None values from query parameters
        query_params = {k: v for k, v in query_params.items() if v is not None}
        return self.get(f"funds/{fund_id}/orders", params=query_params)

    def orders_frame(self, fund_id, **filters):
        """[Non API Feature] orders() as a pandas.DataFrame, one row per order.

        Accepts the same filters as orders(). 'price', 'amount' and 'amount_unfilled' are floats,
        'date' is a datetime.
        """
        return make_df(
            self.orders(fund_id, **filters).get("orders", []),
            numeric=["price", "amount", "amount_unfilled"],
            time=["date"],
        )

    # Trade and transaction APIs

    def trades(self, fund_id, after=None, before=None, page=None, per_page=None):
        """Returns your trades on a fund. This API supports pagination.

        Args:
            fund_id (str): The fund identifier, e.g 'BTCEUR'.
            Pagination parameters:
                after (str, optional): Only trades after this date.
                before (str, optional): Only trades before this date.
                page (int, optional): The page to fetch.
                per_page (int, optional): The number of trades per page.

        Returns (dict): {"trades": [...], "meta": {...}}
        """
        query_params = {"after": after, "before": before, "page": page, "per_page": per_page}
        query_params = {k: v for k, v in query_params.items() if v is not None}
        return self.get(f"funds/{fund_id}/trades", params=query_params)

    def trades_frame(self, fund_id, **filters):
        """[Non API Feature] trades() as a pandas.DataFrame, with a 'cost' column = price * amount."""
        df = make_df(
            self.trades(fund_id, **filters).get("trades", []),
            numeric=["price", "amount"],
            time=["date"],
        )
        if "price" in df and "amount" in df:
            df["cost"] = df["price"] * df["amount"]
        return df

    def transactions(self, id):
        """Retrieves a single transaction of your account.

        Args:
            id (int or str): The transaction id.

        Returns (dict): The transaction.
        """
        return self.get(f"transactions/{id}")

    # Fund Management APIs

    def withdrawal(self, currency, address, amount):
        """
        Withdraws a currency to an external address.

        Args:
            currency (str): The currency code, e.g 'BTC'.
            address (str): The destination address.
            amount (str, int, float or Decimal): The amount to withdraw.

        Returns (Withdrawal or None): The exchange's acknowledgement, holding the 'transaction_id',
            or None if the exchange answers with an empty body.

        Raises:
            ValueError: Missing currency or address, or amount <= 0.
            WithdrawalError: The exchange rejected the withdrawal.

        Usage example:
            >>> apiClient = TheRockTrading("your_api_key", "your_api_secret")
            >>> withdrawal = apiClient.withdrawal(currency="BTC", address="1BoatSLRHtKNngkdXEeobR76b53LETtpyT", amount="0.5")
        """
        request = WithdrawalRequest(currency, address, amount)
        data = self.post(
            "atms/withdraw", payload=request.to_payload(), error_kind=ErrorKind.WITHDRAWAL
        )
        if data is None:
            return None
        return Withdrawal.from_json(data)
