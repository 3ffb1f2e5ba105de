from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from TheRockTrading.errors import ParseError

ORDER_SIDES = ("buy", "sell")


def to_decimal(value, name):
    """Converts an amount or price to Decimal, raising ValueError for anything that is not a finite number."""
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a number, got {value!r}")
    try:
        # str() first so floats keep their short repr instead of the binary expansion.
        number = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValueError(f"{name} must be a number, got {value!r}") from None
    if not number.is_finite():
        raise ValueError(f"{name} must be a finite number, got {value!r}")
    return number


def positive_decimal(value, name):
    number = to_decimal(value, name)
    if number <= 0:
        raise ValueError(f"{name} must be positive, got {value!r}")
    return number


def optional_decimal(value, name):
    """Converts a numeric field of a response; absent or empty is None, anything else must be a number."""
    if value is None or value == "":
        return None
    try:
        return to_decimal(value, name)
    except ValueError as e:
        raise ParseError(f"Malformed {name} in response: {value!r}", value) from e


def require_text(value, name):
    if value is None or not str(value).strip():
        raise ValueError(f"{name} must be a non-empty string.")
    return str(value)


def format_decimal(number):
    """Renders a Decimal without exponent notation, e.g Decimal('1E-8') -> '0.00000001'."""
    return format(number, "f")


@dataclass(frozen=True)
class OrderRequest:
    """A validated order placement, e.g OrderRequest("BTCEUR", "buy", "0.1", "25000")."""

    fund_id: str
    side: str
    amount: Decimal
    price: Decimal

    def __post_init__(self):
        object.__setattr__(self, "fund_id", require_text(self.fund_id, "fund_id"))
        side = str(self.side).lower()
        if side not in ORDER_SIDES:
            raise ValueError(f"side must be either 'buy' or 'sell', got {self.side!r}")
        object.__setattr__(self, "side", side)
        object.__setattr__(self, "amount", positive_decimal(self.amount, "amount"))
        object.__setattr__(self, "price", positive_decimal(self.price, "price"))

    def to_payload(self):
        return {
            "fund_id": self.fund_id,
            "side": self.side,
            "amount": format_decimal(self.amount),
            "price": format_decimal(self.price),
        }


@dataclass(frozen=True)
class WithdrawalRequest:
    """A validated withdrawal of 'amount' of 'currency' to an external 'address'."""

    currency: str
    address: str
    amount: Decimal

    def __post_init__(self):
        object.__setattr__(self, "currency", require_text(self.currency, "currency"))
        object.__setattr__(self, "address", require_text(self.address, "address"))
        object.__setattr__(self, "amount", positive_decimal(self.amount, "amount"))

    def to_payload(self):
        return {
            "currency": self.currency,
            "amount": format_decimal(self.amount),
            "destination_address": self.address,
        }


@dataclass(frozen=True)
class Order:
    """
    An order as reported by the exchange.

    Numeric fields are Decimal (a malformed one raises ParseError), fields the exchange did not send
    are None and the full decoded response is kept in 'raw' for anything not mapped here
    (trades, leverage, close_on...).
    """

    id: object
    fund_id: str = None
    side: str = None
    type: str = None
    status: str = None
    price: Decimal = None
    amount: Decimal = None
    amount_unfilled: Decimal = None
    date: str = None
    raw: dict = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_json(cls, data):
        if not isinstance(data, dict) or "id" not in data:
            raise ParseError(f"Not an order: {data!r}", data)
        return cls(
            id=data["id"],
            fund_id=data.get("fund_id"),
            side=data.get("side"),
            type=data.get("type"),
            status=data.get("status"),
            price=optional_decimal(data.get("price"), "price"),
            amount=optional_decimal(data.get("amount"), "amount"),
            amount_unfilled=optional_decimal(data.get("amount_unfilled"), "amount_unfilled"),
            date=data.get("date"),
            raw=data,
        )


@dataclass(frozen=True)
class Withdrawal:
    """The exchange's acknowledgement of a withdrawal request."""

    transaction_id: object
    raw: dict = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_json(cls, data):
        if not isinstance(data, dict):
            raise ParseError(f"Not a withdrawal: {data!r}", data)
        return cls(transaction_id=data.get("transaction_id"), raw=data)
