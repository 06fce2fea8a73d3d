"""
Money - exact currency amounts for native coins and ERC20 tokens

Amounts are integers in the smallest unit (wei for native, token base units
for ERC20). USD estimates ride along as 2-decimal strings and are scaled
proportionally through arithmetic.

Rules:
- Money is immutable; every operation returns a new instance
- Two amounts interact only when their currency identity
  (network_id, currency address) matches exactly
- USD lookups are best-effort: failure leaves formatted_usd = None
"""

import logging
from dataclasses import dataclass, replace
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP
from typing import TYPE_CHECKING, Optional, Union

from mintflow.config import NATIVE_CURRENCY, native_symbol
from mintflow.errors import CurrencyMismatchError, ErrorCode, MintflowError

if TYPE_CHECKING:
    from mintflow.pricing import PriceService
    from mintflow.providers import ReadEndpointRouter

logger = logging.getLogger("mintflow.money")

_CENT = Decimal("0.01")
NATIVE_DECIMALS = 18


def format_units(value: int, decimals: int) -> str:
    """Render a base-unit integer as a decimal string, e.g. 1500000 (6) -> '1.5'."""
    if decimals == 0:
        return str(value)
    negative = value < 0
    whole, frac = divmod(abs(value), 10 ** decimals)
    frac_str = str(frac).rjust(decimals, "0").rstrip("0")
    text = f"{whole}.{frac_str}" if frac_str else f"{whole}.0"
    return f"-{text}" if negative else text


def usd_value(value: int, decimals: int, rate: Union[Decimal, float, str]) -> str:
    """USD estimate for a base-unit amount at a spot rate, 2 decimals."""
    rate_dec = Decimal(str(rate))
    if rate_dec == 0:
        return "0.00"
    amount = Decimal(value) / (Decimal(10) ** decimals)
    return str((amount * rate_dec).quantize(_CENT, rounding=ROUND_HALF_UP))


def _round_usd(value: Decimal) -> str:
    return str(value.quantize(_CENT, rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class Money:
    value: int
    decimals: int
    currency: str
    symbol: str
    network_id: int
    formatted_usd: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.value, int) or isinstance(self.value, bool):
            raise MintflowError(
                ErrorCode.INVALID_INPUT,
                f"Money value must be an integer amount of base units, got {self.value!r}",
            )
        # currency identity is always compared lower-cased
        object.__setattr__(self, "currency", self.currency.lower())

    # ----------------------------------------------------------
    # CONSTRUCTION
    # ----------------------------------------------------------

    @classmethod
    async def create(
        cls,
        value: Union[int, str],
        network_id: int,
        currency: str = NATIVE_CURRENCY,
        reader: Optional["ReadEndpointRouter"] = None,
        pricing: Optional["PriceService"] = None,
        fetch_usd: bool = True,
    ) -> "Money":
        """
        Build a Money, resolving symbol/decimals and (optionally) a USD estimate.

        Native amounts use the network's native symbol and 18 decimals. ERC20
        amounts read symbol() and decimals() from the token through `reader`.
        """
        amount = int(value)
        is_native = currency.lower() == NATIVE_CURRENCY

        if is_native:
            symbol = native_symbol(network_id)
            decimals = NATIVE_DECIMALS
        else:
            if reader is None:
                raise MintflowError(
                    ErrorCode.INVALID_INPUT,
                    "A chain reader is required to resolve ERC20 metadata",
                    {"currency": currency, "networkId": network_id},
                )
            symbol, decimals = await reader.get_token_metadata(network_id, currency)

        formatted_usd = None
        if fetch_usd and pricing is not None:
            try:
                rate = await pricing.get_usd_rate(symbol, None if is_native else currency)
                if rate:
                    formatted_usd = usd_value(amount, decimals, rate)
            except Exception as e:
                logger.debug(f"USD rate lookup failed for {symbol}: {e}")

        return cls(
            value=amount,
            decimals=decimals,
            currency=currency,
            symbol=symbol,
            network_id=network_id,
            formatted_usd=formatted_usd,
        )

    @classmethod
    async def zero(
        cls,
        network_id: int,
        currency: str = NATIVE_CURRENCY,
        reader: Optional["ReadEndpointRouter"] = None,
    ) -> "Money":
        return await cls.create(0, network_id, currency, reader=reader, fetch_usd=False)

    @classmethod
    def from_data(cls, data: dict) -> "Money":
        """Rebuild from a to_dict() payload (no I/O)."""
        return cls(
            value=int(data["value"]),
            decimals=int(data["decimals"]),
            currency=data["currency"],
            symbol=data["symbol"],
            network_id=int(data["network_id"]),
            formatted_usd=data.get("formatted_usd"),
        )

    # ----------------------------------------------------------
    # IDENTITY
    # ----------------------------------------------------------

    @property
    def currency_key(self) -> tuple[int, str]:
        return (self.network_id, self.currency)

    @property
    def formatted(self) -> str:
        return format_units(self.value, self.decimals)

    def is_native(self) -> bool:
        return self.currency == NATIVE_CURRENCY

    def is_erc20(self) -> bool:
        return not self.is_native()

    def is_same_currency(self, other: "Money") -> bool:
        return self.currency_key == other.currency_key

    def _require_same(self, other: "Money", operation: str) -> None:
        if not self.is_same_currency(other):
            raise CurrencyMismatchError(
                operation,
                f"{self.symbol}({self.currency}@{self.network_id})",
                f"{other.symbol}({other.currency}@{other.network_id})",
            )

    # ----------------------------------------------------------
    # ARITHMETIC
    # ----------------------------------------------------------

    def add(self, other: "Money") -> "Money":
        self._require_same(other, "add")
        if self.formatted_usd is not None and other.formatted_usd is not None:
            usd = _round_usd(Decimal(self.formatted_usd) + Decimal(other.formatted_usd))
        else:
            usd = self.formatted_usd if self.formatted_usd is not None else other.formatted_usd
        return replace(self, value=self.value + other.value, formatted_usd=usd)

    def subtract(self, other: "Money") -> "Money":
        self._require_same(other, "subtract")
        if other.value > self.value:
            raise MintflowError(
                ErrorCode.INVALID_INPUT,
                f"Cannot subtract {other.formatted} from {self.formatted} - would result in negative",
            )
        usd = None
        if self.formatted_usd is not None and other.formatted_usd is not None:
            usd = _round_usd(Decimal(self.formatted_usd) - Decimal(other.formatted_usd))
        return replace(self, value=self.value - other.value, formatted_usd=usd)

    def multiply(self, scalar: Union[int, float, str, Decimal]) -> "Money":
        """Multiply by a decimal scalar; precision is capped at 3 decimal places."""
        scalar_dec = Decimal(str(scalar))
        milli = int((scalar_dec * 1000).to_integral_value(rounding=ROUND_DOWN))
        new_value = self.value * milli // 1000
        usd = None
        if self.formatted_usd is not None:
            usd = _round_usd(Decimal(self.formatted_usd) * scalar_dec)
        return replace(self, value=new_value, formatted_usd=usd)

    def multiply_int(self, scalar: int) -> "Money":
        if not isinstance(scalar, int) or isinstance(scalar, bool):
            raise MintflowError(ErrorCode.INVALID_INPUT, f"Multiplier must be an integer, received {scalar!r}")
        usd = None
        if self.formatted_usd is not None:
            usd = _round_usd(Decimal(self.formatted_usd) * scalar)
        return replace(self, value=self.value * scalar, formatted_usd=usd)

    def divide_int(self, divisor: int) -> "Money":
        """Divide by a positive integer, truncating toward zero (no fractional wei)."""
        if not isinstance(divisor, int) or isinstance(divisor, bool) or divisor <= 0:
            raise MintflowError(
                ErrorCode.INVALID_INPUT,
                f"Divisor must be a positive integer, received {divisor!r}",
            )
        usd = None
        if self.formatted_usd is not None:
            usd = _round_usd(Decimal(self.formatted_usd) / divisor)
        return replace(self, value=self.value // divisor, formatted_usd=usd)

    # ----------------------------------------------------------
    # COMPARISON
    # ----------------------------------------------------------

    def compare_to(self, other: "Money") -> int:
        self._require_same(other, "compare")
        if self.value < other.value:
            return -1
        if self.value > other.value:
            return 1
        return 0

    def is_equal_to(self, other: "Money") -> bool:
        return self.compare_to(other) == 0

    def is_less_than(self, other: "Money") -> bool:
        return self.compare_to(other) < 0

    def is_less_than_or_equal(self, other: "Money") -> bool:
        return self.compare_to(other) <= 0

    def is_greater_than(self, other: "Money") -> bool:
        return self.compare_to(other) > 0

    def is_greater_than_or_equal(self, other: "Money") -> bool:
        return self.compare_to(other) >= 0

    def is_zero(self) -> bool:
        return self.value == 0

    def is_positive(self) -> bool:
        return self.value > 0

    # ----------------------------------------------------------
    # PRESENTATION
    # ----------------------------------------------------------

    def with_usd(self, formatted_usd: Optional[str]) -> "Money":
        return replace(self, formatted_usd=formatted_usd)

    def to_dict(self) -> dict:
        return {
            "value": str(self.value),
            "decimals": self.decimals,
            "currency": self.currency,
            "symbol": self.symbol,
            "network_id": self.network_id,
            "formatted": self.formatted,
            "formatted_usd": self.formatted_usd,
        }

    def to_display_string(self, include_usd: bool = False) -> str:
        base = f"{self.formatted} {self.symbol}"
        if include_usd and self.formatted_usd is not None:
            return f"{base} (${self.formatted_usd})"
        return base

    def __str__(self) -> str:
        return self.to_display_string()
