"""
USD Pricing - spot rates for native coins and ERC20 tokens

Best-effort by contract: every failure (timeout, non-200, malformed body)
is logged and returns None. Callers never see an exception from here.

Sources:
1. Coinbase spot price (native coins + common tokens)
2. CoinGecko (token contract address, then symbol id) as fallback
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Optional

import aiohttp

logger = logging.getLogger("mintflow.pricing")


_COINBASE_TOKENS = {"USDC", "USDT", "DAI", "WBTC", "LINK", "UNI", "AAVE", "COMP", "MKR", "SNX"}

_COINGECKO_IDS = {
    "USDC": "usd-coin",
    "USDT": "tether",
    "DAI": "dai",
    "WETH": "weth",
    "WBTC": "wrapped-bitcoin",
    "LINK": "chainlink",
    "UNI": "uniswap",
    "AAVE": "aave",
    "COMP": "compound-governance-token",
    "MKR": "maker",
    "SNX": "synthetix-network-token",
}


class PriceService(ABC):
    """Spot USD rate lookup for a currency."""

    @abstractmethod
    async def get_usd_rate(self, symbol: str, token_address: Optional[str] = None) -> Optional[Decimal]:
        ...

    async def close(self) -> None:
        return None


class StaticPriceService(PriceService):
    """Fixed rates keyed by symbol; useful offline and in tests."""

    def __init__(self, rates: dict[str, Decimal | float | str]):
        self._rates = {k.upper(): Decimal(str(v)) for k, v in rates.items()}

    async def get_usd_rate(self, symbol: str, token_address: Optional[str] = None) -> Optional[Decimal]:
        return self._rates.get(symbol.upper())


class CoinbasePriceService(PriceService):

    def __init__(
        self,
        coinbase_url: str = "https://api.coinbase.com/v2",
        coingecko_url: str = "https://api.coingecko.com/api/v3",
        timeout: float = 5.0,
    ):
        self._coinbase_url = coinbase_url.rstrip("/")
        self._coingecko_url = coingecko_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def _fetch_json(self, url: str, params: Optional[dict] = None) -> Optional[dict]:
        session = await self._get_session()
        try:
            async with session.get(url, params=params) as resp:
                if resp.status != 200:
                    logger.warning(f"Price API {url} returned {resp.status}")
                    return None
                return await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Price API {url} failed: {type(e).__name__}: {e}")
            return None

    async def _coinbase_rate(self, symbol: str) -> Optional[Decimal]:
        body = await self._fetch_json(f"{self._coinbase_url}/prices/{symbol.upper()}-USD/spot")
        if not body:
            return None
        try:
            return Decimal(str(body["data"]["amount"]))
        except (KeyError, TypeError, InvalidOperation):
            logger.warning(f"Malformed Coinbase response for {symbol}")
            return None

    async def _coingecko_rate(self, symbol: str, token_address: Optional[str]) -> Optional[Decimal]:
        if token_address:
            body = await self._fetch_json(
                f"{self._coingecko_url}/simple/token_price/ethereum",
                {"contract_addresses": token_address, "vs_currencies": "usd"},
            )
            key = token_address.lower()
        else:
            key = _COINGECKO_IDS.get(symbol.upper(), symbol.lower())
            body = await self._fetch_json(
                f"{self._coingecko_url}/simple/price",
                {"ids": key, "vs_currencies": "usd"},
            )
        if not body:
            return None
        price = (body.get(key) or {}).get("usd")
        if price is None:
            return None
        try:
            return Decimal(str(price))
        except InvalidOperation:
            return None

    async def get_usd_rate(self, symbol: str, token_address: Optional[str] = None) -> Optional[Decimal]:
        # Native coins (no token address) and well-known tokens: Coinbase first
        if token_address is None or symbol.upper() in _COINBASE_TOKENS:
            rate = await self._coinbase_rate(symbol)
            if rate:
                return rate
            if token_address is None:
                return None
        return await self._coingecko_rate(symbol, token_address)
