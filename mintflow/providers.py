"""
Read Endpoint Router - chain reads with ordered RPC fallback

Design:
- Sync Web3 calls wrapped in asyncio.run_in_executor() (web3.py async is fragile)
- Candidate endpoints: MINTFLOW_RPC_<id> overrides first, then network defaults
- A candidate is healthy only when eth.chain_id matches the requested network
- Healthy connection cached per network for the lifetime of the router
- Transport failures fall through to the next endpoint; contract reverts do not
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Sequence

from web3 import Web3
from web3.exceptions import ContractLogicError

from mintflow.abis import ERC20_ABI
from mintflow.config import MintflowConfig
from mintflow.errors import ErrorCode, MintflowError

logger = logging.getLogger("mintflow.providers")


class _ChainIdMismatch(Exception):
    pass


# Failures that say something about the call, not the endpoint
_NO_FALLBACK = (ContractLogicError, MintflowError)


async def gather_reads(*aws: Awaitable[Any]) -> list[Any]:
    """
    Await concurrent reads and return their results in order.

    Every read is awaited to completion; the first failure (by position) is
    raised after all of them finish.
    """
    results = await asyncio.gather(*aws, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return list(results)


class ReadEndpointRouter:
    """
    Usage:
        router = ReadEndpointRouter(MintflowConfig.from_env())
        balance = await router.get_balance(8453, "0xabc...")
        claim = await router.call_function(8453, extension, EDITION_721_ABI,
                                           "getClaim", creator, instance_id)
    """

    def __init__(
        self,
        config: Optional[MintflowConfig] = None,
        web3_factory: Optional[Callable[[str], Any]] = None,
    ):
        self._config = config or MintflowConfig()
        self._web3_factory = web3_factory or self._http_web3
        # network_id -> (url, w3)
        self._connections: dict[int, tuple[str, Any]] = {}
        self._token_metadata: dict[tuple[int, str], tuple[str, int]] = {}

    def _http_web3(self, url: str) -> Web3:
        return Web3(Web3.HTTPProvider(url, request_kwargs={"timeout": self._config.rpc_timeout}))

    @staticmethod
    async def _in_executor(fn: Callable[[], Any]) -> Any:
        return await asyncio.get_running_loop().run_in_executor(None, fn)

    # ============================================================
    # CONNECTIONS
    # ============================================================

    async def _connect(self, network_id: int, url: str) -> Any:
        w3 = self._web3_factory(url)
        chain_id = await self._in_executor(lambda: w3.eth.chain_id)
        if int(chain_id) != network_id:
            raise _ChainIdMismatch(f"{url} serves chain {chain_id}, expected {network_id}")
        return w3

    async def get_connection(self, network_id: int, exclude: Sequence[str] = ()) -> Any:
        cached = self._connections.get(network_id)
        if cached and cached[0] not in exclude:
            return cached[1]

        urls = self._config.endpoints_for(network_id)
        if not urls:
            raise MintflowError(
                ErrorCode.UNSUPPORTED_NETWORK,
                f"No RPC endpoints configured for network {network_id}",
                {"networkId": network_id},
            )

        last_error: Optional[Exception] = None
        for url in urls:
            if url in exclude:
                continue
            try:
                w3 = await self._connect(network_id, url)
            except _ChainIdMismatch as e:
                logger.warning(f"Skipping endpoint: {e}")
                last_error = e
                continue
            except Exception as e:
                logger.warning(f"Endpoint {url} unavailable for network {network_id}: {type(e).__name__}: {e}")
                last_error = e
                continue
            self._connections[network_id] = (url, w3)
            logger.debug(f"Network {network_id} connected via {url}")
            return w3

        raise MintflowError(
            ErrorCode.NETWORK_ERROR,
            f"No provider available for network {network_id}",
            {"networkId": network_id, "tried": urls, "cause": last_error},
        )

    def connected_endpoint(self, network_id: int) -> Optional[str]:
        cached = self._connections.get(network_id)
        return cached[0] if cached else None

    def reset(self, network_id: Optional[int] = None) -> None:
        if network_id is None:
            self._connections.clear()
        else:
            self._connections.pop(network_id, None)

    async def execute(self, network_id: int, fn: Callable[[Any], Any]) -> Any:
        """
        Run fn(w3) on a healthy endpoint, moving down the list on transport failure.

        Raises NETWORK_ERROR once every endpoint has failed.
        """
        failed: list[str] = []
        last_error: Optional[Exception] = None
        while True:
            try:
                w3 = await self.get_connection(network_id, exclude=failed)
            except MintflowError as e:
                if last_error is not None:
                    e.details["cause"] = last_error
                raise
            url = self.connected_endpoint(network_id)
            try:
                return await self._in_executor(lambda: fn(w3))
            except _NO_FALLBACK:
                raise
            except Exception as e:
                last_error = e
                logger.warning(f"Read on network {network_id} via {url} failed, trying next endpoint: {e}")
                self.reset(network_id)
                if url:
                    failed.append(url)

    # ============================================================
    # READ HELPERS
    # ============================================================

    @staticmethod
    def _checksum_args(abi: list, fn_name: str, args: Sequence[Any]) -> list:
        entry = next((e for e in abi if e.get("type") == "function" and e.get("name") == fn_name), None)
        if entry is None:
            raise MintflowError(ErrorCode.INVALID_INPUT, f"Function {fn_name} not in ABI")
        out = []
        for spec, arg in zip(entry["inputs"], args):
            if spec["type"] == "address" and isinstance(arg, str):
                arg = Web3.to_checksum_address(arg)
            out.append(arg)
        return out

    async def call_function(self, network_id: int, address: str, abi: list, fn_name: str, *args: Any) -> Any:
        call_args = self._checksum_args(abi, fn_name, args)
        target = Web3.to_checksum_address(address)

        def _call(w3):
            contract = w3.eth.contract(address=target, abi=abi)
            return getattr(contract.functions, fn_name)(*call_args).call()

        return await self.execute(network_id, _call)

    async def estimate_gas(self, network_id: int, tx: dict) -> int:
        params = dict(tx)
        for key in ("from", "to"):
            if params.get(key):
                params[key] = Web3.to_checksum_address(params[key])
        return int(await self.execute(network_id, lambda w3: w3.eth.estimate_gas(params)))

    async def get_balance(self, network_id: int, address: str) -> int:
        target = Web3.to_checksum_address(address)
        return int(await self.execute(network_id, lambda w3: w3.eth.get_balance(target)))

    async def get_chain_id(self, network_id: int) -> int:
        return int(await self.execute(network_id, lambda w3: w3.eth.chain_id))

    async def get_block_number(self, network_id: int) -> int:
        return int(await self.execute(network_id, lambda w3: w3.eth.block_number))

    # ============================================================
    # ERC20
    # ============================================================

    async def get_token_metadata(self, network_id: int, token: str) -> tuple[str, int]:
        """(symbol, decimals) for an ERC20, cached per router."""
        key = (network_id, token.lower())
        if key in self._token_metadata:
            return self._token_metadata[key]
        try:
            symbol, decimals = await gather_reads(
                self.call_function(network_id, token, ERC20_ABI, "symbol"),
                self.call_function(network_id, token, ERC20_ABI, "decimals"),
            )
        except MintflowError:
            raise
        except Exception as e:
            raise MintflowError(
                ErrorCode.API_ERROR,
                f"Failed to read ERC20 metadata for {token}",
                {"token": token, "networkId": network_id, "cause": e},
            ) from e
        self._token_metadata[key] = (str(symbol), int(decimals))
        return self._token_metadata[key]

    async def get_token_balance(self, network_id: int, token: str, owner: str) -> int:
        return int(await self.call_function(network_id, token, ERC20_ABI, "balanceOf", owner))

    async def get_allowance(self, network_id: int, token: str, owner: str, spender: str) -> int:
        return int(await self.call_function(network_id, token, ERC20_ABI, "allowance", owner, spender))
