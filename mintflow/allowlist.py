"""
Allowlist index service - precomputed merkle entries per wallet

For allowlist-gated sales whose tree is hosted off-chain, the index service
returns one entry per claimable slot: the mint index (`value`) and the proof
for that slot (`merkleProof`). The caller filters out indices already used
on-chain before using them.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import aiohttp

from mintflow.errors import ErrorCode, MintflowError

logger = logging.getLogger("mintflow.allowlist")


@dataclass(frozen=True)
class MerkleInfo:
    value: Optional[int]
    merkle_proof: tuple[str, ...]

    @classmethod
    def from_api(cls, data: dict) -> "MerkleInfo":
        value = data.get("value")
        return cls(
            value=int(value) if value is not None else None,
            merkle_proof=tuple(data.get("merkleProof") or ()),
        )


class AllowlistIndex(ABC):

    @abstractmethod
    async def get_merkle_info(self, tree_id: int, address: str) -> list[MerkleInfo]:
        ...

    async def close(self) -> None:
        return None


class HttpAllowlistIndex(AllowlistIndex):
    """GET {base}/merkle-trees/{tree_id}/merkle-info?address=0x..."""

    def __init__(self, base_url: str, timeout: float = 15.0):
        self._base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def get_merkle_info(self, tree_id: int, address: str) -> list[MerkleInfo]:
        if not self._base_url:
            raise MintflowError(
                ErrorCode.API_ERROR,
                "Allowlist index URL not configured (MINTFLOW_ALLOWLIST_API_URL)",
                {"treeId": tree_id},
            )

        url = f"{self._base_url}/merkle-trees/{tree_id}/merkle-info"
        session = await self._get_session()
        try:
            async with session.get(url, params={"address": address.lower()}) as resp:
                if resp.status == 404:
                    return []
                if resp.status != 200:
                    raise MintflowError(
                        ErrorCode.API_ERROR,
                        f"Allowlist index returned HTTP {resp.status}",
                        {"treeId": tree_id, "address": address, "status": resp.status},
                    )
                body = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise MintflowError(
                ErrorCode.API_ERROR,
                f"Allowlist index request failed: {type(e).__name__}",
                {"treeId": tree_id, "address": address, "cause": e},
            ) from e

        if not isinstance(body, list):
            raise MintflowError(
                ErrorCode.API_ERROR,
                "Malformed allowlist index response",
                {"treeId": tree_id, "address": address},
            )
        entries = [MerkleInfo.from_api(item) for item in body if isinstance(item, dict)]
        logger.debug(f"Allowlist tree {tree_id}: {len(entries)} entries for {address[:10]}...")
        return entries
