"""
BlindMint - randomized ERC1155 drops

The buyer pays for N mints and receives N tokens drawn from
`tokenVariations` variations starting at `startingTokenId`. No allowlist and
no per-wallet cap: only supply and the sale window gate a purchase.
"""

import logging
from typing import Any, Sequence

from eth_utils import is_address

from mintflow.abis import (
    BLINDMINT_ABI,
    BLINDMINT_CLAIM_FIELDS,
    MINT_RESERVE_SIGNATURE,
    MINT_RESERVE_TYPES,
    decode_struct,
    encode_call,
)
from mintflow.config import NATIVE_CURRENCY
from mintflow.errors import ErrorCode, MintflowError
from mintflow.products.base import (
    Allocation,
    AppType,
    ClaimProduct,
    OnchainData,
    from_unix,
    parse_erc1155_mints,
)
from mintflow.providers import gather_reads
from mintflow.transactions import LogEntry

logger = logging.getLogger("mintflow.products.blindmint")


class BlindMintProduct(ClaimProduct):
    app_type = AppType.BLIND_MINT
    supports_recipient = False

    async def _call(self, fn_name: str, *args: Any) -> Any:
        try:
            return await self.router.call_function(
                self.network_id, self.extension_address, BLINDMINT_ABI, fn_name, *args
            )
        except MintflowError:
            raise
        except Exception as e:
            raise MintflowError(
                ErrorCode.API_ERROR,
                f"{fn_name}() failed on {self.extension_address}",
                {"instanceId": self.instance_id, "cause": e},
            ) from e

    async def _read_onchain(self) -> OnchainData:
        raw, mint_fee = await gather_reads(
            self._call("getClaim", self.creator_contract, self.instance_id),
            self._call("MINT_FEE"),
        )
        claim = decode_struct(BLINDMINT_CLAIM_FIELDS, raw)

        return OnchainData(
            total=int(claim["total"]),
            total_max=int(claim["totalMax"]) or None,
            wallet_max=None,
            start_date=from_unix(claim["startDate"]),
            end_date=from_unix(claim["endDate"]),
            cost=await self._money(int(claim["cost"]), claim.get("erc20") or NATIVE_CURRENCY),
            platform_fee=await self._money(int(mint_fee)),
            location=claim.get("location", ""),
            payment_receiver=claim.get("paymentReceiver", NATIVE_CURRENCY),
            storage_protocol=int(claim.get("storageProtocol", 0)),
            extra={
                "startingTokenId": int(claim["startingTokenId"]),
                "tokenVariations": int(claim["tokenVariations"]),
            },
        )

    async def get_allocations(self, recipient: str) -> Allocation:
        if not is_address(recipient):
            raise MintflowError(ErrorCode.INVALID_INPUT, "Invalid recipient address", {"walletAddress": recipient})

        data = await self.fetch_onchain_data()
        if not data.total_max:
            return Allocation(is_eligible=True, quantity=None)

        remaining = max(0, data.total_max - data.total)
        return Allocation(
            is_eligible=remaining > 0,
            quantity=remaining,
            reason="No mints available" if remaining == 0 else None,
        )

    def token_ids(self, data: OnchainData) -> list[int]:
        start = data.extra["startingTokenId"]
        return list(range(start, start + data.extra["tokenVariations"]))

    async def encode_mint(self, recipient: str, quantity: int) -> str:
        # mintReserve always mints to msg.sender
        return encode_call(MINT_RESERVE_SIGNATURE, MINT_RESERVE_TYPES, [self.creator_contract, self.instance_id, quantity])

    def parse_minted_tokens(self, logs: Sequence[LogEntry], wallet: str, recipient: str) -> list[tuple[int, int]]:
        minted = parse_erc1155_mints(logs, self.creator_contract, {wallet.lower(), recipient.lower()})
        if self._onchain is None:
            return minted
        # other drops on the same creator contract share the receipt
        drop = set(self.token_ids(self._onchain))
        return [(token_id, qty) for token_id, qty in minted if token_id in drop]
