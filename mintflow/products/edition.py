"""
Edition - fixed-price ERC721 / ERC1155 claim instances

Allowlist sources (when the on-chain merkle root is non-zero):
1. Local: instance carries AllowlistEntry list; proofs built by AllowlistProofEngine,
   tree root must equal the on-chain merkleRoot
2. Index: instance carries merkle_tree_id; one MerkleInfo per claimable mint index,
   already-used indices filtered through checkMintIndices()

Fees: MINT_FEE for public sales, MINT_FEE_MERKLE for allowlist sales.
"""

import logging
from typing import Any, Optional, Sequence

from eth_utils import is_address

from mintflow.abis import (
    EDITION_1155_ABI,
    EDITION_721_ABI,
    ERC1155_CLAIM_FIELDS,
    ERC721_CLAIM_FIELDS,
    MINT_PROXY_SIGNATURE,
    MINT_PROXY_TYPES,
    decode_struct,
    encode_call,
)
from mintflow.allowlist import MerkleInfo
from mintflow.config import NATIVE_CURRENCY
from mintflow.errors import ErrorCode, MintflowError
from mintflow.merkle import AllowlistEntry, AllowlistProofEngine
from mintflow.money import Money
from mintflow.products.base import (
    Allocation,
    AppType,
    AudienceType,
    ClaimProduct,
    OnchainData,
    bytes32_hex,
    from_unix,
    parse_erc1155_mints,
    parse_erc721_mints,
)
from mintflow.providers import gather_reads
from mintflow.transactions import LogEntry

logger = logging.getLogger("mintflow.products.edition")

_SPECS = {
    "erc721": (EDITION_721_ABI, ERC721_CLAIM_FIELDS),
    "erc1155": (EDITION_1155_ABI, ERC1155_CLAIM_FIELDS),
}


class EditionProduct(ClaimProduct):
    app_type = AppType.EDITION

    def __init__(self, instance, router, **kwargs):
        super().__init__(instance, router, **kwargs)
        if instance.spec not in _SPECS:
            raise MintflowError(
                ErrorCode.INVALID_INPUT,
                f"Unsupported contract spec: {instance.spec}",
                {"instanceId": instance.instance_id},
            )
        self._abi, self._claim_fields = _SPECS[instance.spec]
        if self.proof_engine is None and instance.allowlist:
            self.proof_engine = AllowlistProofEngine(self.config.proof_cache_size)

    @property
    def is_erc721(self) -> bool:
        return self.instance.spec == "erc721"

    async def _call(self, fn_name: str, *args: Any) -> Any:
        try:
            return await self.router.call_function(self.network_id, self.extension_address, self._abi, fn_name, *args)
        except MintflowError:
            raise
        except Exception as e:
            raise MintflowError(
                ErrorCode.API_ERROR,
                f"{fn_name}() failed on {self.extension_address}",
                {"instanceId": self.instance_id, "cause": e},
            ) from e

    # ============================================================
    # ON-CHAIN DATA
    # ============================================================

    async def _read_onchain(self) -> OnchainData:
        raw, mint_fee, merkle_fee = await gather_reads(
            self._call("getClaim", self.creator_contract, self.instance_id),
            self._call("MINT_FEE"),
            self._call("MINT_FEE_MERKLE"),
        )
        claim = decode_struct(self._claim_fields, raw)

        cost = await self._money(int(claim["cost"]), claim.get("erc20") or NATIVE_CURRENCY)
        platform_fee = await self._money(int(mint_fee))
        merkle_platform_fee = await self._money(int(merkle_fee))

        if self.is_erc721:
            extra = {"identical": bool(claim.get("identical", False)),
                     "contractVersion": int(claim.get("contractVersion", 0))}
        else:
            extra = {"tokenId": int(claim.get("tokenId", 0))}
        extra["signingAddress"] = claim.get("signingAddress", NATIVE_CURRENCY)

        data = OnchainData(
            total=int(claim["total"]),
            total_max=int(claim["totalMax"]) or None,
            wallet_max=int(claim["walletMax"]) or None,
            start_date=from_unix(claim["startDate"]),
            end_date=from_unix(claim["endDate"]),
            cost=cost,
            platform_fee=platform_fee,
            merkle_platform_fee=merkle_platform_fee,
            merkle_root=bytes32_hex(claim["merkleRoot"]),
            location=claim.get("location", ""),
            payment_receiver=claim.get("paymentReceiver", NATIVE_CURRENCY),
            storage_protocol=int(claim.get("storageProtocol", 0)),
            extra=extra,
        )
        logger.debug(
            f"Edition {self.instance_id}: {data.total}/{data.total_max or 'open'} minted, "
            f"cost={cost}, audience={data.audience.value}"
        )
        return data

    # ============================================================
    # ALLOWLIST
    # ============================================================

    async def _total_mints(self, address: str) -> int:
        return int(await self._call("getTotalMints", address, self.creator_contract, self.instance_id))

    def _local_entry(self, address: str) -> Optional[AllowlistEntry]:
        if not self.instance.allowlist:
            return None
        return AllowlistProofEngine.find_entry(self.instance.allowlist, address)

    def _check_local_root(self, data: OnchainData) -> None:
        tree = self.proof_engine.build_tree(self.instance.allowlist)
        if tree.root != data.merkle_root.lower():
            raise MintflowError(
                ErrorCode.INVALID_INPUT,
                "Local allowlist does not match the on-chain merkle root",
                {"instanceId": self.instance_id, "expected": data.merkle_root, "computed": tree.root},
            )

    async def _claimable_merkle_info(self, address: str) -> tuple[list[MerkleInfo], bool]:
        """Unused index entries for address, and whether it appears on the list at all."""
        if self.allowlist_index is None:
            raise MintflowError(
                ErrorCode.API_ERROR,
                "No allowlist index configured for this instance",
                {"instanceId": self.instance_id, "treeId": self.instance.merkle_tree_id},
            )
        infos = await self.allowlist_index.get_merkle_info(self.instance.merkle_tree_id, address)
        candidates = [info for info in infos if info.value is not None]
        if not candidates:
            return [], bool(infos)

        used = await self._call(
            "checkMintIndices", self.creator_contract, self.instance_id, [c.value for c in candidates]
        )
        claimable = [info for info, minted in zip(candidates, used) if not minted]
        return claimable, True

    async def get_allocations(self, recipient: str) -> Allocation:
        if not is_address(recipient):
            raise MintflowError(ErrorCode.INVALID_INPUT, "Invalid recipient address", {"walletAddress": recipient})

        data = await self.fetch_onchain_data()
        supply_left = max(0, data.total_max - data.total) if data.total_max else None

        wallet_left: Optional[int] = None
        on_allowlist = False
        has_wallet_max = False

        if data.audience is AudienceType.ALLOWLIST:
            if self.instance.allowlist:
                entry = self._local_entry(recipient)
                on_allowlist = entry is not None
                wallet_left = 0
                if entry is not None:
                    self._check_local_root(data)
                    cap = entry.max_quantity if entry.max_quantity is not None else data.wallet_max
                    if cap is None:
                        wallet_left = None
                    else:
                        wallet_left = max(0, cap - await self._total_mints(recipient))
            elif self.instance.merkle_tree_id is not None:
                claimable, on_allowlist = await self._claimable_merkle_info(recipient)
                wallet_left = len(claimable)
            else:
                wallet_left = 0
        elif data.wallet_max:
            has_wallet_max = True
            wallet_left = max(0, data.wallet_max - await self._total_mints(recipient))

        limits = [v for v in (supply_left, wallet_left) if v is not None]
        quantity = min(limits) if limits else None

        reason = None
        if quantity == 0:
            if on_allowlist and wallet_left == 0:
                reason = "You have used up all your allotted slots"
            elif has_wallet_max and wallet_left == 0:
                reason = "You have reached the maximum per wallet"
            elif data.audience is AudienceType.ALLOWLIST and not on_allowlist:
                reason = "You are not on the allowlist"
            else:
                reason = "No mints available"

        return Allocation(is_eligible=quantity != 0, quantity=quantity, reason=reason)

    # ============================================================
    # PRICING
    # ============================================================

    async def get_unit_price(self, recipient: str) -> Money:
        data = await self.fetch_onchain_data()
        if data.audience is AudienceType.ALLOWLIST:
            entry = self._local_entry(recipient)
            if entry is not None and entry.price is not None:
                return entry.price
        return data.cost

    async def get_platform_fee(self) -> Money:
        data = await self.fetch_onchain_data()
        if data.audience is AudienceType.ALLOWLIST and data.merkle_platform_fee is not None:
            return data.merkle_platform_fee
        return data.platform_fee

    # ============================================================
    # MINT
    # ============================================================

    async def mint_proofs(self, recipient: str, quantity: int) -> tuple[list[int], list[list[str]]]:
        """(mintIndices, merkleProofs) for the next `quantity` mints; empty for public sales."""
        data = await self.fetch_onchain_data()
        if data.audience is not AudienceType.ALLOWLIST:
            return [], []

        if self.instance.allowlist:
            self._check_local_root(data)
            proof = self.proof_engine.get_proof(self.instance.allowlist, recipient)
            start = await self._total_mints(recipient)
            return list(range(start, start + quantity)), [list(proof.proof) for _ in range(quantity)]

        if self.instance.merkle_tree_id is not None:
            claimable, _ = await self._claimable_merkle_info(recipient)
            claimable = claimable[:quantity]
            return [c.value for c in claimable], [list(c.merkle_proof) for c in claimable]

        return [], []

    async def encode_mint(self, recipient: str, quantity: int) -> str:
        indices, proofs = await self.mint_proofs(recipient, quantity)
        proof_bytes = [[bytes.fromhex(p[2:] if p.startswith("0x") else p) for p in path] for path in proofs]
        return encode_call(
            MINT_PROXY_SIGNATURE,
            MINT_PROXY_TYPES,
            [self.creator_contract, self.instance_id, quantity, indices, proof_bytes, recipient],
        )

    def parse_minted_tokens(self, logs: Sequence[LogEntry], wallet: str, recipient: str) -> list[tuple[int, int]]:
        targets = {wallet.lower(), recipient.lower()}
        if self.is_erc721:
            return parse_erc721_mints(logs, self.creator_contract, targets)
        return parse_erc1155_mints(logs, self.creator_contract, targets)
