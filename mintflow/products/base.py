"""
Products - common surface of every on-chain sale variant

Layer 2 of mintflow. A ClaimProduct wraps one sale instance (creator contract
+ extension contract + instance id) and answers:
- get_status():       upcoming / active / ended / sold-out
- get_allocations():  how many the recipient may still mint, and why not
- get_unit_price() / get_platform_fee(): per-unit Money, allowlist aware
- encode_mint():      mint calldata (re-resolving proofs on every call)
- parse_minted_tokens(): (token_id, quantity) from receipt logs

prepare_purchase() / purchase() delegate to PurchaseOrchestrator and
PurchaseExecutor; variants only supply the hooks above.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Iterable, Optional, Sequence

from eth_abi import decode

from mintflow.abis import (
    TRANSFER_BATCH_TOPIC,
    TRANSFER_SINGLE_TOPIC,
    TRANSFER_TOPIC,
    topic_to_address,
)
from mintflow.config import NATIVE_CURRENCY, ZERO_HASH, MintflowConfig
from mintflow.errors import ErrorCode, MintflowError
from mintflow.merkle import AllowlistEntry
from mintflow.money import Money
from mintflow.transactions import LogEntry

if TYPE_CHECKING:
    from mintflow.account import Account
    from mintflow.allowlist import AllowlistIndex
    from mintflow.gas import GasBuffer
    from mintflow.merkle import AllowlistProofEngine
    from mintflow.pricing import PriceService
    from mintflow.providers import ReadEndpointRouter
    from mintflow.transactions import PreparedPurchase, PurchaseResult

logger = logging.getLogger("mintflow.products")

_ZERO_ADDRESS = NATIVE_CURRENCY


# ============================================================
# ENUMS / VALUE TYPES
# ============================================================

class AppType(Enum):
    EDITION = "edition"
    BLIND_MINT = "blind-mint"


class ProductStatus(Enum):
    UPCOMING = "upcoming"
    ACTIVE = "active"
    ENDED = "ended"
    SOLD_OUT = "sold-out"


class AudienceType(Enum):
    NONE = "none"
    ALLOWLIST = "allowlist"


@dataclass(frozen=True)
class Allocation:
    is_eligible: bool
    quantity: Optional[int]        # None = no limit
    reason: Optional[str] = None


@dataclass(frozen=True)
class Inventory:
    total_supply: int              # -1 = unlimited
    total_purchased: int


@dataclass(frozen=True)
class Rules:
    start_date: Optional[datetime]
    end_date: Optional[datetime]
    audience_restriction: AudienceType
    max_per_wallet: Optional[int]


@dataclass(frozen=True)
class InstanceData:
    """Static description of one sale instance, as published by the creator."""
    instance_id: int
    app_type: AppType
    network_id: int
    creator_contract: str
    extension_address: str
    spec: str = "erc721"
    merkle_tree_id: Optional[int] = None
    allowlist: tuple[AllowlistEntry, ...] = ()

    @classmethod
    def from_dict(cls, data: dict) -> "InstanceData":
        """
        Accepts the published instance payload:
            {"id", "appType", "networkId", "creatorContract", "spec",
             "extensionAddress721" / "extensionAddress1155" (or "extensionAddress"),
             "merkleTreeId"?}
        """
        try:
            app_type = AppType(data.get("appType"))
        except ValueError as e:
            raise MintflowError(
                ErrorCode.UNSUPPORTED_TYPE,
                f"Unsupported product type: {data.get('appType')}",
                {"instanceId": data.get("id")},
            ) from e
        try:
            spec = str(data.get("spec", "erc721")).lower()
            extension = data.get(f"extensionAddress{spec[3:]}") or data.get("extensionAddress")
            if not extension:
                raise KeyError(f"extensionAddress for {spec}")
            return cls(
                instance_id=int(data["id"]),
                app_type=app_type,
                network_id=int(data["networkId"]),
                creator_contract=data["creatorContract"],
                extension_address=extension,
                spec=spec,
                merkle_tree_id=data.get("merkleTreeId"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise MintflowError(ErrorCode.INVALID_INPUT, f"Malformed instance data: {e}", {"data": data}) from e


@dataclass(frozen=True)
class OnchainData:
    """Sale parameters read from the extension contract."""
    total: int
    total_max: Optional[int]            # None = open edition
    wallet_max: Optional[int]           # None = no per-wallet cap
    start_date: Optional[datetime]
    end_date: Optional[datetime]
    cost: Money
    platform_fee: Money
    merkle_platform_fee: Optional[Money] = None
    merkle_root: str = ZERO_HASH
    location: str = ""
    payment_receiver: str = NATIVE_CURRENCY
    storage_protocol: int = 0
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def audience(self) -> AudienceType:
        if self.merkle_root and self.merkle_root.lower() != ZERO_HASH:
            return AudienceType.ALLOWLIST
        return AudienceType.NONE


def from_unix(seconds: int) -> Optional[datetime]:
    return datetime.fromtimestamp(int(seconds), tz=timezone.utc) if seconds else None


def bytes32_hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex().rjust(64, "0")
    text = str(value).lower()
    return text if text.startswith("0x") else "0x" + text


# ============================================================
# LOG PARSING
# ============================================================

def parse_erc721_mints(logs: Iterable[LogEntry], contract: str, targets: set[str]) -> list[tuple[int, int]]:
    """Transfer(from=0x0, to in targets) -> one token each."""
    contract = contract.lower()
    minted = []
    for log in logs:
        if log.address.lower() != contract or len(log.topics) != 4 or log.topics[0] != TRANSFER_TOPIC:
            continue
        if topic_to_address(log.topics[1]) != _ZERO_ADDRESS:
            continue
        if topic_to_address(log.topics[2]) not in targets:
            continue
        minted.append((int(log.topics[3], 16), 1))
    return minted


def parse_erc1155_mints(logs: Iterable[LogEntry], contract: str, targets: set[str]) -> list[tuple[int, int]]:
    """TransferSingle / TransferBatch from 0x0 to a target, quantities from `value(s)`."""
    contract = contract.lower()
    minted = []
    for log in logs:
        if log.address.lower() != contract or len(log.topics) != 4:
            continue
        if log.topics[0] not in (TRANSFER_SINGLE_TOPIC, TRANSFER_BATCH_TOPIC):
            continue
        if topic_to_address(log.topics[2]) != _ZERO_ADDRESS:
            continue
        if topic_to_address(log.topics[3]) not in targets:
            continue
        data = bytes.fromhex(log.data[2:] if log.data.startswith("0x") else log.data)
        try:
            if log.topics[0] == TRANSFER_SINGLE_TOPIC:
                token_id, value = decode(["uint256", "uint256"], data)
                pairs = [(token_id, value)]
            else:
                ids, values = decode(["uint256[]", "uint256[]"], data)
                pairs = list(zip(ids, values))
        except Exception as e:
            logger.debug(f"Skipping undecodable ERC1155 transfer log: {e}")
            continue
        minted.extend((int(t), int(v)) for t, v in pairs if v > 0)
    return minted


# ============================================================
# CLAIM PRODUCT
# ============================================================

class ClaimProduct(ABC):
    """One sale instance. Subclasses register under an AppType."""

    app_type: AppType
    # False when the mint function always mints to msg.sender
    supports_recipient: bool = True

    def __init__(
        self,
        instance: InstanceData,
        router: "ReadEndpointRouter",
        config: Optional[MintflowConfig] = None,
        pricing: Optional["PriceService"] = None,
        allowlist_index: Optional["AllowlistIndex"] = None,
        proof_engine: Optional["AllowlistProofEngine"] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.instance = instance
        self.router = router
        self.config = config or MintflowConfig()
        self.pricing = pricing
        self.allowlist_index = allowlist_index
        self.proof_engine = proof_engine
        self._clock = clock
        self._onchain: Optional[OnchainData] = None

    @property
    def instance_id(self) -> int:
        return self.instance.instance_id

    @property
    def network_id(self) -> int:
        return self.instance.network_id

    @property
    def creator_contract(self) -> str:
        return self.instance.creator_contract

    @property
    def extension_address(self) -> str:
        return self.instance.extension_address

    # ------------------------------------------------------------
    # On-chain data
    # ------------------------------------------------------------

    @abstractmethod
    async def _read_onchain(self) -> OnchainData:
        ...

    async def fetch_onchain_data(self, force: bool = False) -> OnchainData:
        if self._onchain is not None and not force:
            return self._onchain
        try:
            self._onchain = await self._read_onchain()
        except MintflowError:
            raise
        except Exception as e:
            raise MintflowError(
                ErrorCode.API_ERROR,
                "Failed to fetch onchain data",
                {"instanceId": self.instance_id, "cause": e},
            ) from e
        return self._onchain

    async def _money(self, value: int, currency: str = NATIVE_CURRENCY) -> Money:
        return await Money.create(
            value,
            self.network_id,
            currency,
            reader=self.router,
            pricing=self.pricing,
            fetch_usd=self.config.fetch_usd,
        )

    # ------------------------------------------------------------
    # Sale state
    # ------------------------------------------------------------

    async def get_status(self) -> ProductStatus:
        data = await self.fetch_onchain_data()
        now = self._clock()
        if data.start_date and now < data.start_date.timestamp():
            return ProductStatus.UPCOMING
        if data.end_date and now > data.end_date.timestamp():
            return ProductStatus.ENDED
        if data.total_max and data.total >= data.total_max:
            return ProductStatus.SOLD_OUT
        return ProductStatus.ACTIVE

    @abstractmethod
    async def get_allocations(self, recipient: str) -> Allocation:
        ...

    async def get_unit_price(self, recipient: str) -> Money:
        return (await self.fetch_onchain_data()).cost

    async def get_platform_fee(self) -> Money:
        return (await self.fetch_onchain_data()).platform_fee

    async def get_inventory(self) -> Inventory:
        data = await self.fetch_onchain_data()
        return Inventory(
            total_supply=data.total_max if data.total_max else -1,
            total_purchased=data.total,
        )

    async def get_rules(self) -> Rules:
        data = await self.fetch_onchain_data()
        return Rules(
            start_date=data.start_date,
            end_date=data.end_date,
            audience_restriction=data.audience,
            max_per_wallet=data.wallet_max,
        )

    # ------------------------------------------------------------
    # Mint hooks
    # ------------------------------------------------------------

    @abstractmethod
    async def encode_mint(self, recipient: str, quantity: int) -> str:
        """Calldata for minting `quantity` to `recipient` on the extension."""

    @abstractmethod
    def parse_minted_tokens(self, logs: Sequence[LogEntry], wallet: str, recipient: str) -> list[tuple[int, int]]:
        ...

    # ------------------------------------------------------------
    # Purchase
    # ------------------------------------------------------------

    async def prepare_purchase(
        self,
        address: Optional[str] = None,
        quantity: int = 1,
        recipient: Optional[str] = None,
        account: Optional["Account"] = None,
        gas_buffer: Optional["GasBuffer"] = None,
    ) -> "PreparedPurchase":
        from mintflow.orchestrator import PurchaseOrchestrator

        return await PurchaseOrchestrator(self.config).prepare_purchase(
            self,
            address=address,
            quantity=quantity,
            recipient=recipient,
            account=account,
            gas_buffer=gas_buffer,
        )

    async def purchase(
        self,
        account: "Account",
        prepared: "PreparedPurchase",
        confirmations: Optional[int] = None,
    ) -> "PurchaseResult":
        from mintflow.executor import PurchaseExecutor

        return await PurchaseExecutor(self.config).purchase(account, prepared, confirmations)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(instance_id={self.instance_id}, "
            f"network_id={self.network_id}, creator={self.creator_contract})"
        )
