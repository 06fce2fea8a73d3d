"""
Transactions - purchase plan, step descriptors and their results

A PreparedPurchase is an ordered list of TransactionSteps (approvals first,
then exactly one terminal mint). Each step carries:
- transaction_data: immutable snapshot taken at preparation (for display / review)
- builder: re-derives the request at execution time (fresh gas, fresh proofs)

Steps are executed by PurchaseExecutor; a PreparedPurchase is consumed once.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import TYPE_CHECKING, Optional, Sequence

from mintflow.abis import APPROVE_SIGNATURE, encode_call
from mintflow.errors import ErrorCode, MintflowError
from mintflow.gas import GasBuffer, estimate_gas
from mintflow.money import Money

if TYPE_CHECKING:
    from mintflow.account import Account
    from mintflow.products.base import ClaimProduct
    from mintflow.providers import ReadEndpointRouter

logger = logging.getLogger("mintflow.transactions")


# ============================================================
# WIRE TYPES
# ============================================================

@dataclass(frozen=True)
class LogEntry:
    address: str
    topics: tuple[str, ...]
    data: str


@dataclass(frozen=True)
class TransactionRequest:
    to: str
    data: str
    value: int
    gas_limit: int
    chain_id: int
    from_address: Optional[str] = None


@dataclass(frozen=True)
class TransactionResponse:
    tx_hash: str
    chain_id: int
    block_number: int
    gas_used: int
    status: int = 1
    logs: tuple[LogEntry, ...] = ()


@dataclass(frozen=True)
class Receipt:
    network_id: int
    tx_hash: str
    block_number: int
    gas_used: int

    @classmethod
    def from_response(cls, response: TransactionResponse) -> "Receipt":
        return cls(
            network_id=response.chain_id,
            tx_hash=response.tx_hash,
            block_number=response.block_number,
            gas_used=response.gas_used,
        )


# ============================================================
# COST / ORDER
# ============================================================

def _scale_usd(usd: Optional[str], numerator: int, denominator: int = 1) -> Optional[str]:
    if usd is None:
        return None
    scaled = Decimal(usd) * numerator / denominator
    return str(scaled.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class CostBreakdown:
    product: Money
    platform_fee: Money
    native: Optional[Money] = None
    erc20s: tuple[Money, ...] = ()
    total_usd: Optional[str] = None

    @property
    def native_value(self) -> int:
        return self.native.value if self.native else 0

    def totals(self) -> list[Money]:
        return ([self.native] if self.native else []) + list(self.erc20s)

    def divide_int(self, divisor: int) -> "CostBreakdown":
        if divisor <= 0:
            raise MintflowError(ErrorCode.INVALID_INPUT, "Divisor must be greater than zero")
        return CostBreakdown(
            product=self.product.divide_int(divisor),
            platform_fee=self.platform_fee.divide_int(divisor),
            native=self.native.divide_int(divisor) if self.native else None,
            erc20s=tuple(m.divide_int(divisor) for m in self.erc20s),
            total_usd=_scale_usd(self.total_usd, 1, divisor),
        )

    def multiply_int(self, scalar: int) -> "CostBreakdown":
        return CostBreakdown(
            product=self.product.multiply_int(scalar),
            platform_fee=self.platform_fee.multiply_int(scalar),
            native=self.native.multiply_int(scalar) if self.native else None,
            erc20s=tuple(m.multiply_int(scalar) for m in self.erc20s),
            total_usd=_scale_usd(self.total_usd, scalar),
        )

    def to_dict(self) -> dict:
        return {
            "product": self.product.to_dict(),
            "platform_fee": self.platform_fee.to_dict(),
            "native": self.native.to_dict() if self.native else None,
            "erc20s": [m.to_dict() for m in self.erc20s],
            "total_usd": self.total_usd,
        }


@dataclass(frozen=True)
class OrderItem:
    token_id: int
    quantity: int
    total: CostBreakdown


@dataclass(frozen=True)
class Order:
    recipient: str
    total: CostBreakdown
    items: tuple[OrderItem, ...] = ()

    @property
    def quantity(self) -> int:
        return sum(item.quantity for item in self.items)


def build_order(recipient: str, cost: CostBreakdown, minted: Sequence[tuple[int, int]]) -> Order:
    """Split the purchase total over minted (token_id, quantity) pairs."""
    total_quantity = sum(qty for _, qty in minted)
    if total_quantity <= 0:
        return Order(recipient=recipient, total=cost)
    per_unit = cost.divide_int(total_quantity)
    items = tuple(
        OrderItem(token_id=token_id, quantity=qty, total=per_unit.multiply_int(qty))
        for token_id, qty in minted
    )
    return Order(recipient=recipient, total=cost, items=items)


# ============================================================
# STEPS
# ============================================================

class StepKind(Enum):
    APPROVE = "approve"
    MINT = "mint"


@dataclass(frozen=True)
class TransactionData:
    contract_address: str
    network_id: int
    data: str
    value: int
    gas_estimate: int


@dataclass(frozen=True)
class StepResult:
    receipt: Receipt
    order: Optional[Order] = None


class StepBuilder(ABC):
    """Re-derives and submits a step's transaction at execution time."""

    @abstractmethod
    async def run(self, account: "Account", confirmations: int) -> StepResult:
        ...


async def _signer_for(account: "Account", owner: str) -> str:
    """The account address, which must be the wallet the step was prepared for."""
    wallet = await account.get_address()
    if wallet.lower() != owner.lower():
        raise MintflowError(
            ErrorCode.INVALID_INPUT,
            f"Purchase was prepared for {owner}, not {wallet}",
            {"address": wallet, "expected": owner},
        )
    return wallet


class ApprovalBuilder(StepBuilder):

    def __init__(
        self,
        router: "ReadEndpointRouter",
        network_id: int,
        token: str,
        spender: str,
        amount: Money,
        gas_buffer: GasBuffer,
        fallback_gas: int,
        owner: str,
    ):
        self.router = router
        self.network_id = network_id
        self.token = token
        self.spender = spender
        self.amount = amount
        self.gas_buffer = gas_buffer
        self.fallback_gas = fallback_gas
        self.owner = owner

    def calldata(self) -> str:
        return encode_call(APPROVE_SIGNATURE, ["address", "uint256"], [self.spender, self.amount.value])

    async def run(self, account: "Account", confirmations: int) -> StepResult:
        await account.switch_network(self.network_id)
        owner = await _signer_for(account, self.owner)
        data = self.calldata()
        estimate = await estimate_gas(
            self.router, self.network_id,
            {"from": owner, "to": self.token, "data": data},
            fallback=self.fallback_gas,
        )
        request = TransactionRequest(
            to=self.token,
            data=data,
            value=0,
            gas_limit=self.gas_buffer.apply(estimate),
            chain_id=self.network_id,
            from_address=owner,
        )
        response = await account.send_transaction_with_confirmation(request, confirmations)
        logger.info(f"Approved {self.amount} for {self.spender[:10]}... | tx={response.tx_hash[:16]}...")
        return StepResult(receipt=Receipt.from_response(response))


class MintBuilder(StepBuilder):

    def __init__(
        self,
        product: "ClaimProduct",
        quantity: int,
        value: int,
        cost: CostBreakdown,
        gas_buffer: GasBuffer,
        buyer: str,
        recipient: str,
    ):
        self.product = product
        self.quantity = quantity
        self.value = value
        self.cost = cost
        self.gas_buffer = gas_buffer
        self.buyer = buyer
        self.recipient = recipient

    async def run(self, account: "Account", confirmations: int) -> StepResult:
        network_id = self.product.network_id
        await account.switch_network(network_id)
        wallet = await _signer_for(account, self.buyer)
        mint_to = self.recipient

        # proofs may have been consumed since preparation
        data = await self.product.encode_mint(mint_to, self.quantity)
        estimate = await estimate_gas(
            self.product.router, network_id,
            {"from": wallet, "to": self.product.extension_address, "data": data, "value": self.value},
        )
        request = TransactionRequest(
            to=self.product.extension_address,
            data=data,
            value=self.value,
            gas_limit=self.gas_buffer.apply(estimate),
            chain_id=network_id,
            from_address=wallet,
        )
        response = await account.send_transaction_with_confirmation(request, confirmations)
        minted = self.product.parse_minted_tokens(response.logs, wallet, mint_to)
        order = build_order(mint_to, self.cost, minted)
        logger.info(
            f"Minted {order.quantity or self.quantity} from instance {self.product.instance_id} "
            f"to {mint_to[:10]}... | tx={response.tx_hash[:16]}..."
        )
        return StepResult(receipt=Receipt.from_response(response), order=order)


@dataclass(frozen=True)
class TransactionStep:
    id: str
    name: str
    kind: StepKind
    description: str
    transaction_data: TransactionData
    builder: StepBuilder = field(repr=False, compare=False)

    @property
    def contract_address(self) -> str:
        return self.transaction_data.contract_address

    @property
    def network_id(self) -> int:
        return self.transaction_data.network_id

    async def execute(self, account: "Account", confirmations: int = 1) -> StepResult:
        return await self.builder.run(account, confirmations)


# ============================================================
# PREPARED PURCHASE
# ============================================================

@dataclass
class PreparedPurchase:
    cost: CostBreakdown
    steps: tuple[TransactionStep, ...]
    is_eligible: bool = True
    consumed: bool = field(default=False, init=False)

    def mark_consumed(self) -> None:
        if self.consumed:
            raise MintflowError(ErrorCode.INVALID_INPUT, "This prepared purchase has already been executed")
        self.consumed = True

    @property
    def mint_step(self) -> TransactionStep:
        return self.steps[-1]

    @property
    def approval_steps(self) -> tuple[TransactionStep, ...]:
        return self.steps[:-1]


@dataclass(frozen=True)
class PurchaseResult:
    receipts: tuple[Receipt, ...]
    order: Order
