"""
Purchase Orchestrator - validates a purchase and plans its transactions

Flow (all validation happens before a PreparedPurchase exists):
1. Resolve buyer + recipient, validate quantity
2. Sale status gate (NOT_STARTED / ENDED / SOLD_OUT)
3. Allocation gate (NOT_ELIGIBLE, or INVALID_INPUT when quantity exceeds it)
4. Cost = unit price x qty + platform fee x qty, aggregated per currency
5. Funds: ERC20 balance + allowance (approval step when short); native balance check
6. Terminal mint step (proofs resolved now for the snapshot, again at execution)

Non-fatal: a failed native balance read only warns; execution reverts on-chain.
"""

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import TYPE_CHECKING, Optional

from eth_utils import is_address

from mintflow.config import MintflowConfig
from mintflow.errors import ErrorCode, MintflowError
from mintflow.gas import GasBuffer, estimate_gas
from mintflow.money import Money
from mintflow.products.base import ClaimProduct, ProductStatus
from mintflow.providers import gather_reads
from mintflow.transactions import (
    ApprovalBuilder,
    CostBreakdown,
    MintBuilder,
    PreparedPurchase,
    StepKind,
    TransactionData,
    TransactionStep,
)

if TYPE_CHECKING:
    from mintflow.account import Account

logger = logging.getLogger("mintflow.orchestrator")


_STATUS_ERRORS = {
    ProductStatus.UPCOMING: (ErrorCode.NOT_STARTED, "Sale has not started"),
    ProductStatus.ENDED: (ErrorCode.ENDED, "Sale has ended"),
    ProductStatus.SOLD_OUT: (ErrorCode.SOLD_OUT, "Product is sold out"),
}


def aggregate_by_currency(*amounts: Money) -> dict[tuple[int, str], Money]:
    """Sum positive amounts per currency identity, keeping first-seen order."""
    totals: dict[tuple[int, str], Money] = {}
    for amount in amounts:
        if not amount.is_positive():
            continue
        key = amount.currency_key
        totals[key] = totals[key].add(amount) if key in totals else amount
    return totals


def _total_usd(*amounts: Money) -> Optional[str]:
    values = [Decimal(a.formatted_usd) for a in amounts if a.formatted_usd is not None]
    if not values:
        return None
    return str(sum(values, Decimal(0)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


class PurchaseOrchestrator:

    def __init__(self, config: Optional[MintflowConfig] = None):
        self.config = config or MintflowConfig()

    async def prepare_purchase(
        self,
        product: ClaimProduct,
        address: Optional[str] = None,
        quantity: int = 1,
        recipient: Optional[str] = None,
        account: Optional["Account"] = None,
        gas_buffer: Optional[GasBuffer] = None,
    ) -> PreparedPurchase:
        details = {"instanceId": product.instance_id}

        # ---- 1. inputs ----
        if address is None and account is not None:
            address = await account.get_address()
        if not address or not is_address(address):
            raise MintflowError(ErrorCode.INVALID_INPUT, "Invalid wallet address", {**details, "address": address})
        recipient = recipient or address
        if not is_address(recipient):
            raise MintflowError(ErrorCode.INVALID_INPUT, "Invalid recipient address", {**details, "address": recipient})
        if recipient.lower() != address.lower() and not product.supports_recipient:
            raise MintflowError(
                ErrorCode.INVALID_INPUT,
                f"{type(product).__name__} always mints to the buyer; a separate recipient is not supported",
                {**details, "address": recipient},
            )
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise MintflowError(ErrorCode.INVALID_INPUT, "Quantity must be a positive integer", {**details, "quantity": quantity})

        network_id = product.network_id
        buffer = gas_buffer or GasBuffer.from_config(self.config)

        # ---- 2. status ----
        status = await product.get_status()
        if status in _STATUS_ERRORS:
            code, message = _STATUS_ERRORS[status]
            raise MintflowError(code, message, {**details, "mintStatus": status.value})

        # ---- 3. allocation ----
        allocation = await product.get_allocations(recipient)
        if not allocation.is_eligible:
            raise MintflowError(
                ErrorCode.NOT_ELIGIBLE,
                allocation.reason or "Not eligible",
                {**details, "address": recipient},
            )
        if allocation.quantity is not None and quantity > allocation.quantity:
            raise MintflowError(
                ErrorCode.INVALID_INPUT,
                "Quantity exceeds available allocation",
                {**details, "requested": quantity, "available": allocation.quantity},
            )

        # ---- 4. cost ----
        unit_price = await product.get_unit_price(recipient)
        fee = await product.get_platform_fee()
        product_cost = unit_price.multiply_int(quantity)
        platform_fee = fee.multiply_int(quantity)
        totals = aggregate_by_currency(product_cost, platform_fee)

        native_total = next((m for m in totals.values() if m.is_native()), None)
        erc20_totals = tuple(m for m in totals.values() if m.is_erc20())
        cost = CostBreakdown(
            product=product_cost,
            platform_fee=platform_fee,
            native=native_total,
            erc20s=erc20_totals,
            total_usd=_total_usd(product_cost, platform_fee),
        )

        # ---- 5. funds ----
        steps: list[TransactionStep] = []
        for total in erc20_totals:
            step = await self._check_erc20(product, address, total, buffer, details)
            if step is not None:
                steps.append(step)
        if native_total is not None:
            await self._check_native(product, address, native_total, account, details)

        # ---- 6. mint ----
        steps.append(await self._mint_step(product, address, recipient, quantity, cost, buffer, bool(steps)))

        logger.info(
            f"Prepared purchase: instance {product.instance_id} x{quantity} for {recipient[:10]}... | "
            f"{len(steps)} step(s) | {', '.join(str(m) for m in cost.totals()) or 'free'}"
        )
        return PreparedPurchase(cost=cost, steps=tuple(steps), is_eligible=True)

    # ============================================================
    # FUNDS CHECKS
    # ============================================================

    async def _check_erc20(
        self,
        product: ClaimProduct,
        owner: str,
        total: Money,
        buffer: GasBuffer,
        details: dict,
    ) -> Optional[TransactionStep]:
        router = product.router
        spender = product.extension_address
        try:
            balance, allowance = await gather_reads(
                router.get_token_balance(total.network_id, total.currency, owner),
                router.get_allowance(total.network_id, total.currency, owner, spender),
            )
        except MintflowError:
            raise
        except Exception as e:
            raise MintflowError(
                ErrorCode.API_ERROR,
                f"Failed to read {total.symbol} balance/allowance",
                {**details, "address": owner, "cause": e},
            ) from e

        if balance < total.value:
            raise MintflowError(
                ErrorCode.INSUFFICIENT_FUNDS,
                f"Insufficient {total.symbol} balance. Need {total.formatted} but have "
                f"{Money(balance, total.decimals, total.currency, total.symbol, total.network_id).formatted}",
                {**details, "address": owner, "currency": total.currency},
            )
        if allowance >= total.value:
            return None

        builder = ApprovalBuilder(
            router=router,
            network_id=total.network_id,
            token=total.currency,
            spender=spender,
            amount=total,
            gas_buffer=buffer,
            fallback_gas=self.config.fallback_gas,
            owner=owner,
        )
        data = builder.calldata()
        estimate = await estimate_gas(
            router, total.network_id,
            {"from": owner, "to": total.currency, "data": data},
            fallback=self.config.fallback_gas,
        )
        return TransactionStep(
            id=f"approve-{total.symbol.lower()}",
            name=f"Approve {total.symbol} Spending",
            kind=StepKind.APPROVE,
            description=f"Approve {total.formatted} {total.symbol}",
            transaction_data=TransactionData(
                contract_address=total.currency,
                network_id=total.network_id,
                data=data,
                value=0,
                gas_estimate=estimate,
            ),
            builder=builder,
        )

    async def _check_native(
        self,
        product: ClaimProduct,
        owner: str,
        total: Money,
        account: Optional["Account"],
        details: dict,
    ) -> None:
        try:
            if account is not None:
                balance = await account.get_balance(total.network_id)
                balance_value = balance.value
            else:
                balance_value = await product.router.get_balance(total.network_id, owner)
        except Exception as e:
            logger.warning(f"Unable to fetch native balance for {owner[:10]}..., skipping balance check: {e}")
            return

        if balance_value < total.value:
            have = Money(balance_value, total.decimals, total.currency, total.symbol, total.network_id)
            raise MintflowError(
                ErrorCode.INSUFFICIENT_FUNDS,
                f"Insufficient {total.symbol} balance. Need {total.formatted} but have {have.formatted}",
                {**details, "address": owner, "currency": total.currency},
            )

    # ============================================================
    # MINT STEP
    # ============================================================

    async def _mint_step(
        self,
        product: ClaimProduct,
        address: str,
        recipient: str,
        quantity: int,
        cost: CostBreakdown,
        buffer: GasBuffer,
        approvals_pending: bool,
    ) -> TransactionStep:
        value = cost.native_value
        data = await product.encode_mint(recipient, quantity)
        # The node cannot simulate the mint until the approvals land
        estimate = await estimate_gas(
            product.router, product.network_id,
            {"from": address, "to": product.extension_address, "data": data, "value": value},
            fallback=self.config.fallback_gas if approvals_pending else None,
        )
        builder = MintBuilder(
            product=product,
            quantity=quantity,
            value=value,
            cost=cost,
            gas_buffer=buffer,
            buyer=address,
            recipient=recipient,
        )
        return TransactionStep(
            id="mint",
            name="Mint",
            kind=StepKind.MINT,
            description=f"Mint {quantity} token(s) from instance {product.instance_id}",
            transaction_data=TransactionData(
                contract_address=product.extension_address,
                network_id=product.network_id,
                data=data,
                value=value,
                gas_estimate=estimate,
            ),
            builder=builder,
        )
