"""
Purchase Executor - runs a PreparedPurchase step by step

- Strictly sequential: step k+1 is submitted only after step k confirmed
- No retry, no rollback: a failure leaves earlier steps on-chain and reports
  their receipts in the error details
- A PreparedPurchase is single-use
"""

import logging
from typing import TYPE_CHECKING, Optional

from mintflow.config import MintflowConfig
from mintflow.errors import ErrorCode, MintflowError
from mintflow.transactions import Order, PreparedPurchase, PurchaseResult, Receipt

if TYPE_CHECKING:
    from mintflow.account import Account

logger = logging.getLogger("mintflow.executor")


class PurchaseExecutor:

    def __init__(self, config: Optional[MintflowConfig] = None):
        self.config = config or MintflowConfig()

    async def purchase(
        self,
        account: "Account",
        prepared: PreparedPurchase,
        confirmations: Optional[int] = None,
    ) -> PurchaseResult:
        """
        Execute every step with `account`.

        Raises:
            MintflowError(TRANSACTION_FAILED): a step failed; details carry
                "step" (its id), "receipts" (completed steps) and "cause".
            MintflowError(INVALID_INPUT): the purchase was already executed.
        """
        prepared.mark_consumed()
        depth = confirmations if confirmations is not None else self.config.confirmations

        receipts: list[Receipt] = []
        order: Optional[Order] = None
        for index, step in enumerate(prepared.steps, start=1):
            logger.info(f"Step {index}/{len(prepared.steps)}: {step.name}")
            try:
                result = await step.execute(account, depth)
            except Exception as e:
                logger.warning(
                    f"Step '{step.id}' failed after {len(receipts)} completed step(s): {type(e).__name__}: {e}"
                )
                raise MintflowError(
                    ErrorCode.TRANSACTION_FAILED,
                    f"Step '{step.id}' failed: {e}",
                    {"step": step.id, "receipts": list(receipts), "cause": e},
                ) from e
            receipts.append(result.receipt)
            if result.order is not None:
                order = result.order

        if order is None:
            raise MintflowError(
                ErrorCode.TRANSACTION_FAILED,
                "Purchase completed but no order produced",
                {"receipts": list(receipts)},
            )

        logger.info(f"Purchase complete: {len(receipts)} transaction(s), {order.quantity} token(s) to {order.recipient[:10]}...")
        return PurchaseResult(receipts=tuple(receipts), order=order)
