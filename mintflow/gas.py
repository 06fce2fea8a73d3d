"""
Gas policy - buffered limits on top of node estimates

- GasBuffer.fixed adds a flat amount to the estimate
- otherwise the estimate is scaled by multiplier percent (default 120 => +20%)
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from mintflow.errors import ErrorCode, MintflowError

if TYPE_CHECKING:
    from mintflow.config import MintflowConfig
    from mintflow.providers import ReadEndpointRouter

logger = logging.getLogger("mintflow.gas")

DEFAULT_MULTIPLIER = 120


@dataclass(frozen=True)
class GasBuffer:
    fixed: Optional[int] = None
    multiplier: Optional[int] = None

    def __post_init__(self):
        if self.fixed is not None and self.fixed < 0:
            raise MintflowError(ErrorCode.INVALID_INPUT, f"Gas buffer must be non-negative, got {self.fixed}")
        if self.multiplier is not None and self.multiplier <= 0:
            raise MintflowError(ErrorCode.INVALID_INPUT, f"Gas multiplier must be positive, got {self.multiplier}")

    @classmethod
    def from_config(cls, config: "MintflowConfig") -> "GasBuffer":
        return cls(multiplier=config.gas_buffer_percent)

    def apply(self, estimate: int) -> int:
        if self.fixed is not None:
            return estimate + self.fixed
        return estimate * (self.multiplier or DEFAULT_MULTIPLIER) // 100


async def estimate_gas(
    router: "ReadEndpointRouter",
    network_id: int,
    tx: dict,
    fallback: Optional[int] = None,
) -> int:
    """
    Node gas estimate for tx.

    With a fallback, estimation failure logs and returns it; without one
    the failure raises GAS_ESTIMATION_FAILED.
    """
    try:
        return await router.estimate_gas(network_id, tx)
    except Exception as e:
        if fallback is not None:
            logger.warning(f"Gas estimation failed on network {network_id}, using default {fallback}: {e}")
            return fallback
        raise MintflowError(
            ErrorCode.GAS_ESTIMATION_FAILED,
            f"Gas estimation failed: {e}",
            {"networkId": network_id, "to": tx.get("to"), "cause": e},
        ) from e
