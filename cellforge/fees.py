"""Fee-rate lookup and fee arithmetic.

Fee rates are expressed in shannons per 1000 serialized bytes, the unit the
node reports as ``min_fee_rate`` in ``tx_pool_info``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from .rpc_client import ChainGateway
from .types import SHANNONS_PER_CKB

logger = logging.getLogger(__name__)

DEFAULT_EXTRA_FEE_RATE = 0
ENV_EXTRA_FEE_RATE = "CELLFORGE_EXTRA_FEE_RATE"


def calculate_fee(tx_size: int, fee_rate: int) -> int:
    """Fee in shannons for ``tx_size`` bytes at ``fee_rate`` shannons/KB."""

    return tx_size * fee_rate // 1000


def format_capacity(shannons: int) -> str:
    whole, frac = divmod(int(shannons), SHANNONS_PER_CKB)
    return f"{whole}.{frac:08d} CKB"


@dataclass
class FeeEstimate:
    """Container for fee decisions."""

    min_fee_rate: int
    extra_fee_rate: int
    tx_size: int
    fee: int

    @property
    def fee_rate(self) -> int:
        return self.min_fee_rate + self.extra_fee_rate


def _env_extra_fee_rate() -> int | None:
    raw = os.environ.get(ENV_EXTRA_FEE_RATE)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid integer in %s=%s; ignoring", ENV_EXTRA_FEE_RATE, raw)
        return None


def estimate_fee(
    gateway: ChainGateway,
    tx_size: int,
    *,
    extra_fee_rate: int | None = None,
    max_fee: int | None = None,
) -> FeeEstimate:
    """Price ``tx_size`` bytes at the pool minimum plus ``extra_fee_rate``."""

    if extra_fee_rate is None:
        extra_fee_rate = _env_extra_fee_rate()
    if extra_fee_rate is None:
        extra_fee_rate = DEFAULT_EXTRA_FEE_RATE
    if extra_fee_rate < 0:
        raise ValueError("extra fee rate must not be negative")

    min_fee_rate = gateway.tx_pool_info().min_fee_rate
    fee = calculate_fee(tx_size, min_fee_rate + extra_fee_rate)
    logger.debug(
        "Fee for %d bytes at %d+%d shannons/KB: %d",
        tx_size,
        min_fee_rate,
        extra_fee_rate,
        fee,
    )
    if max_fee is not None and fee > max_fee:
        raise ValueError(f"Computed fee {fee} shannons exceeds max fee {max_fee}")
    return FeeEstimate(
        min_fee_rate=min_fee_rate,
        extra_fee_rate=extra_fee_rate,
        tx_size=tx_size,
        fee=fee,
    )
