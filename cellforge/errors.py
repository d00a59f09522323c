"""Error taxonomy shared by the skeleton engine, gateways and operations."""

from __future__ import annotations


class CellforgeError(RuntimeError):
    """Base class for every error raised while assembling a transaction."""


class NotFoundError(CellforgeError):
    """Raised when a cell, header, transaction or dependency cannot be located."""


class DuplicateInputError(CellforgeError):
    """Raised when an input with an already-present previous out-point is pushed."""

    def __init__(self, out_point: object) -> None:
        super().__init__(f"input already exists: {out_point}")
        self.out_point = out_point


class CapacityTooSmallError(CellforgeError):
    """Raised when a declared capacity cannot cover the occupied capacity."""

    def __init__(self, declared: int, occupied: int) -> None:
        super().__init__(
            f"declared capacity {declared} is below occupied capacity {occupied}"
        )
        self.declared = declared
        self.occupied = occupied


class InsufficientFundsError(CellforgeError):
    """Raised when the balancer runs out of unclaimed cells."""


class BalanceInvariantError(CellforgeError):
    """Raised when the post-balance surplus differs from the fee."""

    def __init__(self, surplus: int, fee: int) -> None:
        super().__init__(f"balance check failed: surplus {surplus} != fee {fee}")
        self.surplus = surplus
        self.fee = fee


class ReferenceUnresolvedError(CellforgeError):
    """Raised when a script reference cannot be turned into a concrete script."""


class EmptyInputsError(CellforgeError):
    """Raised when a unique id is derived before any input exists."""


class SkeletonIndexError(CellforgeError, IndexError):
    """Raised when an input, output or witness index is out of range."""


class NetworkMismatchError(CellforgeError):
    """Raised when an operation is used against a network it does not support."""


class ExternalRpcError(CellforgeError):
    """Raised when talking to the node or indexer fails."""


class TransactionRejectedError(CellforgeError):
    """Raised when the chain rejects a submitted transaction."""

    def __init__(self, tx_hash: str, reason: str) -> None:
        super().__init__(f"transaction {tx_hash} rejected: {reason}")
        self.tx_hash = tx_hash
        self.reason = reason


class ConfirmationTimeoutError(CellforgeError):
    """Raised when waiting for confirmations exceeds the caller's timeout."""

    def __init__(self, tx_hash: str, timeout: float) -> None:
        super().__init__(f"timed out after {timeout:.0f}s waiting for {tx_hash}")
        self.tx_hash = tx_hash
        self.timeout = timeout
