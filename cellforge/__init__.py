"""cellforge: transaction construction for cell-based chains."""

from .cells import DependencyCell, HeaderDep, InputCell, OutputCell, Witness
from .config import Network, NodeConfig, load_node_config
from .errors import (
    BalanceInvariantError,
    CapacityTooSmallError,
    CellforgeError,
    ConfirmationTimeoutError,
    DuplicateInputError,
    EmptyInputsError,
    ExternalRpcError,
    InsufficientFundsError,
    NetworkMismatchError,
    NotFoundError,
    ReferenceUnresolvedError,
    SkeletonIndexError,
    TransactionRejectedError,
)
from .fake import FakeGateway
from .operation import Instruction, Log, LogKey, Operation, TransactionCalculator
from .rpc_client import CellCursor, ChainGateway, JsonRpcGateway, SearchFilter, SearchKey
from .script_ref import ScriptRef
from .signing import Secp256k1Key
from .skeleton import ChangeReceiver, ResolvedTransaction, TransactionSkeleton

__all__ = [
    "DependencyCell",
    "HeaderDep",
    "InputCell",
    "OutputCell",
    "Witness",
    "Network",
    "NodeConfig",
    "load_node_config",
    "BalanceInvariantError",
    "CapacityTooSmallError",
    "CellforgeError",
    "ConfirmationTimeoutError",
    "DuplicateInputError",
    "EmptyInputsError",
    "ExternalRpcError",
    "InsufficientFundsError",
    "NetworkMismatchError",
    "NotFoundError",
    "ReferenceUnresolvedError",
    "SkeletonIndexError",
    "TransactionRejectedError",
    "FakeGateway",
    "Instruction",
    "Log",
    "LogKey",
    "Operation",
    "TransactionCalculator",
    "CellCursor",
    "ChainGateway",
    "JsonRpcGateway",
    "SearchFilter",
    "SearchKey",
    "ScriptRef",
    "Secp256k1Key",
    "ChangeReceiver",
    "ResolvedTransaction",
    "TransactionSkeleton",
]
