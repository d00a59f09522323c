"""Operation library: basic skeleton mutations plus DAO and Spore operations."""

from .basic import (
    AddCellDep,
    AddCellDepByType,
    AddDeployedCellDep,
    AddHeaderDep,
    AddHeaderDepByBlockNumber,
    AddHeaderDepByInputIndex,
    AddInputCell,
    AddInputCellByAddress,
    AddInputCellByOutPoint,
    AddInputCellByType,
    AddOutputCell,
    AddOutputCellByAddress,
    AddOutputCellByInputIndex,
    AddSecp256k1SighashCellDep,
    AddSecp256k1SighashSignatures,
    AddWitnessArgs,
    BalanceTransaction,
)
from .dao import (
    AddDaoCelldep,
    AddDaoDepositOutputCell,
    AddDaoWithdrawPhaseOneCells,
    AddDaoWithdrawPhaseTwoCells,
)
from .spore import (
    AddClusterCelldep,
    AddClusterCelldepByClusterId,
    AddClusterInputCellByClusterId,
    AddClusterOutputCell,
    AddSporeActions,
    AddSporeCelldep,
    AddSporeInputCellBySporeId,
    AddSporeOutputCell,
    ClusterAuthorityMode,
)

__all__ = [
    "AddCellDep",
    "AddCellDepByType",
    "AddDeployedCellDep",
    "AddHeaderDep",
    "AddHeaderDepByBlockNumber",
    "AddHeaderDepByInputIndex",
    "AddInputCell",
    "AddInputCellByAddress",
    "AddInputCellByOutPoint",
    "AddInputCellByType",
    "AddOutputCell",
    "AddOutputCellByAddress",
    "AddOutputCellByInputIndex",
    "AddSecp256k1SighashCellDep",
    "AddSecp256k1SighashSignatures",
    "AddWitnessArgs",
    "BalanceTransaction",
    "AddDaoCelldep",
    "AddDaoDepositOutputCell",
    "AddDaoWithdrawPhaseOneCells",
    "AddDaoWithdrawPhaseTwoCells",
    "AddClusterCelldep",
    "AddClusterCelldepByClusterId",
    "AddClusterInputCellByClusterId",
    "AddClusterOutputCell",
    "AddSporeActions",
    "AddSporeCelldep",
    "AddSporeInputCellBySporeId",
    "AddSporeOutputCell",
    "ClusterAuthorityMode",
]
