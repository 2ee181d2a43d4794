"""Interfaces for the external collaborators of the publish pipeline."""

from permadeploy_core.interfaces.indexer import ChainTip, FundingTarget, Indexer
from permadeploy_core.interfaces.rewriter import ByteRewriter, PassthroughRewriter
from permadeploy_core.interfaces.transaction import (
    BuiltTransaction,
    TransactionBuilder,
    TxOutput,
    Utxo,
)

__all__ = [
    "BuiltTransaction",
    "ByteRewriter",
    "ChainTip",
    "FundingTarget",
    "Indexer",
    "PassthroughRewriter",
    "TransactionBuilder",
    "TxOutput",
    "Utxo",
]
