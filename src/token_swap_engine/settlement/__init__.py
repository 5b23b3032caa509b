"""Swap orchestration, confirmation polling and settlement history."""

from .collaborators import PaperSigner, PaperTransferBuilder, PaperTransport, Signer, TransferBuilder, Transport
from .confirmation import BackoffSchedule, wait_for_confirmation
from .journal import SQLiteSettlementJournal, settlement_key
from .orchestrator import SwapOrchestrator
from .serializer import OwnerSerializer

__all__ = [
    "BackoffSchedule",
    "OwnerSerializer",
    "PaperSigner",
    "PaperTransferBuilder",
    "PaperTransport",
    "SQLiteSettlementJournal",
    "Signer",
    "SwapOrchestrator",
    "TransferBuilder",
    "Transport",
    "settlement_key",
    "wait_for_confirmation",
]
