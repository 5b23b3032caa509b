"""External signing/transport interfaces and their paper implementations."""

from __future__ import annotations

from abc import ABC, abstractmethod
import hashlib
import json
import logging
from typing import TYPE_CHECKING, Any

from token_swap_engine.contracts import SignedTx, TransferRequest, TxStatus, UnsignedTx
from token_swap_engine.errors import NetworkRejected, TransportFailure, UserRejected

if TYPE_CHECKING:
    from token_swap_engine.balances.read_paths import InMemoryBalanceBook

logger = logging.getLogger(__name__)


class Signer(ABC):
    """Wallet collaborator; may prompt the user."""

    @abstractmethod
    async def sign(self, unsigned: UnsignedTx) -> SignedTx:
        """Return the signed transaction or raise UserRejected."""


class Transport(ABC):
    """Network collaborator used to broadcast and observe transactions."""

    @abstractmethod
    async def broadcast(self, signed: SignedTx) -> str:
        """Return the transaction id or raise NetworkRejected / TransportFailure."""

    @abstractmethod
    async def get_status(self, tx_id: str) -> TxStatus:
        """Return Pending, Confirmed or Failed."""


class TransferBuilder(ABC):
    """Builds same-asset transfers (stake deposits, withdrawals, reward payouts)."""

    name: str = "transfer"

    @abstractmethod
    async def build_transfer(self, request: TransferRequest) -> UnsignedTx:
        """Return an unsigned transfer transaction."""


class PaperSigner(Signer):
    """Signs everything unless `reject` is set."""

    def __init__(self, reject: bool = False) -> None:
        self.reject = reject
        self.signed = 0

    async def sign(self, unsigned: UnsignedTx) -> SignedTx:
        if self.reject:
            raise UserRejected("User rejected the request.")
        self.signed += 1
        signature = hashlib.sha256(unsigned.payload).hexdigest()
        return SignedTx(payload=unsigned.payload, venue=unsigned.venue, metadata={"signature": signature})


class PaperTransport(Transport):
    """
    Settles JSON transaction documents against an in-memory balance book.

    Funds move at broadcast time; `get_status` reports Pending for the first
    `pending_polls` polls of each transaction, then its final verdict.
    """

    def __init__(
        self,
        book: "InMemoryBalanceBook",
        pending_polls: int = 0,
        reject_reason: str | None = None,
    ) -> None:
        self.book = book
        self.pending_polls = pending_polls
        self.reject_reason = reject_reason
        self._documents: dict[str, dict[str, Any]] = {}
        self._verdicts: dict[str, TxStatus] = {}
        self._polls: dict[str, int] = {}
        self.broadcasts = 0

    def _settle(self, document: dict[str, Any]) -> None:
        kind = document.get("kind")
        if kind == "swap":
            owner = document["owner"]
            self.book.debit(owner, document["input_asset"], float(document["input_amount"]))
            self.book.credit(owner, document["output_asset"], float(document["output_amount"]))
        elif kind == "transfer":
            amount = float(document["amount"])
            self.book.debit(document["source"], document["asset"], amount)
            self.book.credit(document["destination"], document["asset"], amount)
        else:
            raise ValueError(f"unknown document kind {kind!r}")

    async def broadcast(self, signed: SignedTx) -> str:
        if self.reject_reason:
            raise NetworkRejected(self.reject_reason)
        try:
            document = json.loads(signed.payload.decode("utf-8"))
        except ValueError as exc:
            raise TransportFailure("paper transport only accepts JSON documents") from exc
        self.broadcasts += 1
        digest = hashlib.sha256(signed.payload + str(self.broadcasts).encode("utf-8")).hexdigest()
        tx_id = f"paper-{digest[:32]}"
        self._documents[tx_id] = document
        self._polls[tx_id] = 0
        try:
            self._settle(document)
            self._verdicts[tx_id] = TxStatus.CONFIRMED
        except ValueError as exc:
            logger.info("Paper transaction %s failed on-chain: %s", tx_id, exc)
            self._verdicts[tx_id] = TxStatus.FAILED
        return tx_id

    async def get_status(self, tx_id: str) -> TxStatus:
        if tx_id not in self._verdicts:
            raise TransportFailure(f"unknown transaction {tx_id}")
        self._polls[tx_id] += 1
        if self._polls[tx_id] <= self.pending_polls:
            return TxStatus.PENDING
        return self._verdicts[tx_id]

    def document(self, tx_id: str) -> dict[str, Any]:
        return dict(self._documents[tx_id])


class PaperTransferBuilder(TransferBuilder):
    name = "paper-transfer"

    async def build_transfer(self, request: TransferRequest) -> UnsignedTx:
        document = {
            "kind": "transfer",
            "asset": request.asset.symbol,
            "amount": request.amount,
            "source": request.source,
            "destination": request.destination,
            "memo": request.memo,
        }
        return UnsignedTx(
            payload=json.dumps(document, sort_keys=True).encode("utf-8"),
            venue=self.name,
            description=f"transfer {request.amount} {request.asset.symbol} {request.source} -> {request.destination}",
            metadata={"request_id": request.request_id},
        )
