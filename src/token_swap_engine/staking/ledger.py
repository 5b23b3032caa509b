"""Stake, unstake and claim on top of the transfer settlement primitive."""

from __future__ import annotations

from datetime import datetime
import logging
from typing import Callable

from token_swap_engine.config import StakingConfig
from token_swap_engine.contracts import Asset, StakePosition, SwapResult, TransferRequest, now_utc
from token_swap_engine.errors import InsufficientBalance, InsufficientStake, InvalidRequest
from token_swap_engine.settlement.orchestrator import SwapOrchestrator

from .accrual import accrued_reward, project_rewards
from .store import InMemoryPositionStore, PositionStore, fresh_position

logger = logging.getLogger(__name__)


class StakingLedger:
    """
    Per-owner stake positions with linear reward accrual.

    Every operation runs under the same per-owner serializer as swaps and
    mutates the stored position only after its transfer settles as Success.
    Accrued reward is materialized into `unclaimed_reward` before any change
    of principal, so past periods keep the rate that applied to them.
    """

    def __init__(
        self,
        orchestrator: SwapOrchestrator,
        asset: Asset,
        store: PositionStore | None = None,
        config: StakingConfig | None = None,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self.orchestrator = orchestrator
        self.asset = asset
        self.store = store or InMemoryPositionStore()
        self.config = config or StakingConfig()
        self.clock = clock
        if not self.config.treasury_account:
            raise ValueError("staking.treasury_account must be configured.")

    @property
    def treasury(self) -> str:
        return self.config.treasury_account

    def position(self, owner: str) -> StakePosition | None:
        return self.store.get(owner)

    def positions(self) -> list[StakePosition]:
        return self.store.all()

    def _pending(self, position: StakePosition, now: datetime) -> float:
        elapsed = (now - position.baseline_at).total_seconds()
        return position.unclaimed_reward + accrued_reward(position.staked_amount, self.config.apy, elapsed)

    def pending_reward(self, owner: str, now: datetime | None = None) -> float:
        position = self.store.get(owner)
        if position is None:
            return 0.0
        return self._pending(position, now or self.clock())

    def project(self, amount: float, days: float) -> dict[str, float]:
        return project_rewards(amount, days, apy=self.config.apy)

    def _materialize(self, position: StakePosition, now: datetime) -> None:
        position.unclaimed_reward = self._pending(position, now)
        position.baseline_at = now
        position.updated_at = now

    def _transfer_request(self, owner: str, amount: float, to_treasury: bool, memo: str) -> TransferRequest:
        return TransferRequest(
            asset=self.asset,
            amount=amount,
            source=owner if to_treasury else self.treasury,
            destination=self.treasury if to_treasury else owner,
            owner=owner,
            memo=memo,
        )

    @staticmethod
    def _require_positive(amount: float) -> None:
        if not amount > 0:
            raise InvalidRequest(f"Amount must be positive, got {amount}.")

    async def stake(self, owner: str, amount: float) -> SwapResult:
        self._require_positive(amount)
        async with self.orchestrator.serializer.hold(owner):
            snapshot = await self.orchestrator.reconciler.get_balance(owner, self.asset, force=True)
            if amount > snapshot.amount:
                raise InsufficientBalance(
                    f"Cannot stake {amount} {self.asset.symbol}; available balance is {snapshot.amount}."
                )
            result = await self.orchestrator.transfer(
                self._transfer_request(owner, amount, to_treasury=True, memo="stake"),
                serialize=False,
            )
            if not result.succeeded:
                logger.warning("Stake of %s %s for %s ended %s", amount, self.asset.symbol, owner, result.outcome)
                return result
            now = self.clock()
            position = self.store.get(owner) or fresh_position(owner, now)
            self._materialize(position, now)
            position.staked_amount += amount
            self.store.save(position, "stake", amount, tx_id=result.tx_id)
            return result

    async def unstake(self, owner: str, amount: float) -> SwapResult:
        """Return principal to the owner; accrued reward stays claimable."""
        self._require_positive(amount)
        async with self.orchestrator.serializer.hold(owner):
            position = self.store.get(owner)
            staked = position.staked_amount if position else 0.0
            if position is None or amount > staked:
                raise InsufficientStake(f"Cannot unstake {amount} {self.asset.symbol}; staked amount is {staked}.")
            result = await self.orchestrator.transfer(
                self._transfer_request(owner, amount, to_treasury=False, memo="unstake"),
                serialize=False,
            )
            if not result.succeeded:
                logger.warning("Unstake of %s %s for %s ended %s", amount, self.asset.symbol, owner, result.outcome)
                return result
            now = self.clock()
            self._materialize(position, now)
            position.staked_amount -= amount
            self.store.save(position, "unstake", amount, tx_id=result.tx_id)
            return result

    async def claim(self, owner: str) -> SwapResult:
        """Pay out the whole pending reward, or leave the position untouched."""
        async with self.orchestrator.serializer.hold(owner):
            position = self.store.get(owner)
            if position is None:
                raise InvalidRequest(f"{owner} has no stake position.")
            computed_at = self.clock()
            reward = self._pending(position, computed_at)
            if not reward > 0:
                raise InvalidRequest("No reward to claim.")
            result = await self.orchestrator.transfer(
                self._transfer_request(owner, reward, to_treasury=False, memo="claim"),
                serialize=False,
            )
            if not result.succeeded:
                logger.warning("Claim of %s %s for %s ended %s", reward, self.asset.symbol, owner, result.outcome)
                return result
            # Reward up to computed_at was paid; accrual restarts from there.
            position.unclaimed_reward = 0.0
            position.baseline_at = computed_at
            position.total_claimed += reward
            position.updated_at = self.clock()
            self.store.save(position, "claim", reward, tx_id=result.tx_id)
            return result
