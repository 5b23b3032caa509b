"""Linear reward accrual math."""

from __future__ import annotations

SECONDS_PER_YEAR = 365 * 86_400
DEFAULT_APY = 0.085


def rate_per_second(staked_amount: float, apy: float = DEFAULT_APY) -> float:
    return staked_amount * apy / SECONDS_PER_YEAR


def accrued_reward(staked_amount: float, apy: float, elapsed_seconds: float) -> float:
    """Reward earned by `staked_amount` over `elapsed_seconds`; negative time accrues nothing."""
    if staked_amount <= 0 or elapsed_seconds <= 0:
        return 0.0
    return staked_amount * apy * elapsed_seconds / SECONDS_PER_YEAR


def project_rewards(amount: float, days: float, apy: float = DEFAULT_APY) -> dict[str, float]:
    """Staking calculator: projected reward and ending balance after `days`."""
    if amount < 0 or days < 0:
        raise ValueError("Amount and days must be non-negative.")
    reward = accrued_reward(amount, apy, days * 86_400)
    return {
        "amount": amount,
        "days": days,
        "apy": apy,
        "daily_reward": accrued_reward(amount, apy, 86_400),
        "projected_reward": reward,
        "ending_balance": amount + reward,
    }
