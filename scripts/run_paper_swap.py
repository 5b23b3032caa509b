"""Run one paper swap and stake end to end from config/engine.yaml."""

from __future__ import annotations

import argparse
import asyncio
import json

from token_swap_engine.balances import BalanceReconciler, InMemoryBalanceBook, build_read_path
from token_swap_engine.config import load_config
from token_swap_engine.contracts import SwapRequest
from token_swap_engine.dashboard import balances_frame, build_dashboard_payload, reward_projection_frame
from token_swap_engine.monitoring import AlertRouter, setup_console_logger
from token_swap_engine.routing import QuoteAggregator, registrations_from_config
from token_swap_engine.settlement import (
    OwnerSerializer,
    PaperSigner,
    PaperTransferBuilder,
    PaperTransport,
    SQLiteSettlementJournal,
    SwapOrchestrator,
)
from token_swap_engine.staking import SQLitePositionStore, StakingLedger


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--config", default="config/engine.yaml")
    parser.add_argument("--owner", default="demo-wallet")
    parser.add_argument("--input-asset", default="SOL")
    parser.add_argument("--output-asset", default="GOLD")
    parser.add_argument("--amount", type=float, default=1.5)
    parser.add_argument("--slippage-bps", type=int, default=50)
    parser.add_argument("--seed-balance", type=float, default=10.0, help="Paper balance of the input asset.")
    parser.add_argument("--stake-fraction", type=float, default=0.5)
    parser.add_argument("--include-http", action="store_true", help="Also route through configured HTTP venues.")
    parser.add_argument("--alerts-file", default="outputs/swap_alerts.jsonl")
    parser.add_argument("--log-level", default="INFO")
    return parser.parse_args()


async def _run(args: argparse.Namespace) -> None:
    config = load_config(args.config)
    assets = config.asset_map()
    input_asset = assets[args.input_asset]
    output_asset = assets[args.output_asset]
    stake_asset = assets[config.staking.stake_asset]

    book = InMemoryBalanceBook()
    book.credit(args.owner, input_asset.symbol, args.seed_balance)
    transport = PaperTransport(book, pending_polls=1)

    venue_configs = [v for v in config.venues if args.include_http or v.kind == "paper"]
    path_configs = [p for p in config.balances.read_paths if args.include_http or p.kind == "memory"]

    aggregator = QuoteAggregator(registrations_from_config(venue_configs, transport=transport), config=config.routing)
    reconciler = BalanceReconciler([build_read_path(p, book) for p in path_configs], config=config.balances)
    journal = SQLiteSettlementJournal(config.journal_path)
    orchestrator = SwapOrchestrator(
        aggregator=aggregator,
        signer=PaperSigner(),
        transport=transport,
        reconciler=reconciler,
        confirmation=config.confirmation,
        preflight=config.preflight,
        serializer=OwnerSerializer(),
        journal=journal,
        alert_router=AlertRouter.for_operations(args.alerts_file),
        transfer_builder=PaperTransferBuilder(),
        explorer_tx_url=config.explorer_tx_url,
    )
    ledger = StakingLedger(
        orchestrator,
        asset=stake_asset,
        store=SQLitePositionStore(config.journal_path.replace(".db", "_positions.db")),
        config=config.staking,
    )

    try:
        request = SwapRequest(
            input_asset=input_asset,
            input_amount=args.amount,
            output_asset=output_asset,
            requester=args.owner,
            max_slippage_bps=args.slippage_bps,
        )
        result = await orchestrator.swap(request)
        print(json.dumps(result.to_dict(), indent=2, default=str))
        print(balances_frame(result.balances, args.owner, config.balances.staleness_ttl_seconds).to_string(index=False))

        if result.succeeded and output_asset.symbol == stake_asset.symbol and result.output_amount:
            stake_result = await ledger.stake(args.owner, result.output_amount * args.stake_fraction)
            print(f"stake: {stake_result.outcome} tx={stake_result.tx_id}")
            print(reward_projection_frame(ledger, ledger.position(args.owner).staked_amount).to_string(index=False))

        payload = build_dashboard_payload(aggregator, journal=journal, ledger=ledger, owner=args.owner)
        for name, frame in payload.items():
            print(f"\n== {name} ==")
            print(frame.to_string(index=False))
    finally:
        await aggregator.close()
        await reconciler.close()


def main() -> None:
    args = _parse_args()
    setup_console_logger(level=args.log_level)
    asyncio.run(_run(args))


if __name__ == "__main__":
    main()
