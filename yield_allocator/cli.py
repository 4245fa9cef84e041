"""Command-line interface for the leveraged yield allocator."""
from __future__ import annotations

import argparse
import asyncio
import sys

from .config import load_config
from .logging_setup import configure_logging
from .services import Keeper


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="yield-allocator",
        description="Multi-venue yield allocator with a leveraged lending position",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("tend", help="Single keeper pass: tend if due, then harvest")
    sub.add_parser("report", help="Send the per-venue allocation report")

    keeper_parser = sub.add_parser("keeper", help="Continuous keeper loop")
    keeper_parser.add_argument(
        "interval",
        nargs="?",
        type=int,
        default=None,
        help="Tend interval in minutes (overrides config)",
    )

    sim_parser = sub.add_parser(
        "simulate", help="Deposit into in-memory venues, accrue yield, withdraw"
    )
    sim_parser.add_argument(
        "--deposit",
        type=int,
        required=True,
        help="Deposit in the asset's smallest unit",
    )
    sim_parser.add_argument(
        "--days", type=int, default=30, help="Days to accrue (default: 30)"
    )

    return parser


async def _simulate(keeper: Keeper, deposit: int, days: int) -> None:
    result = await keeper.simulate(deposit, days)
    for day, report in enumerate(result.daily, start=1):
        weights = " ".join(
            f"{v.name}={v.weight_bps / 100:.1f}%" for v in report.venues
        )
        print(f"day {day:>3}  total {report.total_value:>16}  {weights}")
    print(f"deposited  {result.deposit}")
    print(f"withdrawn  {result.withdrawal.withdrawn}")
    print(f"shortfall  {result.withdrawal.shortfall}")
    print(f"profit     {result.profit}")


async def _run(args: argparse.Namespace) -> None:
    """Execute the selected command."""
    configure_logging(args.log_level)
    config = load_config(args.config)
    keeper = Keeper(config)

    if args.command == "tend":
        await keeper.run_once()
    elif args.command == "report":
        await keeper.generate_report()
    elif args.command == "keeper":
        await keeper.run_continuous(args.interval)
    elif args.command == "simulate":
        await _simulate(keeper, args.deposit, args.days)
    else:
        build_parser().print_help()
        sys.exit(1)


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    asyncio.run(_run(args))


if __name__ == "__main__":
    main()
