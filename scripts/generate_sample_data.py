#!/usr/bin/env python3
"""Generate a sample installment portfolio and export it as JSON.

Plans are created, paid and renegotiated through the engine, so every
exported record satisfies the same invariants as production data.
"""

import argparse
import logging
import sys
from datetime import date
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from installment_engine.config import EngineConfig, ScenarioConfig
from installment_engine.exceptions import InstallmentEngineError
from installment_engine.logging import setup_logging
from installment_engine.scenarios import InstallmentPortfolioScenario
from installment_engine.sinks import JsonFileSink

logger = logging.getLogger("installment_engine.scripts.generate_sample_data")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Generate a sample installment portfolio and export it as JSON"
    )
    parser.add_argument(
        "--plans",
        type=int,
        default=50,
        help="Number of plans to generate (default: 50)",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=42,
        help="Random seed for reproducibility (default: 42)",
    )
    parser.add_argument(
        "--reference-date",
        type=date.fromisoformat,
        default=None,
        help="Portfolio 'today' as YYYY-MM-DD (default: today)",
    )
    parser.add_argument(
        "--modification-rate",
        type=float,
        default=0.20,
        help="Share of open plans that request a modification (default: 0.20)",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="Directory for JSON files (default: OUTPUT_DIR or ./output)",
    )
    parser.add_argument(
        "--pretty",
        action="store_true",
        help="Pretty-print JSON output",
    )
    parser.add_argument(
        "--log-format",
        choices=["standard", "json"],
        default="standard",
        help="Log output format (default: standard)",
    )
    return parser.parse_args(argv)


def print_summary(summary: dict, output_dir: Path) -> None:
    """Print generation summary."""
    print("\n" + "=" * 60)
    print("Summary")
    print("=" * 60)
    for name, value in summary.items():
        if isinstance(value, dict):
            print(f"{name}:")
            for key, count in value.items():
                print(f"  {key + ':':24}{count}")
        elif isinstance(value, float):
            print(f"{name + ':':26}{value:,.2f}")
        else:
            print(f"{name + ':':26}{value}")
    print(f"\nAll files saved to: {output_dir}")
    print("=" * 60)


def main(argv: list[str] | None = None) -> int:
    """Generate the portfolio and write plans.json and modifications.json."""
    args = parse_args(argv)

    try:
        engine_config = EngineConfig.from_env()
    except InstallmentEngineError as exc:
        print(f"Invalid configuration: {exc.message}", file=sys.stderr)
        return 2

    setup_logging(engine_config.log_level, args.log_format)
    output_dir = args.output_dir or engine_config.output.json_output_dir

    scenario = InstallmentPortfolioScenario(
        seed=args.seed,
        config=ScenarioConfig(
            name="sample-portfolio",
            num_plans=args.plans,
            reference_date=args.reference_date,
            modification_rate=args.modification_rate,
        ),
        engine_config=engine_config,
    )

    try:
        scenario.generate()
        sink = JsonFileSink(output_dir, pretty=args.pretty or engine_config.output.pretty_json)
        scenario.export([sink])
    except InstallmentEngineError as exc:
        logger.error("Sample generation failed: %s", exc.to_dict())
        return 1

    sink.close()
    print_summary(scenario.get_portfolio_summary(), output_dir)
    return 0


if __name__ == "__main__":
    sys.exit(main())
