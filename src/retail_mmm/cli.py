"""
Command-line interface for the weekly MMM pipeline.

Usage:
    retail-mmm run --transactions <file.csv> [--config germany.yaml] [options]
"""

import argparse
import json
import sys
from pathlib import Path

import yaml

from retail_mmm.config import MMMConfig, load_config
from retail_mmm.data.channels import FixtureFeed, read_promotions
from retail_mmm.data.transactions import read_transactions
from retail_mmm.errors import MMMError
from retail_mmm.pipelines.run_mmm import run_mmm_pipeline
from retail_mmm.utils.logging import get_logger, setup_logger

logger = get_logger(__name__)

FEED_OPTIONS = {
    "search_feed": "search_spend",
    "social_feed": "social_spend",
    "email_feed": "email_volume",
}


def parse_shares(text: str) -> dict:
    """Parse ``search_spend=0.5,social_spend=0.5`` into a share mapping."""
    shares = {}
    for part in text.split(","):
        if not part.strip():
            continue
        if "=" not in part:
            raise argparse.ArgumentTypeError(f"Expected channel=share, got {part!r}")
        name, value = part.split("=", 1)
        try:
            shares[name.strip()] = float(value)
        except ValueError:
            raise argparse.ArgumentTypeError(f"Share for {name.strip()!r} is not a number: {value!r}")
    return shares


def write_outputs(out: dict, output_dir: Path) -> None:
    output_dir.mkdir(parents=True, exist_ok=True)
    model = out["model"]

    out["model_input"].to_csv(output_dir / "model_input.csv", index=False)
    out["coefficients"].to_csv(output_dir / "coefficients.csv", index=False)
    model.diagnostics.correlation.to_csv(output_dir / "correlation.csv")
    model.diagnostics.vif.rename_axis("regressor").to_csv(output_dir / "vif.csv")
    out["contributions"].to_csv(output_dir / "contributions.csv", index=False)
    if out["backtest"] is not None:
        out["backtest"].to_csv(output_dir / "backtest.csv", index=False)

    summary = {
        "cleaning": out["cleaning_report"].to_dict(),
        "duplicates_removed": out["duplicates_removed"],
        "weeks": len(out["model_input"]),
        "diagnostics": model.diagnostics.to_dict(),
        "pinned_media": model.pinned,
        "dropped_controls": out["features"]["dropped_controls"],
        "solver": {"status": model.solver.status, "message": model.solver.message},
        "simulation": out["simulation"].to_dict() if out["simulation"] is not None else None,
    }
    with open(output_dir / "summary.json", "w") as f:
        json.dump(summary, f, indent=2, default=str)


def run_command(args) -> int:
    input_path = Path(args.transactions)
    if not input_path.exists():
        logger.error(f"Input file not found: {args.transactions}")
        return 1

    try:
        cfg = load_config(args.config) if args.config else MMMConfig()

        feeds = {}
        for option, column in FEED_OPTIONS.items():
            path = getattr(args, option)
            if path:
                feeds[column] = FixtureFeed.from_csv(path)
        promotions = read_promotions(args.promotions) if args.promotions else None

        out = run_mmm_pipeline(
            read_transactions(input_path),
            cfg,
            feeds=feeds,
            promotions=promotions,
            seed=args.seed,
            scenario_shares=args.shares,
        )
    except (MMMError, ValueError, KeyError, FileNotFoundError, yaml.YAMLError) as e:
        logger.error(f"Pipeline failed: {e}", extra={"error_type": type(e).__name__})
        return 1

    write_outputs(out, Path(args.output_dir))

    model = out["model"]
    logger.info(
        "Run complete",
        extra={
            "weeks": len(out["model_input"]),
            "rows_dropped": out["cleaning_report"].rows_dropped,
            "r2": model.diagnostics.r2,
            "output_dir": args.output_dir,
        },
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="retail-mmm", description="Weekly marketing mix modelling for one market")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING, ERROR")
    parser.add_argument("--log-format", choices=["json", "text"], default="json")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Build the model input, fit, decompose and simulate")
    run.add_argument("--transactions", required=True, help="Raw transactions CSV")
    run.add_argument("--config", help="YAML run configuration")
    run.add_argument("--search-feed", dest="search_feed", help="Daily search spend CSV (date,value)")
    run.add_argument("--social-feed", dest="social_feed", help="Daily social spend CSV (date,value)")
    run.add_argument("--email-feed", dest="email_feed", help="Daily email volume CSV (date,value)")
    run.add_argument("--promotions", help="Promotion calendar CSV (name,start_date,end_date)")
    run.add_argument("--seed", type=int, default=None, help="Seed for mock feeds")
    run.add_argument("--shares", type=parse_shares, default=None, help="Reallocation, e.g. search_spend=0.5,social_spend=0.5")
    run.add_argument("--output-dir", default="outputs", help="Directory for result tables")
    run.set_defaults(func=run_command)
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logger(level=args.log_level, format_type=args.log_format)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
