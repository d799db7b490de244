"""
main.py
--------
Entry point for the Gig Intelligence Engine.

Reads income and expense CSVs, runs trend analysis and expense
categorization, and writes output to the outputs/ folder.

Usage (from the project root):
    python main.py --income income.csv --expenses expenses.csv

    # With optional arguments:
    python main.py --income income.csv --expenses expenses.csv --model-path model.json
    python main.py --predict "Chevron fill-up" --amount 38
"""

import sys
import os
import argparse
import logging
import pandas as pd
from datetime import datetime

# Ensure project root is on path (for runs from any working directory)
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, PROJECT_ROOT)

from pipeline import IntelligencePipeline, IntelligenceReport
from core.categorizer import AdaptiveCategorizer
from core.embeddings import load_embedding_provider


# =============================================================================
# LOGGING SETUP
# =============================================================================

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("main")


# =============================================================================
# ARGUMENT PARSING
# =============================================================================

def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Gig Intelligence Engine: earnings trends and adaptive expense categorization."
    )
    parser.add_argument(
        "--income", type=str, default=None,
        help="Path to income CSV (date, net_amount, fees)."
    )
    parser.add_argument(
        "--expenses", type=str, default=None,
        help="Path to expenses CSV (date, amount, description, category, vendor)."
    )
    parser.add_argument(
        "--model-path", type=str, default=None,
        help="Categorizer model JSON. Defaults to the config value."
    )
    parser.add_argument(
        "--output-dir", type=str, default=None,
        help="Output directory. Defaults to outputs/ in project root."
    )
    parser.add_argument(
        "--predict", type=str, default=None,
        help="Predict the category of a single expense description and exit."
    )
    parser.add_argument(
        "--merchant", type=str, default=None,
        help="Merchant name for --predict."
    )
    parser.add_argument(
        "--amount", type=float, default=0.0,
        help="Amount for --predict."
    )
    parser.add_argument(
        "--use-embeddings", action="store_true", default=False,
        help="With --predict, also run embedding centroid matching (requires spaCy)."
    )
    return parser.parse_args()


# =============================================================================
# MAIN
# =============================================================================

def main():
    args = parse_args()

    if args.predict is not None:
        _run_single_prediction(args)
        return

    if not args.income or not args.expenses:
        logger.error("Both --income and --expenses are required (or use --predict).")
        sys.exit(1)

    output_dir = args.output_dir or os.path.join(PROJECT_ROOT, "outputs")
    os.makedirs(output_dir, exist_ok=True)

    # --- Load records ---
    for path in (args.income, args.expenses):
        if not os.path.exists(path):
            logger.error(f"Input file not found: {path}")
            sys.exit(1)

    income = pd.read_csv(args.income, parse_dates=["date"])
    expenses = pd.read_csv(args.expenses, parse_dates=["date"])
    logger.info(f"Loaded {len(income):,} income rows and {len(expenses):,} expense rows.")

    # --- Run pipeline ---
    logger.info("Initializing pipeline...")
    pipeline = IntelligencePipeline(model_path=args.model_path)
    try:
        report = pipeline.run(income, expenses)
    except ValueError as exc:
        logger.error(f"Invalid input: {exc}")
        sys.exit(1)
    finally:
        pipeline.close()

    # --- Output ---
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    trends_path = os.path.join(output_dir, f"trends_{timestamp}.csv")
    report.trends.to_csv(trends_path, index=False)
    logger.info(f"Trends saved to: {trends_path}")

    if not report.categorized.empty:
        predictions_path = os.path.join(output_dir, f"categorized_{timestamp}.csv")
        report.categorized.to_csv(predictions_path, index=False)
        logger.info(f"Predictions saved to: {predictions_path}")

    _print_summary(report)


def _run_single_prediction(args: argparse.Namespace):
    provider = load_embedding_provider() if args.use_embeddings else None
    categorizer = AdaptiveCategorizer(model_path=args.model_path, embedding_provider=provider)

    try:
        prediction = categorizer.predict(args.predict, merchant_name=args.merchant, amount=args.amount)
        if prediction is None:
            print(f"\n  No confident prediction ({categorizer.training_size} examples learned).\n")
        else:
            deductible = f"{prediction.deduction_percentage:.0%} deductible" if prediction.is_deductible else "not deductible"
            print(f"\n  {prediction.category}  ({prediction.confidence:.0%}, {deductible})")
            print(f"  {prediction.reasoning}\n")

        if provider is not None:
            match = categorizer.embedding_centroid_predict(args.predict)
            if match is not None:
                print(f"  Embedding match: {match[0]} ({match[1]:.0%})\n")
    finally:
        categorizer.close()


def _print_summary(report: IntelligenceReport):
    """Prints a clean summary to the console."""
    print("\n" + "=" * 80)
    print("  GIG INTELLIGENCE SUMMARY")
    print("=" * 80)

    # Per-metric trends
    print("\n  Trends:")
    print("  " + "-" * 60)
    if report.trends.empty:
        print("    Not enough history to analyze trends.")
    for _, row in report.trends.iterrows():
        print(f"    {row['metric']:10s}  {row['direction']:20s}  R²={row['strength']:.2f}  "
              f"30-day forecast: ${row['forecast_30_day']:,.2f}")

    print(f"\n  {report.multi_metric.narrative_summary}")
    print(f"\n  Momentum: earnings {report.earnings_momentum:+.1%}, expenses {report.expense_momentum:+.1%}")

    # Categorization
    print(f"\n  Categorization:")
    print("  " + "-" * 60)
    print(f"    Trained on this run: {report.trained_examples:,} examples")
    print(f"    Predicted categories: {len(report.categorized):,} expenses")
    if not report.categorized.empty:
        for category, count in report.categorized["predicted_category"].value_counts().items():
            print(f"      {category:30s}  {count:>5,}")
    print("=" * 80 + "\n")


if __name__ == "__main__":
    main()
