"""CLI for the target price evaluator.

Usage:
    python -m evaluator.cli evaluate 116500LN
    python -m evaluator.cli evaluate 116500LN --json
    python -m evaluator.cli evaluate 116500LN --headful --deadline 180
    python -m evaluator.cli test
"""

import argparse
import asyncio
import json
import logging
import sys


def _setup_logging(verbose: bool = False):
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    logging.getLogger("playwright").setLevel(logging.ERROR)


def _build_orchestrator(args):
    from evaluator.config import Settings
    from evaluator.services.orchestrator import EvaluationOrchestrator

    overrides = {}
    if getattr(args, "headful", False):
        overrides["BROWSER_HEADLESS"] = False
    if getattr(args, "deadline", None):
        overrides["EVALUATION_DEADLINE_SECONDS"] = args.deadline
    return EvaluationOrchestrator(Settings(**overrides))


async def _cmd_evaluate(args) -> int:
    """Evaluate one reference number."""
    from evaluator.core.exceptions import EvaluationError
    from evaluator.services.calculator import confidence_explanation, format_price

    orchestrator = _build_orchestrator(args)
    print(f"Evaluating {args.ref_number}...", file=sys.stderr)
    try:
        result = await orchestrator.evaluate(args.ref_number)
    except EvaluationError as e:
        print(f"{e.error}: {e.public_message} ({e.kind.value}: {e.detail})", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(result.model_dump(by_alias=True), indent=2, ensure_ascii=False))
        return 0

    price_range = result.price_range
    print(f"Reference:      {result.ref_number}")
    print(f"Target price:   {format_price(result.target_price)}")
    print(f"Market average: {format_price(result.market_average)}")
    print(f"Price range:    {format_price(price_range.min)} - {format_price(price_range.max)}"
          f" ({price_range.spread_percentage}% spread)")
    print(f"Confidence:     {result.confidence} - {confidence_explanation(result.confidence)}")
    return 0


async def _cmd_test(args) -> int:
    """Check that a browser session can reach the target site."""
    from evaluator.core.exceptions import EvaluationError

    orchestrator = _build_orchestrator(args)
    try:
        data = await orchestrator.test_connection()
    except EvaluationError as e:
        print(f"Service connection test failed: {e.detail}", file=sys.stderr)
        return 1
    print(json.dumps(data, indent=2, ensure_ascii=False))
    return 0


def main():
    parser = argparse.ArgumentParser(
        prog="evaluator",
        description="Target price evaluator: market price range and target price for a watch reference",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--headful", action="store_true", help="Show the browser window")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # --- evaluate ---
    evaluate_parser = subparsers.add_parser("evaluate", help="Evaluate a reference number")
    evaluate_parser.add_argument("ref_number", help="Watch reference number, e.g. 116500LN")
    evaluate_parser.add_argument("--json", action="store_true", help="Print the raw result as JSON")
    evaluate_parser.add_argument(
        "--deadline", type=float, default=None, help="Evaluation deadline in seconds"
    )

    # --- test ---
    subparsers.add_parser("test", help="Connection test against the target site")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    _setup_logging(args.verbose)

    if args.command == "evaluate":
        sys.exit(asyncio.run(_cmd_evaluate(args)))
    elif args.command == "test":
        sys.exit(asyncio.run(_cmd_test(args)))


if __name__ == "__main__":
    main()
