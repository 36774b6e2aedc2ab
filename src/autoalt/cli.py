"""Command-line entry point."""

import argparse
import sys

from autoalt.backends import BACKEND_NAMES
from autoalt.config import DEFAULT_CLAUDE_MODEL, resolve_claude_model
from autoalt.pipeline import run_pipeline


class _HelpOnErrorArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that prints full help text on parse errors."""

    def error(self, message):
        self.print_help(sys.stderr)
        self.exit(2, f"\n{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = _HelpOnErrorArgumentParser(
        description="Generate SEO alt text for a ZIP of vehicle photos.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s photos.zip --year 2025 --make acura --model mdx --trim "Type S"
  %(prog)s photos.zip --year 2025 --model civic --color "Rallye Red" --output ./alt
  %(prog)s photos.zip --year 2025 --model mdx --backend claude
  %(prog)s photos.zip --year 2025 --model mdx --threshold 4 --policy largest --verify-names
        """,
    )
    parser.add_argument("archive", help="Path to the ZIP of vehicle photos")
    parser.add_argument("--year", required=True, help="Model year, e.g. 2025")
    parser.add_argument("--model", required=True, help="Vehicle model, e.g. MDX")
    parser.add_argument("--make", default="", help="Vehicle make, e.g. Acura (optional)")
    parser.add_argument("--trim", default="", help="Trim level, e.g. 'Type S' (optional)")
    parser.add_argument("--color", default="", help="Exterior color (optional)")
    parser.add_argument(
        "--output", "-o", default="alt_text_output", help="Output folder (default: alt_text_output)"
    )
    parser.add_argument(
        "--backend",
        "-b",
        choices=list(BACKEND_NAMES),
        default="pixel",
        help="Classifier: 'pixel' (local heuristics), 'blip' (Hugging Face), "
        "'claude' (API), 'ollama' (self-hosted) or 'clip' (local model)",
    )
    parser.add_argument(
        "--threshold",
        type=int,
        default=None,
        help="Duplicate Hamming distance out of 64 bits (default from AUTOALT_DEDUP_THRESHOLD or 6)",
    )
    parser.add_argument(
        "--policy",
        choices=["smallest", "largest"],
        default="smallest",
        help="Which duplicate to keep: smallest file or largest pixel area (default: smallest)",
    )
    parser.add_argument(
        "--verify-names",
        action="store_true",
        help="Split filename-matched duplicates whose image content differs.",
    )
    parser.add_argument(
        "--claude-model",
        default=resolve_claude_model(),
        help=(
            f"Claude model id (default from ANTHROPIC_MODEL/CLAUDE_MODEL or {DEFAULT_CLAUDE_MODEL})"
        ),
    )
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    run_pipeline(
        archive=args.archive,
        year=args.year,
        model=args.model,
        make=args.make,
        trim=args.trim,
        color=args.color,
        output_folder=args.output,
        backend=args.backend,
        threshold=args.threshold,
        policy=args.policy,
        verify_names=args.verify_names,
        claude_model=args.claude_model,
    )


if __name__ == "__main__":
    main()
