#!/usr/bin/env python3
"""
Reprint the stored invoice of a sale.

Usage:
    python reprint_ticket.py <sale_id>
    python reprint_ticket.py <sale_id> --output ticket.txt
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from domain.errors import NotFound
from services.settlement_service import reprint


def main() -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(description="Reprint the stored invoice of a sale")
    parser.add_argument("sale_id", help="Sale whose invoice should be reprinted")
    parser.add_argument("--output", "-o", help="Write to this file instead of stdout")
    args = parser.parse_args()

    try:
        text = reprint(args.sale_id)
    except NotFound:
        print(f"No invoice was ever generated for sale {args.sale_id}", file=sys.stderr)
        return 1

    if args.output:
        Path(args.output).write_text(text, encoding="utf-8")
        print(f"Ticket written to {args.output}")
    else:
        sys.stdout.write(text)
    return 0


if __name__ == "__main__":
    sys.exit(main())
