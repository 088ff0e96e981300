#!/usr/bin/env python3
"""
Sale Settlement Script

Settles a served sale from the command line: checks and deducts stock,
issues the electronic invoice, submits it and prints the ticket.

Usage:
    python settle_sale.py <sale_id> --payment cash
    python settle_sale.py <sale_id> --payment card --buyer-tax-id 1790012345001 --buyer-name "ACME S.A."
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from domain.errors import (
    AuthorityIndeterminate,
    AuthorityRejected,
    InsufficientStock,
    SettlementError,
)
from domain.fiscal import BuyerIdentity
from services.settings import SettlementSettings
from services.settlement_service import SettlementRequest, settle


def main() -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Settle a served sale and issue its electronic invoice",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Final-consumer invoice paid in cash
  python settle_sale.py 123e4567-e89b-12d3-a456-426614174000 --payment cash

  # Invoice to a company paid by card
  python settle_sale.py 123e4567-e89b-12d3-a456-426614174000 --payment card \\
      --buyer-tax-id 1790012345001 --buyer-name "ACME S.A."

  # Retry after a rejection (same invoice number, no new stock deduction)
  python settle_sale.py 123e4567-e89b-12d3-a456-426614174000 --payment cash
        """
    )

    parser.add_argument("sale_id", help="Sale to settle")
    parser.add_argument(
        "--payment",
        "-p",
        required=True,
        choices=["cash", "card", "transfer"],
        help="Payment method"
    )
    parser.add_argument("--settled-by", help="Employee id closing the sale")
    parser.add_argument("--buyer-tax-id", help="Buyer national id (10 digits) or RUC (13 digits)")
    parser.add_argument("--buyer-name", help="Buyer legal name")
    parser.add_argument("--buyer-address", help="Buyer address")
    parser.add_argument("--buyer-phone", help="Buyer phone")
    parser.add_argument("--buyer-email", help="Buyer email")

    args = parser.parse_args()

    logging.basicConfig(level=SettlementSettings.from_env().log_level)

    try:
        buyer = None
        if args.buyer_tax_id or args.buyer_name:
            buyer = BuyerIdentity.supplied(
                tax_id=args.buyer_tax_id,
                legal_name=args.buyer_name,
                address=args.buyer_address,
                phone=args.buyer_phone,
                email=args.buyer_email,
            )

        result = settle(
            SettlementRequest(
                sale_id=args.sale_id,
                payment_method=args.payment,
                settled_by=args.settled_by,
                buyer=buyer,
            )
        )

        print(result.ticket.printable_text)
        print("=" * 60)
        print(f"Sale {result.sale.sale_id} closed")
        print(f"Invoice: {result.document.number}")
        print(f"Authorization: {result.document.authorization_code}")
        print("=" * 60)
        return 0

    except InsufficientStock as e:
        print("\nNot enough stock to settle this sale:", file=sys.stderr)
        for shortfall in e.shortfalls:
            print(f"  - {shortfall.describe()}", file=sys.stderr)
        return 2

    except AuthorityRejected as e:
        print(f"\nInvoice {e.document.number} REJECTED: {e.message}", file=sys.stderr)
        print("The sale is still open; fix the data and run this script again.", file=sys.stderr)
        return 3

    except AuthorityIndeterminate as e:
        print(f"\nInvoice {e.document.number} is PENDING: {e.message}", file=sys.stderr)
        print("Run this script again later to query its status.", file=sys.stderr)
        return 4

    except SettlementError as e:
        print(f"\nERROR: {e}", file=sys.stderr)
        return 1

    except KeyboardInterrupt:
        print("\n\nSettlement interrupted by user")
        return 130

    except Exception as e:
        print(f"\nERROR: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
