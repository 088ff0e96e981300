"""
Check whether there is enough stock to settle a sale. Nothing is deducted.
"""

import argparse
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from domain.errors import NotFound
from services.settlement_service import check_stock


def check_sale_stock(sale_id: str) -> int:
    """Print the stock shortfalls of a sale; exit code 2 when any exists."""

    try:
        shortfalls = check_stock(sale_id)
    except NotFound as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    print("=" * 50)
    print(f"STOCK CHECK - sale {sale_id}")
    print("=" * 50)

    if not shortfalls:
        print("All dishes can be prepared with current stock.")
        print("=" * 50)
        return 0

    print(f"{'Item':<25}{'Required':>8}{'Avail.':>8}{'Short':>8}")
    print("-" * 50)
    for shortfall in shortfalls:
        label = shortfall.item_name or shortfall.inventory_item_id
        if shortfall.batch_id:
            label = f"{label} [{shortfall.batch_number or shortfall.batch_id}]"
        print(
            f"{label[:25]:<25}{shortfall.required:>8}{shortfall.available:>8}{shortfall.shortfall:>8}"
        )
    print("=" * 50)
    return 2


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("sale_id", help="Sale to check")
    sys.exit(check_sale_stock(parser.parse_args().sale_id))
