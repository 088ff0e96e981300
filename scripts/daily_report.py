"""
Print the cashier's end-of-day report: invoices of the day and revenue by payment method.

Usage:
    python daily_report.py
    python daily_report.py --day 2024-04-01
"""

import argparse
import sys
from datetime import date
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from services.cashier_service import daily_summary, list_invoices_for_day


def print_daily_report(day: date | None) -> int:
    invoices = list_invoices_for_day(day)
    summary = daily_summary(day)

    print("=" * 60)
    print(f"DAILY REPORT - {summary.day.isoformat()}")
    print("=" * 60)
    print(f"{'Number':<20}{'Status':<12}{'Payment':<10}{'Total':>10}")
    print("-" * 60)
    for invoice in reversed(invoices):
        print(
            f"{invoice.number:<20}{invoice.status.value:<12}"
            f"{invoice.payment_method.value:<10}{invoice.grand_total:>10}"
        )
    print("-" * 60)
    print(f"Authorized: {summary.authorized_count}  "
          f"Pending: {summary.pending_count}  Rejected: {summary.rejected_count}")
    for method, amount in summary.revenue_by_payment_method.items():
        print(f"  {method:<12}{amount:>12}")
    print(f"  {'TOTAL':<12}{summary.total_revenue:>12}")
    print("=" * 60)
    # Pending invoices still need a status refresh before closing the day.
    return 2 if summary.pending_count else 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Print the cashier's end-of-day report")
    parser.add_argument("--day", type=date.fromisoformat, default=None, help="Fiscal day, YYYY-MM-DD (default today)")
    sys.exit(print_daily_report(parser.parse_args().day))
