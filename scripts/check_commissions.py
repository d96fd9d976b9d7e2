#!/usr/bin/env python3
"""
Check commissions for a purchase.

Displays the commission breakdown stored in the database and compares it
with what the configured rates would pay.

Usage:
    python scripts/check_commissions.py --transaction-id 123
    python scripts/check_commissions.py --last  # Check last purchase
    python scripts/check_commissions.py --last --distribute  # Run distribution first
"""

import sys
import os
import argparse
from decimal import Decimal

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Config
from core.db import get_session
from core.logging_config import setup_logging
from models.transaction import Transaction, TransactionType
from models.user import User
from mlm_system.config.commission import CommissionSettings
from mlm_system.services.commission_service import CommissionService
from mlm_system.services.earnings_service import EarningsService
from mlm_system.utils.money_helpers import calculate_commission


def main():
    """Check commissions."""
    parser = argparse.ArgumentParser(description='Check commissions for a purchase')
    parser.add_argument('--transaction-id', type=int, help='Purchase transaction ID to check')
    parser.add_argument('--last', action='store_true', help='Check last purchase')
    parser.add_argument('--distribute', action='store_true',
                        help='Distribute commissions before checking (idempotent)')
    args = parser.parse_args()

    Config.initialize_from_env()
    setup_logging("WARNING")
    settings = CommissionSettings.from_config()
    session = get_session()

    try:
        # Find purchase
        query = session.query(Transaction).filter(
            Transaction.type.in_(TransactionType.COMMISSIONABLE)
        )
        if args.last:
            purchase = query.order_by(Transaction.createdAt.desc()).first()
        elif args.transaction_id:
            purchase = query.filter(Transaction.transactionID == args.transaction_id).first()
        else:
            print("❌ Specify --transaction-id or --last")
            return

        if not purchase:
            print("❌ Purchase not found")
            return

        if args.distribute:
            result = CommissionService(settings=settings).distribute(purchase.transactionID)
            print(f"Distribution: {result.asDict()}")
            session.expire_all()

        buyer = session.get(User, purchase.userID)

        print("\n" + "=" * 80)
        print("COMMISSION CHECK")
        print("=" * 80)
        print(f"\nTransaction: {purchase.transactionID} ({purchase.transactionRef})")
        print(f"Type: {purchase.type} / {purchase.subType}")
        print(f"Buyer: {buyer.firstname} (ID: {buyer.userID})")
        print(f"Amount: {purchase.amount} {purchase.currency}")
        print(f"Status: {purchase.status}, commission: {purchase.commissionStatus or 'not distributed'}")
        print(f"Upline: {buyer.uplineChain}")

        records = session.query(Transaction).filter(
            Transaction.sourceTransactionID == purchase.transactionID,
            Transaction.type == TransactionType.COMMISSION_EARNED
        ).order_by(Transaction.commissionLevel).all()

        if not records:
            print("\n❌ No commissions found for this purchase")
            return

        print(f"\n{len(records)} commission(s) found:")
        print("-" * 80)

        total_paid = Decimal("0")
        expected_total = Decimal("0")

        for record in records:
            user = session.get(User, record.userID)
            expected = calculate_commission(purchase.amount, settings.rateFor(record.commissionLevel) or 0)
            expected_total += expected
            total_paid += record.amount

            active_marker = "✅" if user.isActive else "❌"
            match_marker = "" if record.amount == expected else f" [EXPECTED {expected}]"

            print(
                f"Level {record.commissionLevel}: "
                f"{user.firstname or user.email:20} {active_marker} "
                f"{record.commissionPercentage:6}% = {record.amount:>10} "
                f"({record.status}){match_marker}"
            )

        print("-" * 80)
        print(f"\nTotal paid:      {total_paid}")
        print(f"Expected:        {expected_total}")
        print(f"Stored entries:  {len(purchase.commissionDistribution or [])}")

        if total_paid == expected_total and len(purchase.commissionDistribution or []) == len(records):
            print("\n✅ COMMISSION RECORDS CONSISTENT!")
        else:
            print("\n⚠️  WARNING: Commission mismatch!")

        # Beneficiary counters
        print("\n" + "=" * 80)
        print("BENEFICIARY RECONCILIATION")
        print("=" * 80)

        earnings = EarningsService(session)
        for record in records:
            report = earnings.reconcileUser(record.userID)
            marker = "✅" if report["consistent"] else "⚠️ "
            print(f"\n{marker} User {record.userID}")
            for item in report["discrepancies"]:
                print(f"  {item['field']}: counter {item['counter']} vs records {item['records']}")

        print("\n" + "=" * 80 + "\n")

    finally:
        session.close()


if __name__ == "__main__":
    main()
