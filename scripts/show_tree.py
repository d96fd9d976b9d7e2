#!/usr/bin/env python3
"""
Display a user's downline tree.

Shows the live referral hierarchy with status and earnings.

Usage:
    python scripts/show_tree.py --user-id 1 [--max-depth DEPTH]
    python scripts/show_tree.py --stats
"""

import sys
import os
import argparse

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import func

from config import Config
from core.db import get_session
from core.exceptions import UserNotFound
from core.logging_config import setup_logging
from models.user import User
from mlm_system.services.network_service import NetworkService
from mlm_system.services.rank_service import RankService


def print_tree(tree: dict):
    """Print ASCII tree of a nested network node."""

    def print_node(node, prefix="", is_last=True):
        connector = "└─ " if is_last else "├─ "
        active_marker = "✅" if node["isActive"] else "❌"
        earnings_display = f"earned {node['totalEarnings']}" if node["totalEarnings"] else ""

        print(
            f"{prefix}{connector}{node['firstname'] or ''} {node['surname'] or ''} "
            f"(ID:{node['userId']}, {node['referralCode']}) {active_marker} "
            f"[{node['totalNetworkSize']} below] {earnings_display}"
        )

        children = node["children"]
        for i, child in enumerate(children):
            new_prefix = prefix + ("    " if is_last else "│   ")
            print_node(child, new_prefix, i == len(children) - 1)

    print("\n" + "=" * 80)
    print("NETWORK TREE")
    print("=" * 80)
    print("\nLegend:")
    print("  ✅ = Active user")
    print("  ❌ = Inactive user")
    print("  [N below] = Members in the displayed subtree")
    print("\n" + "=" * 80 + "\n")
    print_node(tree)
    print("\n" + "=" * 80 + "\n")


def print_statistics(session):
    """Print database statistics."""
    total_users = session.query(User).count()
    if not total_users:
        print("No users in database")
        return

    active_users = session.query(User).filter_by(isActive=True).count()
    referred = session.query(User).filter(User.referredBy.isnot(None)).count()
    total_wallet = session.query(func.sum(User.walletBalance)).scalar() or 0
    total_earned = session.query(func.sum(User.earningsTotal)).scalar() or 0

    print("\n" + "=" * 80)
    print("DATABASE STATISTICS")
    print("=" * 80 + "\n")

    print(f"Total users:    {total_users}")
    print(f"Active users:   {active_users} ({active_users/total_users*100:.1f}%)")
    print(f"Referred users: {referred} ({referred/total_users*100:.1f}%)")
    print(f"Wallets total:  {total_wallet}")
    print(f"Earnings total: {total_earned}")

    print("\n" + "=" * 80 + "\n")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description='Display network tree')
    parser.add_argument('--user-id', type=int, help='Root user of the tree')
    parser.add_argument('--max-depth', type=int, default=3,
                        help='Levels below the root to display (default: 3)')
    parser.add_argument('--stats', action='store_true',
                        help='Show statistics only')
    args = parser.parse_args()

    Config.initialize_from_env()
    setup_logging("WARNING")

    session = get_session()
    try:
        if args.stats or not args.user_id:
            print_statistics(session)
            return

        try:
            tree = NetworkService(session).getNetworkTree(args.user_id, args.max_depth)
        except UserNotFound:
            print(f"❌ User {args.user_id} not found!")
            return

        print_tree(tree)

        rankInfo = RankService(session).getRankInfo(args.user_id)
        print(
            f"Rank: {rankInfo['currentRank']} -> {rankInfo['nextRank'] or '-'} "
            f"({rankInfo['progress']:.1f}%), network {rankInfo['networkSize']}, "
            f"earnings {rankInfo['totalEarnings']}"
        )

    finally:
        session.close()


if __name__ == "__main__":
    main()
