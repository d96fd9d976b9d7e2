# mlm_system/utils/chain_walker.py
"""
Safe MLM chain walking utilities over the live referredBy graph.
Prevents infinite loops and validates cached upline chains.
"""
from typing import Callable, Dict, Iterator, List, Optional, Set, Tuple
from sqlalchemy.orm import Session
import logging

from models.user import User

logger = logging.getLogger(__name__)


class ChainWalker:
    """
    Safe utilities for walking MLM upline/downline chains.
    Prevents infinite loops and validates chain integrity.
    """

    def __init__(self, session: Session):
        self.session = session

    def walk_upline(
            self,
            start_user: User,
            callback: Callable[[User, int], bool],
            max_depth: int = 50
    ) -> int:
        """
        Safely walk up the live referrer chain, calling callback for each user.

        Args:
            start_user: Starting user
            callback: Function(user, level) -> continue_walking (bool)
            max_depth: Maximum depth to prevent runaway loops

        Returns:
            Number of users processed
        """
        current_user = start_user
        level = 1
        processed = 0
        visited = {start_user.userID}

        while current_user.referredBy and level <= max_depth:
            if current_user.referredBy in visited:
                logger.error(f"Cycle detected at user {current_user.userID}")
                break

            upline_user = self.session.get(User, current_user.referredBy)

            if not upline_user:
                logger.warning(
                    f"Referrer not found: userID={current_user.referredBy} "
                    f"for user {current_user.userID}"
                )
                break

            visited.add(upline_user.userID)

            should_continue = callback(upline_user, level)
            processed += 1

            if not should_continue:
                break

            current_user = upline_user
            level += 1

        return processed

    def get_upline_chain(self, user: User, max_depth: int = 50) -> List[User]:
        """
        Get list of users in the live upline chain.

        Returns:
            List of users from direct referrer upward
        """
        chain = []

        def collect(upline_user, level):
            chain.append(upline_user)
            return True

        self.walk_upline(user, collect, max_depth)
        return chain

    def iter_downline_levels(self, user_id: int, max_depth: int) -> Iterator[Tuple[int, List[int]]]:
        """
        Breadth-first walk of the live downline, one query per level.

        Level N+1 is fetched with a single IN query keyed by the level-N id set.

        Yields:
            (level, [userIDs at that level]) for levels 1..max_depth with members
        """
        visited: Set[int] = {user_id}
        frontier = [user_id]

        for level in range(1, max_depth + 1):
            rows = self.session.query(User.userID).filter(
                User.referredBy.in_(frontier)
            ).all()

            next_ids = []
            for (child_id,) in rows:
                if child_id in visited:
                    logger.error(f"Cycle detected in downline at user {child_id}")
                    continue
                visited.add(child_id)
                next_ids.append(child_id)

            if not next_ids:
                return

            yield level, next_ids
            frontier = next_ids

    def count_downline_by_level(self, user_id: int, max_depth: int) -> Dict[int, int]:
        """
        Count downline members per level.

        Returns:
            {level: count} for 1..max_depth (zero-filled)
        """
        counts = {level: 0 for level in range(1, max_depth + 1)}
        for level, ids in self.iter_downline_levels(user_id, max_depth):
            counts[level] = len(ids)
        return counts

    def get_downline_tree(self, user_id: int, max_depth: int) -> Optional[dict]:
        """
        Build a nested downline tree rooted at user_id.

        max_depth counts levels below the root (root is depth 0), so
        max_depth=3 returns direct referrals down to third-level members.
        Members are loaded per level in one query, children ordered newest first.

        Returns:
            Nested dict or None if user does not exist
        """
        root = self.session.get(User, user_id)
        if root is None:
            return None

        nodes = {root.userID: self._tree_node(root, 0)}
        frontier = [root.userID]

        for depth in range(1, max_depth + 1):
            children = self.session.query(User).filter(
                User.referredBy.in_(frontier)
            ).order_by(User.createdAt.desc(), User.userID.desc()).all()

            children = [child for child in children if child.userID not in nodes]
            if not children:
                break

            for child in children:
                node = self._tree_node(child, depth)
                nodes[child.userID] = node
                nodes[child.referredBy]["children"].append(node)

            frontier = [child.userID for child in children]

        self._fill_sizes(nodes[root.userID])
        return nodes[root.userID]

    @staticmethod
    def _tree_node(user: User, depth: int) -> dict:
        return {
            "userId": user.userID,
            "firstname": user.firstname,
            "surname": user.surname,
            "email": user.email,
            "referralCode": user.referralCode,
            "isActive": user.isActive,
            "totalEarnings": user.earningsTotal,
            "depth": depth,
            "children": [],
        }

    def _fill_sizes(self, node: dict) -> int:
        size = 0
        for child in node["children"]:
            size += 1 + self._fill_sizes(child)
        node["directReferrals"] = len(node["children"])
        node["totalNetworkSize"] = size
        return size

    def validate_cached_chain(self, user: User, max_depth: int) -> bool:
        """
        Check that user.uplineChain matches the live referrer walk.

        Returns:
            True if the cached chain equals the live chain truncated at max_depth
        """
        live = [
            {"userId": upline.userID, "level": index + 1}
            for index, upline in enumerate(self.get_upline_chain(user, max_depth))
        ]
        cached = [
            {"userId": entry["userId"], "level": entry["level"]}
            for entry in (user.uplineChain or [])
        ]

        if live != cached:
            logger.warning(
                f"Cached upline of user {user.userID} is stale: cached={cached}, live={live}"
            )
            return False

        return True
