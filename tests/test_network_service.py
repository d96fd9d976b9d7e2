# tests/test_network_service.py
"""
Tests for network analytics over the live referral graph.

Run:
    pytest tests/test_network_service.py -v
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import event

from core.exceptions import UserNotFound
from mlm_system.config.commission import CommissionSettings
from mlm_system.services.network_service import NetworkService, NetworkSize
from mlm_system.services.purchase_service import PurchaseService


@pytest.fixture
def network_service(session, settings):
    return NetworkService(session, settings)


@pytest.fixture
def network(register):
    """
    root
    ├── l1a
    │   └── l2a
    │       └── l3a
    │           └── l4a   (fourth level, outside the network)
    └── l1b
    """
    root = register("root")
    l1a = register("l1a", referrer=root)
    l1b = register("l1b", referrer=root)
    l2a = register("l2a", referrer=l1a)
    l3a = register("l3a", referrer=l2a)
    l4a = register("l4a", referrer=l3a)
    return {"root": root, "l1a": l1a, "l1b": l1b, "l2a": l2a, "l3a": l3a, "l4a": l4a}


# =============================================================================
# TEST CLASS: Network size
# =============================================================================

class TestNetworkSize:
    """Tests for NetworkService.getNetworkSize."""

    def test_counts_per_level(self, network, network_service):
        """
        TEST: Three levels counted, fourth ignored.
        """
        size = network_service.getNetworkSize(network["root"].userID)

        assert size == NetworkSize(level1=2, level2=1, level3=1)
        assert size.total == 4
        assert size.asDict() == {"level1": 2, "level2": 1, "level3": 1, "total": 4}

    def test_leaf_has_empty_network(self, network, network_service):
        """
        TEST: A user with no referrals has size zero.
        """
        assert network_service.getNetworkSize(network["l4a"].userID).total == 0

    def test_one_query_per_level(self, network, network_service, engine):
        """
        TEST: Traversal issues one SELECT per level, not per member.
        """
        statements = []

        def count_selects(conn, cursor, statement, parameters, context, executemany):
            if statement.lstrip().upper().startswith("SELECT"):
                statements.append(statement)

        event.listen(engine, "before_cursor_execute", count_selects)
        try:
            network_service.getNetworkSize(network["root"].userID)
        finally:
            event.remove(engine, "before_cursor_execute", count_selects)

        # user lookup is served from the identity map; 3 level queries
        assert len(statements) <= 4

    def test_unknown_user(self, network_service, engine):
        """
        TEST: Unknown user raises UserNotFound.
        """
        with pytest.raises(UserNotFound):
            network_service.getNetworkSize(9999)


# =============================================================================
# TEST CLASS: Potential earnings
# =============================================================================

class TestPotentialEarnings:
    """Tests for NetworkService.getPotentialEarnings."""

    def test_projection_with_default_averages(self, network, network_service):
        """
        TEST: 2/1/1 members, 500 monthly recharge at 5/3/2 %, 1000 yearly courses at 10/5/3 %.
        """
        projection = network_service.getPotentialEarnings(network["root"].userID)

        assert projection["breakdown"]["monthlyRecharge"] == {
            "level1": Decimal("50"),
            "level2": Decimal("15"),
            "level3": Decimal("10"),
        }
        assert projection["monthlyPotential"] == Decimal("75")
        assert projection["breakdown"]["yearlyRecharge"] == Decimal("900")
        assert projection["breakdown"]["yearlyCourses"] == Decimal("280")
        assert projection["yearlyPotential"] == Decimal("1180")

    def test_projection_uses_settings(self, network, session):
        """
        TEST: Averages come from the settings passed in.
        """
        settings = CommissionSettings(avgMonthlyRecharge=Decimal("100"), avgYearlyCourseSpend=Decimal("0"))

        projection = NetworkService(session, settings).getPotentialEarnings(network["root"].userID)

        assert projection["monthlyPotential"] == Decimal("15")
        assert projection["breakdown"]["yearlyCourses"] == Decimal("0")

    def test_course_rates_independent_of_payout_rates(self, network, session):
        """
        TEST: Changing payout rates moves the recharge projection only.
        """
        settings = CommissionSettings(
            levelRates={1: Decimal("1"), 2: Decimal("1"), 3: Decimal("1")}
        )

        projection = NetworkService(session, settings).getPotentialEarnings(network["root"].userID)

        assert projection["monthlyPotential"] == Decimal("20")
        assert projection["breakdown"]["yearlyCourses"] == Decimal("280")

    def test_course_rates_from_settings(self, network, session):
        """
        TEST: Custom course rates; levels beyond maxLevels project nothing.
        """
        settings = CommissionSettings(
            maxLevels=2,
            projectionCourseRates={1: Decimal("20"), 2: Decimal("10"), 3: Decimal("5")}
        )

        projection = NetworkService(session, settings).getPotentialEarnings(network["root"].userID)

        assert projection["breakdown"]["yearlyCourses"] == Decimal("500")


# =============================================================================
# TEST CLASS: Network tree
# =============================================================================

class TestNetworkTree:
    """Tests for NetworkService.getNetworkTree."""

    def test_tree_depth_and_sizes(self, network, network_service):
        """
        TEST: Two levels below root, newest referral first, sizes per node.
        """
        tree = network_service.getNetworkTree(network["root"].userID, maxDepth=2)

        assert tree["userId"] == network["root"].userID
        assert tree["directReferrals"] == 2
        assert tree["totalNetworkSize"] == 3
        assert [child["userId"] for child in tree["children"]] == [
            network["l1b"].userID,
            network["l1a"].userID,
        ]

        l1a = tree["children"][1]
        assert [child["userId"] for child in l1a["children"]] == [network["l2a"].userID]
        assert l1a["children"][0]["children"] == []
        assert l1a["children"][0]["depth"] == 2

    def test_default_depth_is_three(self, network, network_service):
        """
        TEST: Default depth counts below the root: third-level member in, fourth out.
        """
        tree = network_service.getNetworkTree(network["root"].userID)

        assert tree["totalNetworkSize"] == 4
        l3a = tree["children"][1]["children"][0]["children"][0]
        assert l3a["userId"] == network["l3a"].userID
        assert l3a["depth"] == 3
        assert l3a["children"] == []

    def test_unknown_user(self, network_service, engine):
        """
        TEST: Unknown root raises UserNotFound.
        """
        with pytest.raises(UserNotFound):
            network_service.getNetworkTree(9999)


# =============================================================================
# TEST CLASS: Network statistics
# =============================================================================

class TestNetworkStats:
    """Tests for NetworkService.getNetworkStats."""

    def test_stats(self, network, network_service, session, fund):
        """
        TEST: Active members, business by type and growth over 30-day windows.
        """
        now = datetime.now(timezone.utc)
        root, l1a, l2a = network["root"], network["l1a"], network["l2a"]

        l1a.lastLogin = now - timedelta(days=1)
        l2a.lastLogin = now - timedelta(days=45)
        l1a.createdAt = now - timedelta(days=40)
        session.commit()

        fund(l1a, 300)
        PurchaseService(session).purchaseCourse(l1a.userID, 1, "SQL", 300)

        stats = network_service.getNetworkStats(root.userID, now=now + timedelta(minutes=1))

        assert stats["networkSize"]["total"] == 4
        assert stats["totalNetworkUsers"] == 4
        assert stats["activeUsers"] == 1

        business = {item["type"]: item for item in stats["networkBusiness"]}
        assert business["course_purchase"]["totalAmount"] == Decimal("300")
        assert business["course_purchase"]["count"] == 1
        assert business["referral_bonus"]["count"] == 3

        assert stats["growth"] == {"thisMonth": 1, "lastMonth": 1, "growthRate": Decimal("0")}
        assert stats["rankInfo"]["currentRank"] == "Starter"
        assert stats["earnings"]["referralBonus"] == Decimal("200")

    def test_growth_without_previous_month(self, network, network_service):
        """
        TEST: No referrals last month and some this month -> 100%.
        """
        stats = network_service.getNetworkStats(network["root"].userID)

        assert stats["growth"]["thisMonth"] == 2
        assert stats["growth"]["lastMonth"] == 0
        assert stats["growth"]["growthRate"] == Decimal("100")

    def test_growth_rate_rounded(self, register, network_service, session):
        """
        TEST: 1 this month vs 3 last month -> -66.67%.
        """
        now = datetime.now(timezone.utc)
        root = register("root")
        for i in range(4):
            member = register(f"m{i}", referrer=root)
            if i < 3:
                member.createdAt = now - timedelta(days=35)
        session.commit()

        stats = network_service.getNetworkStats(root.userID, now=now + timedelta(minutes=1))

        assert stats["growth"]["growthRate"] == Decimal("-66.67")

    def test_empty_network(self, register, network_service):
        """
        TEST: A user without referrals gets zeroed statistics.
        """
        alone = register("alone")

        stats = network_service.getNetworkStats(alone.userID)

        assert stats["activeUsers"] == 0
        assert stats["networkBusiness"] == []
        assert stats["growth"]["growthRate"] == Decimal("0")
        assert stats["rankInfo"]["nextRank"] == "Bronze"
