# tests/test_commission_service.py
"""
Tests for CommissionService.distribute.

Join bonuses are 100 each, so in the A <- B <- C network both A and B start
with a wallet of 100 before any commission.

Run:
    pytest tests/test_commission_service.py -v
"""
from decimal import Decimal, ROUND_HALF_UP

import pytest

from core.exceptions import DistributionPartialFailure
from models import (
    Transaction,
    TransactionType,
    TransactionStatus,
    CommissionStatus,
)
from mlm_system.config.commission import CommissionSettings
from mlm_system.services.commission_service import CommissionService
from mlm_system.services.purchase_service import PurchaseService


@pytest.fixture
def commission_service(session_factory, settings):
    return CommissionService(session_factory, settings)


@pytest.fixture
def buy_course(session, fund):
    """Fund the buyer and complete a course purchase."""

    def _buy(user, amount):
        fund(user, amount)
        return PurchaseService(session).purchaseCourse(user.userID, 7, "Python Basics", amount)

    return _buy


@pytest.fixture
def make_transaction(session):
    """Insert a transaction row directly, bypassing the purchase flow."""

    def _make(user, **fields):
        values = {
            "userID": user.userID,
            "type": TransactionType.COURSE_PURCHASE,
            "amount": Decimal("1000"),
            "status": TransactionStatus.COMPLETED,
        }
        values.update(fields)
        tx = Transaction(**values)
        session.add(tx)
        session.commit()
        return tx

    return _make


def commission_records(session, tx):
    return session.query(Transaction).filter(
        Transaction.sourceTransactionID == tx.transactionID,
        Transaction.type == TransactionType.COMMISSION_EARNED
    ).order_by(Transaction.commissionLevel).all()


# =============================================================================
# TEST CLASS: Distribution
# =============================================================================

class TestDistribution:
    """Tests for the main distribution path."""

    def test_course_purchase_pays_two_levels(self, abc_chain, buy_course, commission_service, session, reload):
        """
        TEST: C buys a course for 1000 -> B gets 50, A gets 30.
        """
        a, b, c = abc_chain
        purchase = buy_course(c, 1000)

        result = commission_service.distribute(purchase, c)

        assert result.success
        assert result.totalPaid == Decimal("80")
        assert result.beneficiaryCount == 2
        assert result.failures == []

        b, a = reload(b), reload(a)
        assert b.walletBalance == Decimal("150")
        assert b.earningsLevel1 == Decimal("50")
        assert b.earningsCourse == Decimal("50")
        assert b.earningsTotal == Decimal("150")
        assert a.walletBalance == Decimal("130")
        assert a.earningsLevel2 == Decimal("30")
        assert a.earningsCourse == Decimal("30")
        assert a.earningsService == Decimal("0")

    def test_audit_records_reference_source(self, abc_chain, buy_course, commission_service, session):
        """
        TEST: One commission_earned record per beneficiary, linked to purchase, buyer and level.
        """
        a, b, c = abc_chain
        purchase = buy_course(c, 1000)

        commission_service.distribute(purchase, c)
        records = commission_records(session, purchase)

        assert [(r.userID, r.commissionLevel, r.amount) for r in records] == [
            (b.userID, 1, Decimal("50")),
            (a.userID, 2, Decimal("30")),
        ]
        for record in records:
            assert record.sourceUserID == c.userID
            assert record.status == TransactionStatus.COMPLETED
            assert record.subType == "course_purchase_commission"
            assert record.description == f"Level {record.commissionLevel} commission from course_purchase"
        assert [r.commissionPercentage for r in records] == [Decimal("5"), Decimal("3")]

    def test_distribution_list_persisted(self, abc_chain, buy_course, commission_service, session):
        """
        TEST: commissionDistribution holds exactly the two entries, in level order.
        """
        a, b, c = abc_chain
        purchase = buy_course(c, 1000)

        result = commission_service.distribute(purchase.transactionID)
        session.expire_all()
        purchase = session.get(Transaction, purchase.transactionID)

        assert purchase.commissionStatus == CommissionStatus.DISTRIBUTED
        assert purchase.commissionDistribution == result.entries
        assert [(e["userId"], e["level"], e["percentage"], e["amount"]) for e in purchase.commissionDistribution] == [
            (b.userID, 1, 5, 50),
            (a.userID, 2, 3, 30),
        ]
        assert all(e["status"] == "pending" for e in purchase.commissionDistribution)

    def test_distribution_entries_are_numbers(self, abc_chain, buy_course, session_factory, session):
        """
        TEST: Whole amounts are stored as int, a fractional rate as a number.
        """
        a, b, c = abc_chain
        settings = CommissionSettings(levelRates={1: Decimal("2.5"), 2: Decimal("3"), 3: Decimal("2")})
        purchase = buy_course(c, 1000)

        CommissionService(session_factory, settings).distribute(purchase.transactionID)
        session.expire_all()
        level1 = session.get(Transaction, purchase.transactionID).commissionDistribution[0]

        assert level1["percentage"] == 2.5
        assert isinstance(level1["percentage"], float)
        assert level1["amount"] == 25
        assert isinstance(level1["amount"], int)

    def test_recharge_credits_service_counter(self, abc_chain, fund, session, commission_service, reload):
        """
        TEST: Recharge commissions count as service earnings.
        """
        a, b, c = abc_chain
        fund(c, 500)
        recharge = PurchaseService(session).recharge(c.userID, 500, {"mobile": "9999999999"})

        commission_service.distribute(recharge, c)

        b = reload(b)
        assert b.earningsService == Decimal("25")
        assert b.earningsCourse == Decimal("0")
        assert commission_records(session, recharge)[0].subType == "recharge_commission"

    def test_chain_longer_than_three_levels(self, register, buy_course, commission_service, session):
        """
        TEST: Only three levels are paid in a five-deep line.
        """
        users = [register("u0")]
        for i in range(1, 5):
            users.append(register(f"u{i}", referrer=users[-1]))
        purchase = buy_course(users[-1], 1000)

        result = commission_service.distribute(purchase)

        assert result.beneficiaryCount == 3
        assert result.totalPaid == Decimal("100")
        assert [r.userID for r in commission_records(session, purchase)] == [
            users[3].userID, users[2].userID, users[1].userID
        ]

    def test_buyer_without_upline(self, register, buy_course, commission_service, session):
        """
        TEST: No chain -> nothing paid, distribution still recorded as done.
        """
        alice = register("alice")
        purchase = buy_course(alice, 1000)

        result = commission_service.distribute(purchase)
        session.expire_all()

        assert result.success
        assert result.beneficiaryCount == 0
        assert session.get(Transaction, purchase.transactionID).commissionStatus == CommissionStatus.DISTRIBUTED

    def test_custom_rates(self, abc_chain, buy_course, session_factory, reload):
        """
        TEST: Rates come from the settings passed in.
        """
        a, b, c = abc_chain
        purchase = buy_course(c, 1000)
        settings = CommissionSettings(levelRates={1: Decimal("10"), 2: Decimal("1"), 3: Decimal("1")})

        result = CommissionService(session_factory, settings).distribute(purchase)

        assert result.totalPaid == Decimal("110")
        assert reload(b).earningsLevel1 == Decimal("100")


# =============================================================================
# TEST CLASS: Rounding
# =============================================================================

class TestRounding:
    """Tests for per-level rounding."""

    def test_half_rounds_up_and_zero_skipped(self, abc_chain, buy_course, commission_service, session):
        """
        TEST: 10 -> level 1 = 0.5 -> 1; level 2 = 0.3 -> 0 and gets no record.
        """
        a, b, c = abc_chain
        purchase = buy_course(c, 10)

        result = commission_service.distribute(purchase)

        assert result.totalPaid == Decimal("1")
        assert result.beneficiaryCount == 1
        assert [r.userID for r in commission_records(session, purchase)] == [b.userID]

    @pytest.mark.parametrize("amount", [17, 99, 999, 1001, 12345])
    def test_total_never_exceeds_rate_sum(self, register, buy_course, commission_service, amount):
        """
        TEST: Each level pays round(rate * A / 100), total stays within the rounding bound.
        """
        users = [register("u0")]
        for i in range(1, 4):
            users.append(register(f"u{i}", referrer=users[-1]))
        purchase = buy_course(users[-1], amount)

        result = commission_service.distribute(purchase)

        exact = Decimal(amount) * Decimal("10") / 100
        assert result.totalPaid <= exact + Decimal("1.5")
        assert result.totalPaid >= exact - Decimal("1.5")
        for entry in result.entries:
            rate = {1: 5, 2: 3, 3: 2}[entry["level"]]
            expected = (Decimal(amount) * rate / 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
            assert entry["amount"] == expected


# =============================================================================
# TEST CLASS: Idempotency
# =============================================================================

class TestIdempotency:
    """Tests for double invocation and retries."""

    def test_second_call_pays_nothing(self, abc_chain, buy_course, commission_service, session, reload):
        """
        TEST: Distributing the same purchase twice credits once.
        """
        a, b, c = abc_chain
        purchase = buy_course(c, 1000)

        commission_service.distribute(purchase)
        second = commission_service.distribute(purchase)

        assert second.alreadyDistributed is True
        assert second.totalPaid == Decimal("0")
        assert reload(b).walletBalance == Decimal("150")
        assert len(commission_records(session, purchase)) == 2

    def test_stale_claim_released(self, abc_chain, buy_course, commission_service, session, reload):
        """
        TEST: A claim stuck in processing blocks distribution until released.
        """
        a, b, c = abc_chain
        purchase = buy_course(c, 1000)
        purchase.commissionStatus = CommissionStatus.PROCESSING
        session.commit()

        assert commission_service.distribute(purchase).alreadyDistributed is True
        assert commission_service.releaseClaim(purchase.transactionID) is True

        result = commission_service.distribute(purchase)

        assert result.beneficiaryCount == 2
        assert reload(a).walletBalance == Decimal("130")
        assert commission_service.releaseClaim(purchase.transactionID) is False


# =============================================================================
# TEST CLASS: Partial failure
# =============================================================================

class TestPartialFailure:
    """Tests for per-beneficiary failure isolation."""

    def test_level_two_failure_is_reported_not_raised(
            self, abc_chain, buy_course, commission_service, session, reload, fail_level
    ):
        """
        TEST: Level 2 store fault -> level 1 paid, purchase still completed, failure in result.
        """
        a, b, c = abc_chain
        purchase = buy_course(c, 1000)
        fail_level(2)

        result = commission_service.distribute(purchase, c)
        session.expire_all()
        purchase = session.get(Transaction, purchase.transactionID)

        assert purchase.status == TransactionStatus.COMPLETED
        assert purchase.commissionStatus == CommissionStatus.PARTIAL
        assert [e["level"] for e in purchase.commissionDistribution] == [1]

        assert not result.success
        assert len(result.failures) == 1
        failure = result.failures[0]
        assert isinstance(failure, DistributionPartialFailure)
        assert (failure.userId, failure.level, failure.amount) == (a.userID, 2, Decimal("30"))

        assert reload(b).walletBalance == Decimal("150")
        assert reload(a).walletBalance == Decimal("100")
        assert reload(a).earningsLevel2 == Decimal("0")

    def test_no_credit_without_audit_record(self, abc_chain, buy_course, commission_service, session, reload, fail_level):
        """
        TEST: The failed level leaves neither a credit nor a record.
        """
        a, b, c = abc_chain
        purchase = buy_course(c, 1000)
        fail_level(2)

        commission_service.distribute(purchase)

        assert [r.commissionLevel for r in commission_records(session, purchase)] == [1]

    def test_retry_pays_only_missing_level(
            self, abc_chain, buy_course, commission_service, session, reload, fail_level, monkeypatch
    ):
        """
        TEST: After a partial run, a retry pays level 2 only.
        """
        a, b, c = abc_chain
        purchase = buy_course(c, 1000)
        fail_level(2)
        commission_service.distribute(purchase)
        monkeypatch.undo()

        retry = commission_service.distribute(purchase)
        session.expire_all()

        assert retry.success
        assert retry.totalPaid == Decimal("30")
        assert retry.beneficiaryCount == 1
        assert reload(b).walletBalance == Decimal("150")
        assert reload(a).walletBalance == Decimal("130")
        purchase = session.get(Transaction, purchase.transactionID)
        assert purchase.commissionStatus == CommissionStatus.DISTRIBUTED
        assert [e["level"] for e in purchase.commissionDistribution] == [1, 2]

    def test_out_of_range_level_reported(self, abc_chain, buy_course, commission_service, session):
        """
        TEST: A corrupted chain entry outside 1..MAX_LEVELS becomes a failure.
        """
        a, b, c = abc_chain
        c.uplineChain = [{"userId": b.userID, "level": 1}, {"userId": a.userID, "level": 7}]
        session.commit()
        purchase = buy_course(c, 1000)

        result = commission_service.distribute(purchase)

        assert result.beneficiaryCount == 1
        assert [f.level for f in result.failures] == [7]


# =============================================================================
# TEST CLASS: Preconditions
# =============================================================================

class TestPreconditions:
    """Tests for transactions that must not distribute."""

    def test_pending_transaction_skipped(self, abc_chain, make_transaction, commission_service, reload):
        """
        TEST: Only completed transactions distribute.
        """
        a, b, c = abc_chain
        tx = make_transaction(c, status=TransactionStatus.PENDING)

        result = commission_service.distribute(tx)

        assert result.skippedReason
        assert result.beneficiaryCount == 0
        assert reload(b).walletBalance == Decimal("100")

    def test_commission_record_never_cascades(self, abc_chain, make_transaction, commission_service):
        """
        TEST: commission_earned rows do not earn commission themselves.
        """
        a, b, c = abc_chain
        tx = make_transaction(c, type=TransactionType.COMMISSION_EARNED)

        result = commission_service.distribute(tx)

        assert "does not earn commission" in result.skippedReason

    def test_zero_amount_skipped(self, abc_chain, make_transaction, commission_service):
        """
        TEST: amount must be positive.
        """
        a, b, c = abc_chain
        tx = make_transaction(c, amount=Decimal("0"))

        assert commission_service.distribute(tx).skippedReason

    def test_unknown_transaction(self, engine, commission_service):
        """
        TEST: Unknown id is reported, not raised.
        """
        result = commission_service.distribute(424242)

        assert result.skippedReason == "Transaction 424242 not found"

    def test_wrong_buyer_skipped(self, abc_chain, make_transaction, commission_service):
        """
        TEST: purchasingUser must own the transaction.
        """
        a, b, c = abc_chain
        tx = make_transaction(c)

        result = commission_service.distribute(tx, b)

        assert result.skippedReason
        assert result.beneficiaryCount == 0
