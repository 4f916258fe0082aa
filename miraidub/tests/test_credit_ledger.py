"""
test_credit_ledger.py — Unit Tests for the Credit Ledger
==========================================================

Covers the payment precedence (trial → bonus → balance), clamping at
zero, and the rule that every movement writes exactly one Transaction.
"""

import pytest

from miraidub.errors import AppError, ErrorCode
from miraidub.models import CreditSource, Transaction, TransactionType
from miraidub.services.credit_ledger import CreditLedger, has_trial
from miraidub.tests.conftest import make_user


def _transactions(db, user_id):
    return (
        db.query(Transaction)
        .filter(Transaction.user_id == user_id)
        .all()
    )


# ═════════════════════════════════════════════════════════════
# 1. SETTLEMENT PRECEDENCE
# ═════════════════════════════════════════════════════════════

class TestSettleUsage:

    def test_trial_is_used_first(self, db):
        """An anonymous user with an unused trial pays nothing."""
        user = make_user(db, is_anonymous=True, bonus_videos_available=2, credits_balance=100)

        source, balance = CreditLedger(db).settle_usage(user.id, 30, video_id=None)

        assert source is CreditSource.TRIAL
        assert balance == 100
        assert user.trial_videos_used == 1
        assert user.bonus_videos_available == 2

        [tx] = _transactions(db, user.id)
        assert tx.type == TransactionType.USAGE.value
        assert tx.credits_amount == -30
        assert tx.balance_after == 100
        assert tx.credit_source == CreditSource.TRIAL.value

    def test_bonus_after_trial(self, db):
        user = make_user(db, bonus_videos_available=2, credits_balance=100)

        source, balance = CreditLedger(db).settle_usage(user.id, 45)

        assert source is CreditSource.BONUS
        assert user.bonus_videos_available == 1
        assert balance == 100

    def test_full_accounts_never_use_the_trial(self, db):
        user = make_user(db, is_anonymous=False, credits_balance=100)
        assert not has_trial(user)

        source, _ = CreditLedger(db).settle_usage(user.id, 10)
        assert source is CreditSource.CREDITS

    def test_balance_is_deducted_last(self, db):
        user = make_user(db, credits_balance=100)

        source, balance = CreditLedger(db).settle_usage(user.id, 30)

        assert source is CreditSource.CREDITS
        assert balance == 70
        [tx] = _transactions(db, user.id)
        assert tx.credits_amount == -30
        assert tx.balance_after == 70

    def test_balance_is_clamped_at_zero(self, db):
        """Settling more than the balance empties it and records what was removed."""
        user = make_user(db, credits_balance=10)

        _, balance = CreditLedger(db).settle_usage(user.id, 30)

        assert balance == 0
        [tx] = _transactions(db, user.id)
        assert tx.credits_amount == -10
        assert tx.balance_after == 0

    def test_unknown_user_is_not_found(self, db):
        with pytest.raises(AppError) as exc:
            CreditLedger(db).settle_usage("nobody", 30)
        assert exc.value.code is ErrorCode.NOT_FOUND


# ═════════════════════════════════════════════════════════════
# 2. BALANCE MOVEMENTS
# ═════════════════════════════════════════════════════════════

class TestCreditAndDebit:

    def test_credit_records_purchase(self, db):
        user = make_user(db, credits_balance=80)

        balance = CreditLedger(db).credit(
            user.id, 520, TransactionType.PURCHASE, polar_order_id="order-1"
        )

        assert balance == 600
        [tx] = _transactions(db, user.id)
        assert tx.credits_amount == 520
        assert tx.balance_after == 600
        assert tx.polar_order_id == "order-1"

    def test_non_positive_amounts_are_rejected(self, db):
        user = make_user(db)
        ledger = CreditLedger(db)

        with pytest.raises(ValueError):
            ledger.credit(user.id, 0)
        with pytest.raises(ValueError):
            ledger.debit(user.id, -5)
        assert _transactions(db, user.id) == []

    def test_ledger_sums_to_balance(self, db):
        """Transactions paid from the balance replay to the balance."""
        user = make_user(db, is_anonymous=True)
        ledger = CreditLedger(db)

        ledger.credit(user.id, 300)
        ledger.settle_usage(user.id, 30)    # trial
        ledger.settle_usage(user.id, 120)   # balance
        ledger.credit(user.id, 60, TransactionType.REFUND)
        ledger.settle_usage(user.id, 500)   # clamped

        transactions = _transactions(db, user.id)
        from_balance = [
            tx for tx in transactions
            if tx.credit_source == CreditSource.CREDITS.value
        ]
        assert sum(tx.credits_amount for tx in from_balance) == user.credits_balance
        assert user.credits_balance == 0

        assert sorted(tx.balance_after for tx in from_balance) == [0, 180, 240, 300]


# ═════════════════════════════════════════════════════════════
# 3. AFFORDABILITY
# ═════════════════════════════════════════════════════════════

class TestCanAfford:

    def test_nothing_available(self, db):
        user = make_user(db)
        result = CreditLedger(db).can_afford(user.id, 1)
        assert not result.allowed

    def test_each_path_allows(self, db):
        trial = make_user(db, "trial", is_anonymous=True)
        bonus = make_user(db, "bonus", bonus_videos_available=1)
        rich = make_user(db, "rich", credits_balance=5)
        ledger = CreditLedger(db)

        assert ledger.can_afford(trial.id, 5).via_trial
        assert ledger.can_afford(bonus.id, 5).via_bonus
        assert ledger.can_afford(rich.id, 5).via_balance
        assert not ledger.can_afford(rich.id, 6).allowed
