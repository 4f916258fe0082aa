"""
credit_ledger.py — Per-User Credit Balance & Transaction Log
==============================================================

Credits are seconds of processed video.  Every change to a user's
balance, and every free video consumed, appends exactly one
``Transaction`` carrying the balance after the change.

The ledger only flushes.  The caller commits, so the counter update and
its Transaction land in the same database transaction together with
whatever status change triggered them.

Precedence when a finished video is paid for:
  1. the trial video   — anonymous user who has not used it yet
  2. a bonus video     — granted on sign-up / account conversion
  3. the balance       — deduct the seconds, never below zero
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from miraidub.config import TRIAL_VIDEO_LIMIT
from miraidub.errors import not_found
from miraidub.models import CreditSource, Transaction, TransactionType, User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Affordability:
    via_trial: bool
    via_bonus: bool
    via_balance: bool

    @property
    def allowed(self) -> bool:
        return self.via_trial or self.via_bonus or self.via_balance


def has_trial(user: User) -> bool:
    return bool(user.is_anonymous) and user.trial_videos_used < TRIAL_VIDEO_LIMIT


class CreditLedger:
    """Ledger operations bound to one database session."""

    def __init__(self, db: Session):
        self.db = db

    def _get_user(self, user_id: str) -> User:
        user = self.db.get(User, user_id)
        if user is None:
            raise not_found("User")
        return user

    def _record(
        self,
        user: User,
        tx_type: TransactionType,
        amount: float,
        source: CreditSource = CreditSource.CREDITS,
        video_id: Optional[str] = None,
        polar_order_id: Optional[str] = None,
        description: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> Transaction:
        tx = Transaction(
            user_id=user.id,
            type=tx_type.value,
            credits_amount=amount,
            balance_after=user.credits_balance,
            credit_source=source.value,
            video_id=video_id,
            polar_order_id=polar_order_id,
            description=description,
            details=details,
        )
        self.db.add(tx)
        self.db.flush()
        return tx

    # ── Balance movements ────────────────────────────────────

    def credit(
        self,
        user_id: str,
        amount: float,
        tx_type: TransactionType = TransactionType.PURCHASE,
        **meta,
    ) -> float:
        """Add ``amount`` seconds to the balance and return the new balance."""
        if amount <= 0:
            raise ValueError(f"Credit amount must be positive, got {amount}")

        user = self._get_user(user_id)
        user.credits_balance = (user.credits_balance or 0.0) + amount
        self._record(user, tx_type, amount, **meta)

        logger.info(
            f"Credited {amount} to user {user_id} ({tx_type.value}); "
            f"balance={user.credits_balance}"
        )
        return user.credits_balance

    def debit(
        self,
        user_id: str,
        amount: float,
        tx_type: TransactionType = TransactionType.USAGE,
        **meta,
    ) -> float:
        """
        Remove up to ``amount`` seconds and return the new balance.

        The balance is clamped at zero; the Transaction records what was
        actually removed so that the ledger sums to the balance.
        """
        if amount <= 0:
            raise ValueError(f"Debit amount must be positive, got {amount}")

        user = self._get_user(user_id)
        balance = user.credits_balance or 0.0
        removed = min(balance, amount)
        if removed < amount:
            logger.warning(
                f"User {user_id} short by {amount - removed} credits; balance clamped at 0"
            )

        user.credits_balance = balance - removed
        self._record(user, tx_type, -removed, **meta)
        return user.credits_balance

    # ── Entitlement checks ───────────────────────────────────

    def can_afford(self, user_id: str, credits_needed: float) -> Affordability:
        user = self._get_user(user_id)
        return Affordability(
            via_trial=has_trial(user),
            via_bonus=user.bonus_videos_available > 0,
            via_balance=(user.credits_balance or 0.0) >= credits_needed,
        )

    # ── Usage settlement ─────────────────────────────────────

    def settle_usage(
        self,
        user_id: str,
        seconds: float,
        video_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Tuple[CreditSource, float]:
        """
        Pay for one processed video using the precedence rule.

        Returns:
            (source used, balance after)
        """
        user = self._get_user(user_id)

        if has_trial(user):
            user.trial_videos_used += 1
            source = CreditSource.TRIAL
        elif user.bonus_videos_available > 0:
            user.bonus_videos_available -= 1
            source = CreditSource.BONUS
        else:
            source = CreditSource.CREDITS

        label = description or f"Processed video {video_id}"
        if source is CreditSource.CREDITS:
            balance = self.debit(
                user_id,
                seconds,
                TransactionType.USAGE,
                source=source,
                video_id=video_id,
                description=f"{label} (credits)",
            )
        else:
            self._record(
                user,
                TransactionType.USAGE,
                -seconds,
                source=source,
                video_id=video_id,
                description=f"{label} ({source.value})",
            )
            balance = user.credits_balance

        logger.info(f"Settled {seconds}s for video {video_id} via {source.value}")
        return source, balance
