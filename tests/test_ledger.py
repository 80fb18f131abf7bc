"""
Balance ledger: every balance change is paired with exactly one transaction row.
"""

from decimal import Decimal

import pytest

from backend.app.core.errors_core import UserNotFoundError, ValidationFailedError
from backend.app.models import TxKind
from backend.app.services.transactions_service import (
    adjust_balance,
    adjust_balance_standalone,
    admin_adjust_balance,
    list_user_transactions,
    reconcile_balance,
)


class TestAdjustBalance:
    """Core ledger operation"""

    async def test_requires_active_transaction(self, db, make_user):
        user = await make_user()
        async with db.session() as session:
            with pytest.raises(RuntimeError):
                await adjust_balance(session, user_id=user.id, delta=Decimal("1"))

    async def test_credit_appends_one_row(self, db, make_user):
        user = await make_user()
        result = await adjust_balance_standalone(db, user_id=user.id, delta="12.5", note="top up")

        assert result.balance == Decimal("12.5")
        assert result.kind == TxKind.RECHARGE.value
        async with db.session() as session:
            rows = await list_user_transactions(session, user_id=user.id)
        assert [(r.kind, r.amount, r.note) for r in rows] == [("recharge", Decimal("12.5"), "top up")]

    async def test_kind_inferred_from_sign(self, db, make_user):
        user = await make_user(balance=5)
        result = await adjust_balance_standalone(db, user_id=user.id, delta=-2)
        assert result.kind == TxKind.PURCHASE.value
        assert result.balance == Decimal("3")

    async def test_amount_truncated_to_six_places(self, db, make_user):
        user = await make_user()
        result = await adjust_balance_standalone(db, user_id=user.id, delta="1.2345679")
        assert result.delta == Decimal("1.234567")
        assert result.balance == Decimal("1.234567")

    async def test_unknown_user(self, db):
        with pytest.raises(UserNotFoundError):
            await adjust_balance_standalone(db, user_id=424242, delta=1)

    async def test_failure_rolls_back_both_sides(self, db, make_user):
        """An error after the ledger write leaves neither balance nor row behind"""
        user = await make_user(balance=10)

        async def _unit(session):
            await adjust_balance(session, user_id=user.id, delta=Decimal("-4"))
            raise ValidationFailedError("boom")

        with pytest.raises(ValidationFailedError):
            await db.run_in_transaction(_unit)

        async with db.session() as session:
            balance, ledger_sum = await reconcile_balance(session, user_id=user.id)
            rows = await list_user_transactions(session, user_id=user.id)
        assert balance == ledger_sum == Decimal("10")
        assert len(rows) == 1

    async def test_balance_equals_ledger_sum(self, db, make_user):
        user = await make_user()
        for delta in ("10", "-3.25", "0.000001", "7", "-1.5"):
            await adjust_balance_standalone(db, user_id=user.id, delta=delta)

        async with db.session() as session:
            balance, ledger_sum = await reconcile_balance(session, user_id=user.id)
        assert balance == ledger_sum == Decimal("12.250001")


class TestAdminAdjustBalance:
    """Manual adjustments by Telegram ID"""

    async def test_credit_and_debit(self, db, make_user):
        user = await make_user("2002")
        credit = await admin_adjust_balance(db, telegram_id="2002", amount="20", note="promo")
        debit = await admin_adjust_balance(db, telegram_id="2002", amount="-5")

        assert credit.kind == TxKind.ADMIN_ADJUSTMENT.value
        assert debit.balance == Decimal("15")
        async with db.session() as session:
            balance, ledger_sum = await reconcile_balance(session, user_id=user.id)
        assert balance == ledger_sum == Decimal("15")

    async def test_zero_amount_rejected(self, db, make_user):
        await make_user("2002")
        with pytest.raises(ValidationFailedError):
            await admin_adjust_balance(db, telegram_id="2002", amount="0")

    @pytest.mark.parametrize("amount", ["1e30", "-1e30", "lots"])
    async def test_unusable_amount_rejected(self, db, make_user, amount):
        await make_user("2002")
        with pytest.raises(ValidationFailedError):
            await admin_adjust_balance(db, telegram_id="2002", amount=amount)

    async def test_negative_result_rejected_by_default(self, db, make_user):
        user = await make_user("2002", balance=3)
        with pytest.raises(ValidationFailedError):
            await admin_adjust_balance(db, telegram_id="2002", amount="-5")

        async with db.session() as session:
            balance, _ = await reconcile_balance(session, user_id=user.id)
        assert balance == Decimal("3")

    async def test_negative_result_allowed_explicitly(self, db, make_user):
        await make_user("2002", balance=3)
        result = await admin_adjust_balance(db, telegram_id="2002", amount="-5", allow_negative=True)
        assert result.balance == Decimal("-2")

    async def test_unknown_telegram_id(self, db):
        with pytest.raises(UserNotFoundError):
            await admin_adjust_balance(db, telegram_id="nobody", amount="1")
