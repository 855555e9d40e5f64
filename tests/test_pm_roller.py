from __future__ import annotations

import unittest
from datetime import date, timedelta
from unittest.mock import patch

from sqlalchemy import func, select

from cmms.auth import Role
from cmms.models import PreventiveSchedule, WorkOrder, WorkOrderStatus
from cmms.services.pm_service import generate_due_work_orders, pm_work_order_title, roll_forward
from tests.support import add_asset, add_store, add_user, make_session_factory, principal_for


TODAY = date(2024, 3, 21)


class RollForwardTests(unittest.TestCase):
    def test_catch_up_lands_strictly_after_today(self) -> None:
        next_due = TODAY - timedelta(days=20)
        self.assertEqual(roll_forward(next_due, 7, TODAY), next_due + timedelta(days=21))

    def test_due_today_moves_one_period(self) -> None:
        self.assertEqual(roll_forward(TODAY, 30, TODAY), TODAY + timedelta(days=30))

    def test_exact_multiple_still_moves_past_today(self) -> None:
        next_due = TODAY - timedelta(days=14)
        self.assertEqual(roll_forward(next_due, 7, TODAY), TODAY + timedelta(days=7))

    def test_future_due_date_is_unchanged(self) -> None:
        next_due = TODAY + timedelta(days=3)
        self.assertEqual(roll_forward(next_due, 7, TODAY), next_due)

    def test_non_positive_frequency_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            roll_forward(TODAY, 0, TODAY)


class PmRollerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.store = add_store(self.db)
        self.asset = add_asset(self.db, store_id=self.store.id)
        self.principal = principal_for(add_user(self.db, email='master@example.com', role=Role.MASTER_ADMIN))
        self.schedule = PreventiveSchedule(
            title='Clean coils',
            asset_id=self.asset.id,
            store_id=self.store.id,
            frequency_days=7,
            next_due_date=TODAY - timedelta(days=20),
            active=True,
        )
        self.db.add(self.schedule)
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()

    def _pm_work_orders(self) -> list[WorkOrder]:
        return self.db.execute(
            select(WorkOrder).where(WorkOrder.title == pm_work_order_title('Clean coils'))
        ).scalars().all()

    def test_overdue_schedule_generates_one_work_order_and_catches_up(self) -> None:
        result = generate_due_work_orders(self.db, principal=self.principal, today=TODAY)

        self.assertEqual((result.processed, result.generated, result.failed), (1, 1, 0))
        work_orders = self._pm_work_orders()
        self.assertEqual(len(work_orders), 1)
        self.assertEqual(work_orders[0].status, WorkOrderStatus.OPEN)
        self.assertEqual(work_orders[0].due_date, TODAY - timedelta(days=20))
        self.assertEqual(work_orders[0].store_id, self.store.id)
        self.assertEqual(self.db.get(PreventiveSchedule, self.schedule.id).next_due_date, TODAY + timedelta(days=1))

    def test_second_run_same_day_creates_nothing(self) -> None:
        generate_due_work_orders(self.db, principal=self.principal, today=TODAY)
        result = generate_due_work_orders(self.db, principal=self.principal, today=TODAY)

        self.assertEqual((result.processed, result.generated), (0, 0))
        self.assertEqual(len(self._pm_work_orders()), 1)

    def test_open_pm_work_order_blocks_duplicate_but_still_rolls(self) -> None:
        generate_due_work_orders(self.db, principal=self.principal, today=TODAY)
        schedule = self.db.get(PreventiveSchedule, self.schedule.id)
        schedule.next_due_date = TODAY
        self.db.commit()

        result = generate_due_work_orders(self.db, principal=self.principal, today=TODAY)

        self.assertEqual((result.processed, result.generated), (1, 0))
        self.assertEqual(len(self._pm_work_orders()), 1)
        self.assertEqual(schedule.next_due_date, TODAY + timedelta(days=7))

    def test_inactive_schedule_is_skipped(self) -> None:
        self.schedule.active = False
        self.db.commit()

        result = generate_due_work_orders(self.db, principal=self.principal, today=TODAY)

        self.assertEqual((result.processed, result.generated), (0, 0))
        self.assertEqual(self.db.execute(select(func.count()).select_from(WorkOrder)).scalar_one(), 0)

    def test_failing_schedule_is_counted_and_batch_continues(self) -> None:
        second = PreventiveSchedule(
            title='Check gaskets',
            asset_id=self.asset.id,
            store_id=self.store.id,
            frequency_days=14,
            next_due_date=TODAY,
            active=True,
        )
        self.db.add(second)
        self.db.commit()

        original = roll_forward

        def flaky_roll_forward(next_due, frequency_days, today):
            if frequency_days == 7:
                raise ValueError('boom')
            return original(next_due, frequency_days, today)

        with patch('cmms.services.pm_service.roll_forward', side_effect=flaky_roll_forward):
            result = generate_due_work_orders(self.db, principal=self.principal, today=TODAY)

        self.assertEqual((result.processed, result.generated, result.failed), (1, 1, 1))
        self.assertEqual(self._pm_work_orders(), [])
        self.assertEqual(self.db.get(PreventiveSchedule, second.id).next_due_date, TODAY + timedelta(days=14))


if __name__ == '__main__':
    unittest.main()
