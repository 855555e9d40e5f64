from __future__ import annotations

import unittest
from unittest.mock import patch

from cmms.auth import Role
from cmms.models import Technician, Vendor, WorkOrderStatus
from cmms.services.workorder_service import (
    change_work_order_status,
    create_public_work_order,
    create_work_order,
    display_status,
    is_transition_allowed,
    update_work_order,
    validate_transition,
)
from tests.support import add_asset, add_store, add_user, make_session_factory, principal_for


class TransitionTableTests(unittest.TestCase):
    def test_same_status_is_always_allowed(self) -> None:
        for status in WorkOrderStatus:
            self.assertTrue(is_transition_allowed(status, status))

    def test_missing_target_is_a_no_op(self) -> None:
        self.assertTrue(is_transition_allowed(WorkOrderStatus.OPEN, None))

    def test_listed_transitions(self) -> None:
        self.assertTrue(is_transition_allowed(WorkOrderStatus.OPEN, WorkOrderStatus.IN_PROGRESS))
        self.assertTrue(is_transition_allowed(WorkOrderStatus.COMPLETED, WorkOrderStatus.OPEN))
        self.assertTrue(is_transition_allowed(WorkOrderStatus.CANCELLED, WorkOrderStatus.OPEN))
        self.assertFalse(is_transition_allowed(WorkOrderStatus.CANCELLED, WorkOrderStatus.COMPLETED))
        self.assertFalse(is_transition_allowed(WorkOrderStatus.COMPLETED, WorkOrderStatus.CANCELLED))

    def test_pending_review_has_no_outgoing_transitions(self) -> None:
        self.assertFalse(is_transition_allowed(WorkOrderStatus.PENDING_REVIEW, WorkOrderStatus.OPEN))
        self.assertFalse(is_transition_allowed(WorkOrderStatus.OPEN, WorkOrderStatus.PENDING_REVIEW))

    def test_validate_transition_names_both_states(self) -> None:
        with self.assertRaisesRegex(ValueError, 'Invalid status transition from Cancelled to Completed'):
            validate_transition(WorkOrderStatus.CANCELLED, 'Completed')

    def test_validate_transition_rejects_unknown_status(self) -> None:
        with self.assertRaisesRegex(ValueError, 'Invalid status value'):
            validate_transition(WorkOrderStatus.OPEN, 'Closed')

    def test_display_status_vocabulary(self) -> None:
        self.assertEqual(display_status(WorkOrderStatus.OPEN), 'Pending')
        self.assertEqual(display_status(WorkOrderStatus.CANCELLED), 'On Hold')
        self.assertEqual(display_status('Completed'), 'Completed')


class WorkOrderServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.store = add_store(self.db, name='Downtown', qr_code='qr-downtown')
        self.other_store = add_store(self.db, name='Uptown', qr_code='qr-uptown')
        self.asset = add_asset(self.db, store_id=self.store.id)
        self.admin = principal_for(add_user(self.db, email='admin@example.com', role=Role.STORE_ADMIN, store_id=self.store.id))

    def tearDown(self) -> None:
        self.db.close()

    def _create(self, **extra):
        fields = {'title': 'Broken', 'asset_id': self.asset.id, 'priority': 'High'}
        fields.update(extra)
        return create_work_order(self.db, principal=self.admin, fields=fields)

    def test_public_intake_rejects_asset_from_another_store(self) -> None:
        foreign_asset = add_asset(self.db, store_id=self.other_store.id, name='Ice machine')
        with self.assertRaisesRegex(ValueError, 'does not belong to this store'):
            create_public_work_order(
                self.db,
                fields={
                    'qr_code': 'qr-downtown',
                    'title': 'Ice machine leaking',
                    'problem_description': 'Water on the floor',
                    'help_description': 'Please send someone',
                    'priority': 'Medium',
                    'asset_id': foreign_asset.id,
                },
            )

    def test_public_intake_creates_open_work_order_for_qr_store(self) -> None:
        work_order = create_public_work_order(
            self.db,
            fields={
                'qr_code': 'qr-downtown',
                'title': 'Cooler warm',
                'problem_description': 'Reads 50F',
                'help_description': 'Needs a technician',
                'priority': 'Medium',
                'asset_id': self.asset.id,
            },
        )
        self.assertEqual(work_order.store_id, self.store.id)
        self.assertEqual(work_order.status, WorkOrderStatus.OPEN)
        self.assertEqual(work_order.work_order_number, 1)

    def test_store_admin_cannot_create_against_other_store_asset(self) -> None:
        foreign_asset = add_asset(self.db, store_id=self.other_store.id, name='Ice machine')
        with self.assertRaisesRegex(ValueError, 'does not belong to the chosen store'):
            self._create(asset_id=foreign_asset.id)

    def test_status_flow_stamps_and_clears_completed_at(self) -> None:
        work_order = self._create()

        change_work_order_status(self.db, principal=self.admin, work_order_id=work_order.id, status='Completed')
        self.assertEqual(work_order.status, WorkOrderStatus.COMPLETED)
        self.assertIsNotNone(work_order.completed_at)

        change_work_order_status(self.db, principal=self.admin, work_order_id=work_order.id, status='In Progress')
        self.assertIsNone(work_order.completed_at)

    def test_generic_update_does_not_stamp_completed_at(self) -> None:
        work_order = self._create()
        update_work_order(self.db, principal=self.admin, work_order_id=work_order.id, fields={'status': 'Completed'})
        self.assertEqual(work_order.status, WorkOrderStatus.COMPLETED)
        self.assertIsNone(work_order.completed_at)

    def test_assigned_technician_may_only_change_status(self) -> None:
        technician = Technician(name='Sam', email='sam@example.com', store_id=self.store.id)
        self.db.add(technician)
        self.db.flush()
        tech_principal = principal_for(
            add_user(
                self.db,
                email='sam@example.com',
                role=Role.TECHNICIAN,
                store_id=self.store.id,
                technician_id=technician.id,
            )
        )
        with patch('cmms.services.workorder_service.notify_work_order_assigned') as notify_mock:
            work_order = self._create(assigned_to_id=technician.id)
        notify_mock.assert_called_once()

        with self.assertRaisesRegex(PermissionError, 'can only update the status'):
            update_work_order(self.db, principal=tech_principal, work_order_id=work_order.id, fields={'title': 'New'})

        update_work_order(self.db, principal=tech_principal, work_order_id=work_order.id, fields={'status': 'In Progress'})
        self.assertEqual(work_order.status, WorkOrderStatus.IN_PROGRESS)

    def _technician(self, store_id: int | None, email: str = 'pat@example.com') -> Technician:
        technician = Technician(name='Pat', email=email, store_id=store_id)
        self.db.add(technician)
        self.db.flush()
        return technician

    def test_technician_from_another_store_cannot_be_assigned(self) -> None:
        outsider = self._technician(self.other_store.id)

        with self.assertRaisesRegex(ValueError, 'does not belong to this store'):
            self._create(assigned_to_id=outsider.id)

        work_order = self._create()
        with self.assertRaisesRegex(ValueError, 'does not belong to this store'):
            update_work_order(
                self.db,
                principal=self.admin,
                work_order_id=work_order.id,
                fields={'assigned_to_id': outsider.id},
            )
        self.assertIsNone(work_order.assigned_to_id)

    def test_empty_assignee_disconnects_technician(self) -> None:
        technician = self._technician(self.store.id)
        work_order = self._create(assigned_to_id=technician.id)

        update_work_order(self.db, principal=self.admin, work_order_id=work_order.id, fields={'assigned_to_id': ''})

        self.assertIsNone(work_order.assigned_to_id)

    def test_vendor_must_be_shared_or_from_the_same_store(self) -> None:
        shared = Vendor(name='Acme', email='acme@example.com', store_id=None)
        foreign = Vendor(name='Uptown Cooling', email='uptown@example.com', store_id=self.other_store.id)
        self.db.add_all([shared, foreign])
        self.db.flush()

        work_order = self._create(vendor_id=shared.id)
        self.assertEqual(work_order.vendor_id, shared.id)

        with self.assertRaisesRegex(ValueError, 'Vendor does not belong to this store'):
            update_work_order(self.db, principal=self.admin, work_order_id=work_order.id, fields={'vendor_id': foreign.id})

    def test_assignment_email_waits_for_commit(self) -> None:
        technician = self._technician(self.store.id)
        self.db.commit()

        with patch('cmms.services.notification_service.send_email') as send_mock:
            self._create(assigned_to_id=technician.id)
            send_mock.assert_not_called()
            self.db.commit()

        send_mock.assert_called_once()
        self.assertEqual(send_mock.call_args.kwargs['to'], 'pat@example.com')

    def test_rolled_back_assignment_sends_nothing(self) -> None:
        technician = self._technician(self.store.id)
        self.db.commit()

        with patch('cmms.services.notification_service.send_email') as send_mock:
            self._create(assigned_to_id=technician.id)
            self.db.rollback()
            self.db.commit()

        send_mock.assert_not_called()


if __name__ == '__main__':
    unittest.main()
