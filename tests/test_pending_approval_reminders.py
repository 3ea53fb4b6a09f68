from __future__ import annotations

import unittest
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import select

from factories import FakePushGateway, add, add_area, add_user, make_session, utc
from reminder_engine.models import (
    ROLE_AREA_MANAGER,
    ROLE_SUPER_ADMIN,
    AuditLog,
    Expense,
    Notification,
    ServiceRequest,
)
from reminder_engine.services.expense_reminders import send_expense_reminders
from reminder_engine.services.request_reminders import send_request_reminders


class PendingApprovalReminderTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.now = utc(2026, 3, 10, 15, 0)
        self.area = add_area(self.db, "Contabilidad")
        self.other_area = add_area(self.db, "Ventas")
        self.manager = add_user(self.db, "Jefe", roles=[ROLE_AREA_MANAGER], area_id=self.area.id)
        self.other_manager = add_user(self.db, "Otro Jefe", roles=[ROLE_AREA_MANAGER], area_id=self.other_area.id)
        self.admin = add_user(self.db, "Admin", roles=[ROLE_SUPER_ADMIN])
        self.staff = add_user(self.db, "Staff", area_id=self.area.id)
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()

    def _add_expense(self, *, age: timedelta, status: str = "pending", area_id: int | None = None) -> Expense:
        return add(
            self.db,
            Expense(
                description="Compra de insumos",
                amount=Decimal("150.50"),
                supplier_name="Proveedor SRL",
                status=status,
                area_id=self.area.id if area_id is None else area_id,
                created_by=self.staff.id,
                created_at=self.now - age,
            ),
        )

    def test_expense_pending_over_24h_reaches_area_manager_and_admin(self) -> None:
        expense = self._add_expense(age=timedelta(hours=30))
        gateway = FakePushGateway()

        summary = send_expense_reminders(self.now, self.db, gateway=gateway)

        self.assertEqual(summary.entities_scanned, 1)
        self.assertEqual(summary.sent, 2)
        rows = self.db.scalars(select(Notification).order_by(Notification.user_id)).all()
        by_user = {row.user_id: row for row in rows}
        self.assertEqual(set(by_user), {self.manager.id, self.admin.id})
        self.assertNotIn(self.other_manager.id, by_user)
        manager_row = by_user[self.manager.id]
        self.assertEqual(manager_row.type, "expense")
        self.assertEqual(manager_row.priority, "high")
        self.assertEqual(manager_row.action_url, f"/expenses/{expense.id}")
        self.assertEqual(manager_row.data["expense_id"], expense.id)
        self.assertEqual(manager_row.data["reminder"], "pending_over_24h")
        self.assertEqual(manager_row.data["amount"], "150.50")
        self.assertIn("Proveedor: Proveedor SRL", manager_row.message)
        self.assertIn("Registrado por: Staff", manager_row.message)
        self.assertEqual(by_user[self.admin.id].audience, "broadcast_admin")
        self.assertEqual(sorted(gateway.pushed_user_ids()), sorted([self.manager.id, self.admin.id]))

    def test_rerun_within_cooldown_sends_nothing(self) -> None:
        self._add_expense(age=timedelta(hours=30))
        gateway = FakePushGateway()

        first = send_expense_reminders(self.now, self.db, gateway=gateway)
        second = send_expense_reminders(self.now + timedelta(hours=1), self.db, gateway=gateway)
        after_cooldown = send_expense_reminders(self.now + timedelta(hours=23, minutes=1), self.db, gateway=gateway)

        self.assertEqual(first.sent, 2)
        self.assertEqual(second.sent, 0)
        self.assertEqual(second.suppressed, 2)
        self.assertEqual(after_cooldown.sent, 2)

    def test_recent_or_decided_expenses_are_ignored(self) -> None:
        self._add_expense(age=timedelta(hours=10))
        self._add_expense(age=timedelta(hours=30), status="approved")

        summary = send_expense_reminders(self.now, self.db, gateway=FakePushGateway())

        self.assertEqual(summary.entities_scanned, 0)
        self.assertEqual(summary.sent, 0)

    def test_request_reminder_uses_requests_type(self) -> None:
        request_row = add(
            self.db,
            ServiceRequest(
                user_id=self.staff.id,
                type="vacation",
                title="Vacaciones de marzo",
                status="pending",
                area_id=self.area.id,
                created_at=self.now - timedelta(hours=25),
            ),
        )

        summary = send_request_reminders(self.now, self.db, gateway=FakePushGateway())

        self.assertEqual(summary.sent, 2)
        row = self.db.scalar(select(Notification).where(Notification.user_id == self.manager.id))
        assert row is not None
        self.assertEqual(row.type, "requests")
        self.assertEqual(row.data["request_id"], request_row.id)
        self.assertEqual(row.data["type"], "vacation")
        self.assertEqual(row.title, "Solicitud pendiente por aprobar")
        self.assertIn("Personal: Staff", row.message)

    def test_completed_run_is_audited(self) -> None:
        self._add_expense(age=timedelta(hours=30))

        send_expense_reminders(self.now, self.db, gateway=FakePushGateway())

        audit = self.db.scalar(select(AuditLog).where(AuditLog.actor_id == "expenses:send-reminders"))
        assert audit is not None
        self.assertTrue(audit.success)
        self.assertEqual(audit.actor_type, "SYSTEM")
        self.assertEqual(audit.details["sent"], 2)


if __name__ == "__main__":
    unittest.main()
