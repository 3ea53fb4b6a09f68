from __future__ import annotations

import unittest
from datetime import date, timedelta

from sqlalchemy import select

from factories import FakePushGateway, add, add_user, make_session, utc
from reminder_engine.models import Attendance, AttendanceRecord, Notification, User
from reminder_engine.services.attendance_reminders import evaluate_attendance, send_attendance_checkout_reminders


class AttendanceCheckoutReminderTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.user = add_user(self.db, "Maria")
        self.db.commit()
        # 08:00 in America/La_Paz (UTC-4).
        self.check_in_at = utc(2026, 3, 10, 12, 0)
        self.attendance = add(self.db, Attendance(user_id=self.user.id, date=date(2026, 3, 10)))
        self.check_in = add(
            self.db,
            AttendanceRecord(attendance_id=self.attendance.id, type="check_in", timestamp=self.check_in_at),
        )

    def tearDown(self) -> None:
        self.db.close()

    def test_open_check_in_after_nine_hours_sends_one_reminder(self) -> None:
        gateway = FakePushGateway()
        now = self.check_in_at + timedelta(hours=9, minutes=5)

        summary = send_attendance_checkout_reminders(now, self.db, gateway=gateway)
        rerun = send_attendance_checkout_reminders(now + timedelta(minutes=15), self.db, gateway=gateway)

        self.assertEqual(summary.sent, 1)
        self.assertEqual(rerun.sent, 0)
        rows = self.db.scalars(select(Notification)).all()
        self.assertEqual(len(rows), 1)
        row = rows[0]
        self.assertEqual(row.user_id, self.user.id)
        self.assertEqual(row.type, "attendance")
        self.assertEqual(row.title, "Recordatorio: marcar salida")
        self.assertEqual(row.priority, "normal")
        self.assertEqual(row.action_url, "/attendance")
        self.assertEqual(row.data["attendance_id"], self.attendance.id)
        self.assertEqual(row.data["record_id"], self.check_in.id)
        self.assertEqual(row.data["reminder"], "missing_checkout")
        self.assertIn("Última entrada: 10/03/2026 08:00", row.message)
        self.assertEqual(gateway.pushed_user_ids(), [self.user.id])

    def test_before_nine_hours_nothing_is_sent(self) -> None:
        now = self.check_in_at + timedelta(hours=8, minutes=59)

        summary = send_attendance_checkout_reminders(now, self.db, gateway=FakePushGateway())

        self.assertEqual(summary.entities_scanned, 0)
        self.assertEqual(summary.sent, 0)

    def test_open_shift_is_found_behind_many_closed_ones(self) -> None:
        users = [User(name=f"Staff {index}", is_active=True) for index in range(320)]
        self.db.add_all(users)
        self.db.flush()
        for user in users:
            closed = Attendance(user_id=user.id, date=date(2026, 3, 10))
            closed.records = [
                AttendanceRecord(type="check_in", timestamp=self.check_in_at - timedelta(hours=1)),
                AttendanceRecord(type="check_out", timestamp=self.check_in_at + timedelta(hours=7)),
            ]
            self.db.add(closed)
        late_user = User(name="Late", is_active=True)
        self.db.add(late_user)
        self.db.flush()
        late = Attendance(user_id=late_user.id, date=date(2026, 3, 10))
        late.records = [AttendanceRecord(type="check_in", timestamp=self.check_in_at)]
        self.db.add(late)
        self.db.commit()
        gateway = FakePushGateway()

        summary = send_attendance_checkout_reminders(
            self.check_in_at + timedelta(hours=10),
            self.db,
            gateway=gateway,
        )

        self.assertEqual(summary.entities_scanned, 2)
        self.assertEqual(summary.sent, 2)
        self.assertEqual(sorted(gateway.pushed_user_ids()), sorted([self.user.id, late_user.id]))

    def test_checked_out_attendance_is_not_reminded(self) -> None:
        add(
            self.db,
            AttendanceRecord(
                attendance_id=self.attendance.id,
                type="check_out",
                timestamp=self.check_in_at + timedelta(hours=8),
            ),
        )

        summary = send_attendance_checkout_reminders(
            self.check_in_at + timedelta(hours=10),
            self.db,
            gateway=FakePushGateway(),
        )

        self.assertEqual(summary.sent, 0)

    def test_inactive_user_is_skipped(self) -> None:
        self.user.is_active = False
        self.db.commit()

        summary = send_attendance_checkout_reminders(
            self.check_in_at + timedelta(hours=10),
            self.db,
            gateway=FakePushGateway(),
        )

        self.assertEqual(summary.entities_scanned, 0)
        self.assertEqual(summary.sent, 0)

    def test_evaluator_ignores_deleted_records(self) -> None:
        attendance = Attendance(id=7, user_id=1, date=date(2026, 3, 10))
        attendance.records = [
            AttendanceRecord(id=1, type="check_in", timestamp=self.check_in_at),
            AttendanceRecord(
                id=2,
                type="check_out",
                timestamp=self.check_in_at + timedelta(hours=1),
                deleted_at=self.check_in_at + timedelta(hours=2),
            ),
        ]

        intent = evaluate_attendance(attendance, self.check_in_at + timedelta(hours=9))

        assert intent is not None
        self.assertEqual(intent.entity_id, 7)
        self.assertEqual(intent.payload["record_id"], 1)


if __name__ == "__main__":
    unittest.main()
