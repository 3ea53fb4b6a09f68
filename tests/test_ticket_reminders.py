from __future__ import annotations

import unittest
from datetime import timedelta

from sqlalchemy import select

from factories import FakePushGateway, add, add_user, make_session, utc
from reminder_engine.models import ROLE_SUPER_ADMIN, Client, Notification, Ticket
from reminder_engine.services.ticket_reminders import evaluate_ticket, send_ticket_reminders


class TicketReminderTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.agent = add_user(self.db, "Agente")
        self.admin = add_user(self.db, "Admin", roles=[ROLE_SUPER_ADMIN])
        self.db.commit()
        self.client = add(self.db, Client(business_name="ACME SRL"))
        self.now = utc(2026, 3, 10, 15, 0)
        self.ticket = add(
            self.db,
            Ticket(
                ticket_number="TK-0001",
                title="Servidor caído",
                priority="high",
                status="in_progress",
                assigned_to=self.agent.id,
                client_id=self.client.id,
                sla_due_at=self.now + timedelta(minutes=30),
            ),
        )

    def tearDown(self) -> None:
        self.db.close()

    def test_due_soon_then_overdue_transition(self) -> None:
        gateway = FakePushGateway()

        due_soon = send_ticket_reminders(self.now, self.db, gateway=gateway)
        repeated = send_ticket_reminders(self.now + timedelta(minutes=10), self.db, gateway=gateway)
        overdue = send_ticket_reminders(self.now + timedelta(minutes=40), self.db, gateway=gateway)

        self.assertEqual(due_soon.sent, 2)
        self.assertEqual(repeated.sent, 0)
        self.assertEqual(overdue.sent, 2)
        agent_rows = self.db.scalars(
            select(Notification).where(Notification.user_id == self.agent.id).order_by(Notification.id)
        ).all()
        self.assertEqual([row.reminder_key for row in agent_rows], ["sla_due_soon", "sla_overdue"])
        self.assertEqual([row.priority for row in agent_rows], ["high", "urgent"])
        self.assertEqual(agent_rows[0].title, "Ticket por vencer: TK-0001")
        self.assertEqual(agent_rows[1].title, "Ticket vencido: TK-0001")
        self.assertIn("Cliente: ACME SRL", agent_rows[1].message)
        self.assertEqual(agent_rows[1].data["ticket_id"], self.ticket.id)

    def test_ticket_due_later_than_one_hour_is_not_scanned(self) -> None:
        self.ticket.sla_due_at = self.now + timedelta(minutes=61)
        self.db.commit()

        summary = send_ticket_reminders(self.now, self.db, gateway=FakePushGateway())

        self.assertEqual(summary.entities_scanned, 0)

    def test_closed_or_unassigned_tickets_are_ignored(self) -> None:
        self.ticket.status = "closed"
        add(
            self.db,
            Ticket(
                ticket_number="TK-0002",
                title="Sin asignar",
                status="open",
                sla_due_at=self.now - timedelta(minutes=5),
            ),
        )

        summary = send_ticket_reminders(self.now, self.db, gateway=FakePushGateway())

        self.assertEqual(summary.entities_scanned, 0)
        self.assertEqual(summary.sent, 0)

    def test_evaluator_picks_exactly_one_key(self) -> None:
        ticket = Ticket(
            id=5,
            ticket_number="TK-5",
            title="x",
            priority="low",
            status="open",
            assigned_to=3,
            sla_due_at=self.now,
        )
        at_due = evaluate_ticket(ticket, self.now)
        after_due = evaluate_ticket(ticket, self.now + timedelta(seconds=1))

        assert at_due is not None and after_due is not None
        self.assertEqual(at_due.reminder_key, "sla_due_soon")
        self.assertEqual(after_due.reminder_key, "sla_overdue")
        self.assertEqual(after_due.payload["url"], "/tickets/5")


if __name__ == "__main__":
    unittest.main()
