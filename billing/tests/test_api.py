from datetime import timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import Client, TestCase
from django.urls import reverse
from django.utils import timezone

from billing.models import BillingEntity, Invoice
from billing.services.invoicing import create_invoice
from scheduling.models import Event


User = get_user_model()

JSON = "application/json"


class BillingApiTests(TestCase):
    def setUp(self):
        self.client = Client()
        self.user = User.objects.create_user(username="apiuser", email="api@example.com", password="testpass123")
        self.stranger = User.objects.create_user(username="apistranger", email="apis@example.com", password="testpass123")
        self.client.login(username="apiuser", password="testpass123")

        self.studio = BillingEntity.objects.create(
            owner=self.user,
            name="Flow Studio",
            location_match=["Flow"],
            rate_config={"type": "flat", "base_rate": 45, "bonus_threshold": 15, "bonus_per_student": 3},
        )
        start = timezone.now() - timedelta(days=2)
        self.events = [
            Event.objects.create(
                owner=self.user,
                title=f"Class {i}",
                location="Flow Studio Berlin",
                start_time=start + timedelta(hours=i * 2),
                end_time=start + timedelta(hours=i * 2 + 1),
                students_studio=count,
            )
            for i, count in enumerate([20, 10])
        ]

    def test_requires_authentication(self):
        anonymous = Client()
        res = anonymous.get(reverse("billing:entities"))
        self.assertIn(res.status_code, (401, 403))

    def test_create_entity_validates_rate_config(self):
        res = self.client.post(
            reverse("billing:entities"),
            data={"name": "Bad", "location_match": ["Bad"], "rate_config": {"type": "flat", "base_rate": -5}},
            content_type=JSON,
        )
        self.assertEqual(res.status_code, 400)
        self.assertIn("rate_config", res.json())

        res = self.client.post(
            reverse("billing:entities"),
            data={
                "name": "Lotus",
                "location_match": [" Lotus ", "lotus"],
                "rate_config": {"type": "tiered", "tiers": [{"min": 0, "max": None, "rate": "40.50"}]},
            },
            content_type=JSON,
        )
        self.assertEqual(res.status_code, 201)
        body = res.json()
        self.assertEqual(body["location_match"], ["Lotus"])
        self.assertEqual(body["rate_config"]["tiers"], [{"min": 0, "max": None, "rate": 40.5}])
        self.assertEqual(body["rate_summary"], ["0+ students: EUR 40.50"])
        self.assertEqual(BillingEntity.objects.get(pk=body["id"]).owner, self.user)

    def test_entities_are_scoped_to_owner(self):
        foreign = BillingEntity.objects.create(owner=self.stranger, name="Foreign")

        res = self.client.get(reverse("billing:entities"))
        self.assertEqual([row["id"] for row in res.json()["results"]], [self.studio.id])

        res = self.client.get(reverse("billing:entity_detail", args=[foreign.id]))
        self.assertEqual(res.status_code, 404)

    def test_patch_and_delete_entity(self):
        res = self.client.patch(
            reverse("billing:entity_detail", args=[self.studio.id]),
            data={"match_priority": 5},
            content_type=JSON,
        )
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["match_priority"], 5)

        Event.objects.filter(owner=self.user).update(billing_entity=self.studio)
        create_invoice(self.user, self.studio.id, [self.events[0].id])
        res = self.client.delete(reverse("billing:entity_detail", args=[self.studio.id]))
        self.assertEqual(res.status_code, 409)

    def test_payout_preview(self):
        res = self.client.post(
            reverse("billing:payout_preview"),
            data={
                "rate_config": {"type": "flat", "base_rate": 45, "online_bonus_per_student": 2.5, "online_bonus_ceiling": 5},
                "students_studio": 3,
                "students_online": 8,
            },
            content_type=JSON,
        )
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["online_bonus"], "12.50")
        self.assertEqual(res.json()["total"], "57.50")

    def test_payout_preview_rejects_invalid_config(self):
        res = self.client.post(
            reverse("billing:payout_preview"),
            data={"rate_config": {"type": "hourly"}},
            content_type=JSON,
        )
        self.assertEqual(res.status_code, 400)

    def test_match_then_invoice_flow(self):
        res = self.client.post(reverse("billing:match"), content_type=JSON)
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["matched_count"], 2)

        res = self.client.get(reverse("billing:events_uninvoiced"))
        self.assertEqual(len(res.json()["results"]), 2)

        res = self.client.post(
            reverse("billing:invoices"),
            data={"billing_entity_id": self.studio.id, "event_ids": [e.id for e in self.events]},
            content_type=JSON,
        )
        self.assertEqual(res.status_code, 201)
        body = res.json()
        self.assertEqual(Decimal(body["amount_total"]), Decimal("105.00"))
        self.assertEqual(sorted(body["event_ids"]), sorted(e.id for e in self.events))

        res = self.client.post(
            reverse("billing:invoices"),
            data={"billing_entity_id": self.studio.id, "event_ids": [self.events[0].id]},
            content_type=JSON,
        )
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.json()["event_ids"], [self.events[0].id])

        res = self.client.get(reverse("billing:invoices"))
        self.assertEqual(len(res.json()["results"]), 1)

    def test_invoice_errors_map_to_status_codes(self):
        res = self.client.post(
            reverse("billing:invoices"),
            data={"billing_entity_id": self.studio.id, "event_ids": []},
            content_type=JSON,
        )
        self.assertEqual(res.status_code, 400)

        res = self.client.post(
            reverse("billing:invoices"),
            data={"billing_entity_id": self.studio.id, "event_ids": [self.events[0].id]},
            content_type=JSON,
        )
        self.assertEqual(res.status_code, 400)

        res = self.client.post(
            reverse("billing:invoices"),
            data={"billing_entity_id": 999999, "event_ids": [self.events[0].id]},
            content_type=JSON,
        )
        self.assertEqual(res.status_code, 404)

    def test_invoice_update_status_and_delete(self):
        Event.objects.filter(owner=self.user).update(billing_entity=self.studio)
        invoice = create_invoice(self.user, self.studio.id, [self.events[0].id])

        res = self.client.patch(
            reverse("billing:invoice_detail", args=[invoice.id]),
            data={"event_ids": [e.id for e in self.events], "notes": "both"},
            content_type=JSON,
        )
        self.assertEqual(res.status_code, 200)
        self.assertEqual(Decimal(res.json()["amount_total"]), Decimal("105.00"))

        res = self.client.post(
            reverse("billing:invoice_status", args=[invoice.id]),
            data={"status": "sent"},
            content_type=JSON,
        )
        self.assertEqual(res.status_code, 200)
        self.assertIsNotNone(res.json()["sent_at"])

        res = self.client.patch(
            reverse("billing:invoice_detail", args=[invoice.id]),
            data={"event_ids": [self.events[0].id]},
            content_type=JSON,
        )
        self.assertEqual(res.status_code, 409)

        res = self.client.delete(reverse("billing:invoice_detail", args=[invoice.id]))
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["unlinked_events"], 2)
        self.assertFalse(Invoice.objects.filter(pk=invoice.pk).exists())

    def test_unknown_invoice_is_404(self):
        res = self.client.get(reverse("billing:invoice_detail", args=[424242]))
        self.assertEqual(res.status_code, 404)

    def test_rematch_endpoint(self):
        res = self.client.post(
            reverse("billing:rematch"),
            data={"event_ids": [self.events[0].id], "rematch_tags": False},
            content_type=JSON,
        )
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["total_processed"], 1)
        self.assertEqual(res.json()["updated_count"], 1)

    def test_substitute_and_exclusion_endpoints(self):
        event = self.events[0]
        res = self.client.post(
            reverse("billing:event_substitute", args=[event.id]),
            data={"recipient": {"type": "external", "name": "Sam Lee", "email": "sam@example.com"}, "notes": "flu"},
            content_type=JSON,
        )
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["invoice_type"], Event.InvoiceType.TEACHER)
        self.assertTrue(res.json()["manually_assigned"])

        other = self.events[1]
        res = self.client.post(reverse("billing:event_exclusion", args=[other.id]), data={}, content_type=JSON)
        self.assertEqual(res.status_code, 200)
        self.assertTrue(res.json()["exclude_from_matching"])

        res = self.client.get(reverse("billing:events_excluded"))
        self.assertEqual([row["id"] for row in res.json()["results"]], [other.id])

        res = self.client.post(
            reverse("billing:events_revert"),
            data={"event_ids": [event.id, other.id]},
            content_type=JSON,
        )
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["reverted_count"], 2)
        self.assertEqual(res.json()["match"]["matched_count"], 2)

    def test_manual_assign_endpoint(self):
        res = self.client.post(
            reverse("billing:event_assign", args=[self.events[0].id]),
            data={"billing_entity_id": self.studio.id},
            content_type=JSON,
        )
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["billing_entity"], self.studio.id)

        foreign_event = Event.objects.create(
            owner=self.stranger,
            location="x",
            start_time=timezone.now(),
            end_time=timezone.now(),
        )
        res = self.client.post(
            reverse("billing:event_assign", args=[foreign_event.id]),
            data={"billing_entity_id": self.studio.id},
            content_type=JSON,
        )
        self.assertEqual(res.status_code, 404)
