from datetime import timedelta

from django.contrib.auth import get_user_model
from django.test import TestCase
from django.utils import timezone

from billing.exceptions import BillingError, EntityMismatch, EventAlreadyInvoiced
from billing.models import BillingEntity, Invoice
from billing.services.matching import match_events
from billing.services.substitutes import (
    TeacherRecipient,
    assign_entity_manually,
    assign_substitute,
    get_excluded_events,
    get_or_create_teacher_entity,
    revert_to_studio_invoicing,
    set_event_exclusion,
    toggle_event_exclusion,
)
from scheduling.models import Event


User = get_user_model()


class SubstituteTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="owner", email="owner@example.com", password="testpass123")
        self.colleague = User.objects.create_user(
            username="colleague",
            email="colleague@example.com",
            password="testpass123",
            first_name="Mia",
            last_name="Kern",
        )
        self.studio = BillingEntity.objects.create(owner=self.user, name="Flow", location_match=["Flow"])
        start = timezone.now() - timedelta(days=1)
        self.event = Event.objects.create(
            owner=self.user,
            title="Vinyasa",
            location="Flow Studio",
            start_time=start,
            end_time=start + timedelta(hours=1),
        )

    def test_external_teacher_entity_is_reused(self):
        recipient = TeacherRecipient(type="external", name="Sam Lee", email="sam@example.com", iban="DE00123")

        first = get_or_create_teacher_entity(self.user, recipient)
        second = get_or_create_teacher_entity(
            self.user, TeacherRecipient(type="external", name="Sam Lee", email="SAM@example.com")
        )

        self.assertEqual(first.id, second.id)
        self.assertEqual(first.kind, BillingEntity.Kind.TEACHER)
        self.assertEqual(first.recipient_type, BillingEntity.RecipientType.EXTERNAL_TEACHER)
        self.assertEqual(first.iban, "DE00123")

    def test_internal_teacher_entity_uses_user_profile(self):
        entity = get_or_create_teacher_entity(self.user, TeacherRecipient(type="internal", user_id=self.colleague.id))

        self.assertEqual(entity.recipient_user_id, self.colleague.id)
        self.assertEqual(entity.recipient_name, "Mia Kern")
        self.assertEqual(entity.recipient_email, "colleague@example.com")
        self.assertEqual(
            get_or_create_teacher_entity(self.user, TeacherRecipient(type="internal", user_id=self.colleague.id)).id,
            entity.id,
        )

    def test_incomplete_recipient_is_rejected(self):
        with self.assertRaises(BillingError):
            get_or_create_teacher_entity(self.user, TeacherRecipient(type="external", name="No Mail"))
        with self.assertRaises(BillingError):
            get_or_create_teacher_entity(self.user, TeacherRecipient(type="internal", user_id=987654))

    def test_substitute_assignment_is_sticky(self):
        teacher = get_or_create_teacher_entity(
            self.user, TeacherRecipient(type="external", name="Sam Lee", email="sam@example.com")
        )

        event = assign_substitute(self.event, teacher, notes="covering for flu")
        match_events(self.user)

        event.refresh_from_db()
        self.assertEqual(event.billing_entity_id, teacher.id)
        self.assertTrue(event.manually_assigned)
        self.assertTrue(event.exclude_from_matching)
        self.assertEqual(event.invoice_type, Event.InvoiceType.TEACHER)
        self.assertEqual(event.substitute_notes, "covering for flu")

    def test_invoiced_event_cannot_be_reassigned(self):
        invoice = Invoice.objects.create(owner=self.user, billing_entity=self.studio, invoice_number="INV-1")
        Event.objects.filter(pk=self.event.pk).update(invoice=invoice, billing_entity=self.studio)

        with self.assertRaises(EventAlreadyInvoiced):
            assign_entity_manually(self.event, None)

    def test_foreign_entity_is_refused(self):
        stranger = User.objects.create_user(username="stranger", email="s@example.com", password="testpass123")
        foreign = BillingEntity.objects.create(owner=stranger, name="Foreign")

        with self.assertRaises(EntityMismatch):
            assign_entity_manually(self.event, foreign)

    def test_manual_assignment_and_clear(self):
        other = BillingEntity.objects.create(owner=self.user, name="Other")

        event = assign_entity_manually(self.event, other)
        self.assertTrue(event.manually_assigned)

        event = assign_entity_manually(event, None)
        self.assertFalse(event.manually_assigned)
        self.assertIsNone(event.billing_entity_id)

    def test_revert_to_studio_reruns_matching(self):
        teacher = BillingEntity.objects.create(owner=self.user, name="Teacher", kind=BillingEntity.Kind.TEACHER)
        assign_substitute(self.event, teacher)

        reverted, result = revert_to_studio_invoicing(self.user, [self.event.id])

        self.event.refresh_from_db()
        self.assertEqual(reverted, 1)
        self.assertEqual(result.matched_count, 1)
        self.assertEqual(self.event.billing_entity_id, self.studio.id)
        self.assertEqual(self.event.invoice_type, Event.InvoiceType.STUDIO)
        self.assertFalse(self.event.manually_assigned)

    def test_exclusion_toggle_and_listing(self):
        self.assertTrue(toggle_event_exclusion(self.event))
        self.assertEqual(list(get_excluded_events(self.user)), [self.event])

        self.event.refresh_from_db()
        self.assertFalse(toggle_event_exclusion(self.event))
        self.assertEqual(list(get_excluded_events(self.user)), [])

        set_event_exclusion(self.event, True)
        self.assertEqual(match_events(self.user).matched_count, 0)
