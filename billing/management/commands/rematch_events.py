"""
Re-apply tag rules and location patterns to a teacher's existing events.

USAGE:
    python manage.py rematch_events <username-or-email>
    python manage.py rematch_events anna --feed 3
    python manage.py rematch_events anna --event 10 --event 11 --no-tags

Manually assigned, invoiced and excluded events keep their billing entity.
"""
from django.core.management.base import BaseCommand, CommandError

from billing.services.rematch import RematchScope, rematch_events

from ._owner import resolve_owner


class Command(BaseCommand):
    help = "Rematch existing events against the current tag rules and billing entity patterns"

    def add_arguments(self, parser):
        parser.add_argument("owner", help="Username or email of the event owner.")
        parser.add_argument("--feed", type=int, dest="feed_id", help="Only events of this calendar feed.")
        parser.add_argument(
            "--event",
            type=int,
            action="append",
            dest="event_ids",
            help="Only this event id (repeatable).",
        )
        parser.add_argument("--no-tags", action="store_true", help="Leave event tags untouched.")
        parser.add_argument("--no-entities", action="store_true", help="Leave billing entities untouched.")
        parser.add_argument("--batch-size", type=int, default=None)

    def handle(self, *args, **options):
        if options["feed_id"] is not None and options["event_ids"]:
            raise CommandError("Use either --feed or --event, not both.")
        if options["no_tags"] and options["no_entities"]:
            raise CommandError("Nothing to do: both --no-tags and --no-entities were given.")

        owner = resolve_owner(options["owner"])
        if options["feed_id"] is not None:
            scope = RematchScope.feed(options["feed_id"])
        elif options["event_ids"]:
            scope = RematchScope.events(options["event_ids"])
        else:
            scope = RematchScope.all()

        result = rematch_events(
            owner,
            scope,
            rematch_tags=not options["no_tags"],
            rematch_entities=not options["no_entities"],
            batch_size=options["batch_size"],
        )

        if result.failed_count:
            self.stdout.write(self.style.WARNING(f"{result.failed_count} event(s) failed to update; see logs"))
        if result.updated_count:
            self.stdout.write(self.style.SUCCESS(result.message))
        else:
            self.stdout.write(result.message if not result.total_processed else "No events needed changes")
