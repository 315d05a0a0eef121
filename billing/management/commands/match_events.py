from django.core.management.base import BaseCommand

from billing.services.matching import match_events

from ._owner import resolve_owner


class Command(BaseCommand):
    help = "Assign unmatched events to billing entities by location"

    def add_arguments(self, parser):
        parser.add_argument("owner", help="Username or email of the event owner.")

    def handle(self, *args, **options):
        owner = resolve_owner(options["owner"])
        result = match_events(owner)

        for entry in result.per_entity:
            line = f"  {entry.entity_name}: {entry.matched}/{entry.attempted}"
            if entry.failed:
                self.stdout.write(self.style.ERROR(line + " (failed)"))
            else:
                self.stdout.write(line)
        for failure in result.failed_patterns:
            self.stdout.write(
                self.style.WARNING(f"  pattern {failure['pattern']!r} of entity {failure['entity_id']} failed")
            )

        if result.matched_count:
            self.stdout.write(self.style.SUCCESS(f"Matched {result.matched_count} event(s)"))
        else:
            self.stdout.write("No events matched")
