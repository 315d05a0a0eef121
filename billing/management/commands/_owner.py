from django.contrib.auth import get_user_model
from django.core.management.base import CommandError
from django.db.models import Q


def resolve_owner(identifier: str):
    """Find the owner by username or email."""
    User = get_user_model()
    matches = list(User.objects.filter(Q(username=identifier) | Q(email__iexact=identifier))[:2])
    if not matches:
        raise CommandError(f"No user found for {identifier!r}")
    if len(matches) > 1:
        raise CommandError(f"{identifier!r} matches more than one user; pass the username instead")
    return matches[0]
