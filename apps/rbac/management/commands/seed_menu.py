"""
Management command to seed the default menu headings.
"""
from django.core.management.base import BaseCommand

from apps.rbac.catalog import DEFAULT_MENU_HEADINGS
from apps.rbac.models import MenuHeading


class Command(BaseCommand):
    help = 'Seed default menu headings (idempotent)'

    def handle(self, *args, **options):
        created_count = 0
        for heading in DEFAULT_MENU_HEADINGS:
            _, created = MenuHeading.objects.update_or_create(
                key=heading.key,
                defaults={'label': heading.label, 'sort_order': heading.sort_order},
            )
            created_count += int(created)

        self.stdout.write(
            self.style.SUCCESS(
                f'✓ Menu headings seeded: {created_count} created, '
                f'{len(DEFAULT_MENU_HEADINGS) - created_count} updated'
            )
        )
