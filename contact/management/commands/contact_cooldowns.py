"""
Contact Cooldowns Management Command

Inspect or reset the contact form cooldown set:

    python manage.py contact_cooldowns            # list tracked clients
    python manage.py contact_cooldowns --expire   # release the batch if its window ended
    python manage.py contact_cooldowns --clear    # release every client now
"""

from datetime import datetime, timezone as dt_timezone

from django.core.management.base import BaseCommand, CommandError

from contact.exceptions import StoreUnavailable
from contact.rate_limiting import get_cooldown_store


class Command(BaseCommand):
    help = 'Show, expire or clear the contact form cooldown set'

    def add_arguments(self, parser):
        group = parser.add_mutually_exclusive_group()
        group.add_argument(
            '--clear',
            action='store_true',
            help='Remove every tracked client and the window marker',
        )
        group.add_argument(
            '--expire',
            action='store_true',
            help='Clear the set only if its cooldown window has ended',
        )

    def handle(self, *args, **options):
        store = get_cooldown_store()

        try:
            snapshot = store.snapshot()

            if options['clear']:
                store.clear()
                self.stdout.write(self.style.SUCCESS(
                    f'✓ Cleared {len(store.identities(snapshot))} tracked client(s)'
                ))
                return

            if options['expire']:
                if store.reset_if_expired(snapshot):
                    self.stdout.write(self.style.SUCCESS('✓ Cooldown window expired, set cleared'))
                else:
                    self.stdout.write('Cooldown window still open, nothing to do')
                return
        except StoreUnavailable as e:
            raise CommandError(f'Cooldown store unavailable: {e}')

        self.show(store, snapshot)

    def show(self, store, snapshot):
        sentinels = store.sentinels(snapshot)
        identities = store.identities(snapshot)

        if not snapshot:
            self.stdout.write('Cooldown set is empty')
            return

        for sentinel in sorted(sentinels):
            ends = datetime.fromtimestamp(sentinel.expires_at / 1000, tz=dt_timezone.utc)
            self.stdout.write(f'Window ends: {ends.strftime("%Y-%m-%d %H:%M:%S")} UTC')

        if not sentinels:
            self.stdout.write(self.style.WARNING('⚠ No window marker found'))

        self.stdout.write(f'{len(identities)} tracked client(s)')
        for identity in identities:
            self.stdout.write(f'  {identity}')
