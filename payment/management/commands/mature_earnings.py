from decimal import Decimal

from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from payment.services.ledger import EarningsLedger


class Command(BaseCommand):
    help = 'Moves pending vendor earnings whose hold period has passed into the available balance.'

    def add_arguments(self, parser):
        parser.add_argument(
            '--as-of',
            dest='as_of',
            help='ISO timestamp to mature against (defaults to now).',
        )

    def handle(self, *args, **options):
        as_of = None
        if options.get('as_of'):
            as_of = parse_datetime(options['as_of'])
            if as_of is None:
                raise CommandError(f"Invalid --as-of timestamp: {options['as_of']}")
            if timezone.is_naive(as_of):
                as_of = timezone.make_aware(as_of)

        results = EarningsLedger.mature_all(as_of=as_of)
        matured = [r for r in results if r.count]

        if not matured:
            self.stdout.write(self.style.SUCCESS('No pending earnings are due.'))
            return

        total = sum((r.amount for r in matured), Decimal('0.00'))
        for result in matured:
            self.stdout.write(f'Vendor {result.vendor_id}: {result.count} earnings, {result.amount}')
        self.stdout.write(
            self.style.SUCCESS(f'Matured {sum(r.count for r in matured)} earnings worth {total} for {len(matured)} vendors.')
        )
