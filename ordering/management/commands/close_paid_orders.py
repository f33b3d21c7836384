"""
Management command: move orders paid more than N minutes ago to completed.
Runs through the order state machine, so observers receive the change events.
Run periodically via cron. Safe to run multiple times.
"""
from datetime import timedelta

from django.core.management.base import BaseCommand
from django.utils import timezone

from ordering import services
from ordering.constants import setting
from ordering.exceptions import OrderingError
from ordering.models import Order, OrderStatus


class Command(BaseCommand):
    help = 'Move orders that have been paid for longer than --minutes to completed'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Only print what would be updated, do not save',
        )
        parser.add_argument(
            '--minutes',
            type=int,
            default=None,
            help='Minutes since payment (default: VENUETAB CLOSE_PAID_AFTER_MINUTES)',
        )

    def handle(self, *args, **options):
        minutes = options['minutes']
        if minutes is None:
            minutes = int(setting('CLOSE_PAID_AFTER_MINUTES'))
        cutoff = timezone.now() - timedelta(minutes=minutes)
        qs = Order.objects.filter(status=OrderStatus.PAID, updated_at__lt=cutoff).order_by('updated_at')
        count = qs.count()
        if count == 0:
            self.stdout.write(self.style.SUCCESS('No paid orders to close.'))
            return
        if options['dry_run']:
            for o in qs:
                self.stdout.write(f'Would complete: {o.order_number} paid_at={o.updated_at:%Y-%m-%d %H:%M}')
            self.stdout.write(self.style.WARNING(f'Dry run: would complete {count} order(s).'))
            return
        completed = 0
        for pk in list(qs.values_list('pk', flat=True)):
            try:
                services.retry_on_conflict(services.advance_order_status, pk, OrderStatus.COMPLETED)
                completed += 1
            except OrderingError as e:
                self.stderr.write(f'Order {pk}: {e.message}')
        self.stdout.write(self.style.SUCCESS(f'Completed {completed} of {count} paid order(s).'))
