"""Management command to run the dive safety tick loop."""

import time

from django.core.management.base import BaseCommand, CommandError

from django_divewatch.broadcast import ALERT_PREFIX
from django_divewatch.monitor import DiveMonitor


class Command(BaseCommand):
    help = 'Derive cart timers, raise alerts and broadcast snapshots every tick'

    def add_arguments(self, parser):
        parser.add_argument(
            '--interval',
            type=float,
            default=None,
            help='Seconds between ticks (default: DIVEWATCH_TICK_SECONDS or 1.0)'
        )
        parser.add_argument(
            '--once',
            action='store_true',
            help='Run a single tick and exit'
        )
        parser.add_argument(
            '--duration',
            type=float,
            default=None,
            help='Stop after this many seconds (default: run until interrupted)'
        )

    def handle(self, *args, **options):
        interval = options['interval']
        if interval is not None and interval <= 0:
            raise CommandError('--interval must be positive')

        monitor = DiveMonitor(interval=interval)

        if options['once']:
            monitor.restore()
            with monitor.publisher.subscribe() as inbox:
                snapshot = monitor.tick()
                alerts = [m for m in inbox.drain() if m['type'].startswith(ALERT_PREFIX)]
            for alert in alerts:
                self.stdout.write(self.style.WARNING(self._format_alert(alert)))
            self.stdout.write(self.style.SUCCESS(self._format_summary(snapshot)))
            return

        subscription = monitor.publisher.subscribe(callback=self._echo_alert)
        monitor.start()
        self.stdout.write(f'Dive monitor running every {monitor.interval:g}s')
        deadline = None
        if options['duration'] is not None:
            deadline = time.monotonic() + options['duration']
        try:
            while deadline is None or time.monotonic() < deadline:
                time.sleep(0.2)
        except KeyboardInterrupt:
            pass
        finally:
            monitor.stop(timeout=5)
            subscription.close()

        snapshot = monitor.publisher.last_snapshot
        if snapshot is not None:
            self.stdout.write(self.style.SUCCESS(self._format_summary(snapshot['snapshot'])))
        else:
            self.stdout.write(self.style.SUCCESS('Dive monitor stopped'))

    def _echo_alert(self, message):
        if message['type'].startswith(ALERT_PREFIX):
            self.stdout.write(self.style.WARNING(self._format_alert(message)))

    def _format_alert(self, message):
        level = message['type'][len(ALERT_PREFIX):]
        cart = message['cart']
        return f"{level.upper()}: cart #{cart['cart_number']} (deadline {cart['next_deadline']})"

    def _format_summary(self, snapshot):
        carts = snapshot['carts']
        counts = ', '.join(f'{status}: {n}' for status, n in sorted(snapshot['counts'].items()))
        dive = snapshot['dive']
        label = f"dive {dive['id']}" if dive else 'no active dive'
        summary = f'Monitored {len(carts)} carts ({label})'
        return f'{summary} [{counts}]' if counts else summary
