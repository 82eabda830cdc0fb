"""
Management command to create the berth inventory and the tier ledger.

Usage:
    python manage.py setup_berths                      # Default coach layout
    python manage.py setup_berths --reset              # Drop tickets and rebuild
    python manage.py setup_berths --confirmed 6 --rac-berths 1 --waiting-list 2
    python manage.py setup_berths --reset --sample 5   # Rebuild and book 5 sample passengers
"""
from django.core.management.base import BaseCommand
from django.db import transaction

from berths.limits import get_limit
from berths.models import Berth, TierLedger
from berths.services import clear_inventory, initialize_inventory
from tickets.allocation import book_ticket
from tickets.models import Passenger, Ticket


SAMPLE_PASSENGERS = [
    ({'name': 'Ramesh Iyer', 'age': 67, 'gender': 'MALE'}, []),
    ({'name': 'Priya Sharma', 'age': 31, 'gender': 'FEMALE'},
     [{'name': 'Anaya Sharma', 'age': 3, 'gender': 'FEMALE'}]),
    ({'name': 'Arjun Mehta', 'age': 28, 'gender': 'MALE'}, []),
    ({'name': 'Kavya Nair', 'age': 24, 'gender': 'FEMALE'}, []),
    ({'name': 'Vikram Singh', 'age': 45, 'gender': 'MALE'}, []),
    ({'name': 'Meera Das', 'age': 72, 'gender': 'FEMALE'}, []),
]


class Command(BaseCommand):
    help = 'Create the berth inventory and tier ledger for the coach'

    def add_arguments(self, parser):
        parser.add_argument(
            '--reset',
            action='store_true',
            help='Delete all tickets and rebuild the inventory',
        )
        parser.add_argument(
            '--confirmed',
            type=int,
            default=None,
            help=f"Number of standard berths (default: {get_limit('CONFIRMED_BERTHS')})",
        )
        parser.add_argument(
            '--rac-berths',
            type=int,
            default=None,
            help=f"Number of side lower RAC berths (default: {get_limit('RAC_BERTHS')})",
        )
        parser.add_argument(
            '--waiting-list',
            type=int,
            default=None,
            help=f"Waiting list size (default: {get_limit('WAITING_LIST_SIZE')})",
        )
        parser.add_argument(
            '--sample',
            type=int,
            default=0,
            help='Book this many sample passengers after setup',
        )

    def handle(self, *args, **options):
        if options['reset']:
            self.stdout.write('Clearing existing tickets and inventory...')
            self.clear_data()

        self.stdout.write('Setting up berth inventory...')
        ledger, created = initialize_inventory(
            confirmed_berths=options['confirmed'],
            rac_berths=options['rac_berths'],
            waiting_list_size=options['waiting_list'],
        )

        if created:
            self.stdout.write(self.style.SUCCESS('✓ Berth inventory created'))
        else:
            self.stdout.write(self.style.WARNING('  Inventory already exists, left unchanged (use --reset to rebuild)'))

        if options['sample']:
            self.create_sample_bookings(options['sample'])

        self.print_summary()

    def clear_data(self):
        with transaction.atomic():
            Passenger.objects.all().delete()
            clear_inventory()
        self.stdout.write(self.style.WARNING('  Cleared all tickets, berths and counters'))

    def create_sample_bookings(self, count):
        booked = 0
        for i in range(count):
            passenger, children = SAMPLE_PASSENGERS[i % len(SAMPLE_PASSENGERS)]
            passenger = dict(passenger, name=f"{passenger['name']} {i + 1}")
            result = book_ticket(passenger, children)
            if not result.success:
                self.stdout.write(self.style.WARNING(f'  Stopped after {booked} bookings: {result.reason}'))
                break
            ticket = result.ticket
            self.stdout.write(f'  Booked {ticket.pnr}: {ticket.passenger.name} -> {ticket.status}')
            booked += 1

    def print_summary(self):
        ledger = TierLedger.objects.first()
        self.stdout.write('\n' + '='*50)
        self.stdout.write('Inventory Summary:')
        for berth_type, label in Berth.BerthType.choices:
            self.stdout.write(f'  {label} berths: {Berth.objects.filter(berth_type=berth_type).count()}')
        self.stdout.write(f'  Tickets: {Ticket.objects.count()}')
        if ledger is not None:
            self.stdout.write(f'  Confirmed available: {ledger.available_confirmed_berths}/{ledger.confirmed_capacity}')
            self.stdout.write(f'  RAC available: {ledger.available_rac_berths}/{ledger.rac_capacity}')
            self.stdout.write(f'  Waiting list available: {ledger.available_waiting_list}/{ledger.waiting_list_capacity}')
        self.stdout.write('='*50 + '\n')
