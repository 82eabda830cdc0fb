"""
Allocation engine: decides the tier and the berth of every new booking.

A booking runs as one unit of work holding the tier ledger lock. Tiers are
tried in ladder order (confirmed, RAC, waiting list); when all three are
exhausted the booking is rejected without touching any state.
"""
import logging
from collections import namedtuple

from django.db.models import Max

from berths.exceptions import LedgerIntegrityError
from berths.services import (
    find_rac_berth, find_standard_berth, lock_ledger, run_serialized, save_ledger
)
from .models import Child, Passenger, Ticket, TicketStatus
from .queries import get_ticket_by_pnr

logger = logging.getLogger(__name__)

NO_TICKETS_AVAILABLE = 'No tickets available'


class BookingResult(namedtuple('BookingResult', ['ticket', 'reason'])):
    """Outcome of a booking: the new ticket, or the reason it was rejected."""
    __slots__ = ()

    @property
    def success(self):
        return self.ticket is not None


def book_ticket(passenger_data, children_data=None):
    """
    Book a ticket for one passenger travelling with optional under-age children.

    passenger_data: {name, age, gender[, has_child_under_five]}
    children_data: [{name, age, gender}, ...]
    """
    passenger_data = dict(passenger_data)
    children_data = [dict(child) for child in children_data or []]
    if children_data:
        passenger_data['has_child_under_five'] = True
    return run_serialized(_book, passenger_data, children_data)


def _book(passenger_data, children_data):
    ledger = lock_ledger()
    passenger = Passenger(**passenger_data)

    if passenger.needs_berth:
        placement = allocate_placement(ledger, passenger)
        if placement is None:
            logger.info('Booking rejected for %s: %s', passenger.name, NO_TICKETS_AVAILABLE)
            return BookingResult(None, NO_TICKETS_AVAILABLE)
        save_ledger(ledger)
    else:
        # Lap-held child: confirmed without a berth, no tier capacity used
        placement = {'status': TicketStatus.CONFIRMED}

    passenger.save()
    Child.objects.bulk_create([
        Child(parent=passenger, **child_data) for child_data in children_data
    ])
    ticket = Ticket.objects.create(passenger=passenger, **placement)

    logger.info(
        'Booked %s for %s: %s berth=%s rac=%s wl=%s',
        ticket.pnr, passenger.name, ticket.status,
        ticket.berth.berth_number if ticket.berth else None,
        ticket.rac_number, ticket.waiting_list_number
    )
    # Loaded with passenger, berth and children inside the same transaction
    return BookingResult(get_ticket_by_pnr(ticket.pnr), None)


def allocate_placement(ledger, passenger):
    """
    Reserve capacity in the first tier that has some left.
    Returns the ticket fields for that tier, or None when every tier is full.
    """
    for tier, allocate in ALLOCATION_LADDER:
        if ledger.remaining(tier) > 0:
            return allocate(ledger, passenger)
    return None


def _allocate_confirmed(ledger, passenger):
    berth = find_standard_berth(prefer_lower=passenger.prefers_lower_berth)
    if berth is None:
        raise LedgerIntegrityError('No berths available despite counter showing availability')

    berth.occupy()
    ledger.take(TicketStatus.CONFIRMED)
    return {'status': TicketStatus.CONFIRMED, 'berth': berth}


def _allocate_rac(ledger, passenger):
    berth = find_rac_berth()
    if berth is None:
        raise LedgerIntegrityError('No RAC berths available despite counter showing availability')

    rac_number = next_queue_number(ledger, TicketStatus.RAC, 'rac_number')
    # First occupant leaves the berth open for a second one; the second fills it
    berth.occupy()
    ledger.take(TicketStatus.RAC)
    return {'status': TicketStatus.RAC, 'berth': berth, 'rac_number': rac_number}


def _allocate_waiting_list(ledger, passenger):
    waiting_list_number = next_queue_number(ledger, TicketStatus.WAITING_LIST, 'waiting_list_number')
    ledger.take(TicketStatus.WAITING_LIST)
    return {'status': TicketStatus.WAITING_LIST, 'waiting_list_number': waiting_list_number}


ALLOCATION_LADDER = [
    (TicketStatus.CONFIRMED, _allocate_confirmed),
    (TicketStatus.RAC, _allocate_rac),
    (TicketStatus.WAITING_LIST, _allocate_waiting_list),
]


def next_queue_number(ledger, tier, field):
    """
    Next RAC or waiting-list position: capacity - remaining + 1, but always
    behind the last ticket still queued, so a gap left by a cancellation
    never lets a new booking overtake an older one.
    """
    highest = Ticket.objects.filter(status=tier).aggregate(highest=Max(field))['highest'] or 0
    return max(ledger.next_number(tier), highest + 1)
