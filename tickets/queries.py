"""Read-side lookups used by the API."""
from django.db.models import F

from .models import Ticket, TicketStatus


def _ticket_queryset():
    return Ticket.objects.select_related(
        'passenger', 'berth'
    ).prefetch_related(
        'passenger__children'
    )


def get_ticket_by_pnr(pnr):
    """Return the ticket for `pnr` (case-insensitive), or None."""
    return _ticket_queryset().filter(pnr=pnr.strip().upper()).first()


def list_tickets():
    """
    All tickets grouped by tier.

    Confirmed tickets are ordered by berth number (lap-held children, who have
    no berth, first), RAC by RAC number and the waiting list by waiting number.
    """
    tickets = _ticket_queryset()
    return {
        'confirmed': list(
            tickets.filter(status=TicketStatus.CONFIRMED).order_by(
                F('berth__berth_number').asc(nulls_first=True), 'created_at'
            )
        ),
        'rac': list(tickets.filter(status=TicketStatus.RAC).order_by('rac_number')),
        'waiting_list': list(
            tickets.filter(status=TicketStatus.WAITING_LIST).order_by('waiting_list_number')
        ),
    }
