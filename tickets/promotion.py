"""
Promotion engine: cancels a ticket and moves the queue up behind it.

One unit of work, holding the tier ledger lock:
  1. lock the ticket by PNR (unknown PNR -> not found, nothing changes)
  2. release its berth slot
  3. run the promotion steps at or below its tier, in ladder order
     (RAC -> CONFIRMED, then WAITING_LIST -> RAC)
  4. give back the freed unit of capacity through the cascade rule
  5. delete the ticket with its passenger and children

Promotion steps are best-effort: a step that finds no berth is logged and
skipped, the cancellation itself still goes through.
"""
import logging
from collections import namedtuple

from django.db.models import Max

from berths.models import TierLedger
from berths.services import (
    apply_cancellation_cascade, find_rac_berth, find_standard_berth,
    lock_berth, lock_ledger, run_serialized, save_ledger
)
from .models import Ticket, TicketStatus

logger = logging.getLogger(__name__)

Promotion = namedtuple('Promotion', ['pnr', 'from_status', 'to_status'])


class CancellationResult(namedtuple('CancellationResult', ['pnr', 'found', 'promotions'])):
    """Outcome of a cancellation; `promotions` lists the tickets moved up."""
    __slots__ = ()

    @property
    def success(self):
        return self.found


def cancel_ticket(pnr):
    return run_serialized(_cancel, pnr.strip().upper())


def _cancel(pnr):
    ledger = lock_ledger()
    ticket = Ticket.objects.select_for_update().filter(pnr=pnr).first()
    if ticket is None:
        logger.info('Cancellation requested for unknown PNR %s', pnr)
        return CancellationResult(pnr, False, [])

    promotions = []
    # A lap-held child's ticket never consumed capacity, so nothing moves up
    if ticket.holds_capacity:
        if ticket.berth_id is not None:
            lock_berth(ticket.berth_id).release()

        for promote in promotion_steps_for(ticket.status):
            promotion = promote(exclude=ticket.pk)
            if promotion is not None:
                promotions.append(promotion)

        tier = apply_cancellation_cascade(ledger)
        save_ledger(ledger)
        logger.debug('Cancellation of %s returned one unit of %s capacity', pnr, tier)

    # Deleting the passenger cascades to the ticket and the children
    ticket.passenger.delete()

    logger.info(
        'Cancelled %s (%s), promotions: %s',
        pnr, ticket.status,
        ', '.join(f'{p.pnr} {p.from_status}->{p.to_status}' for p in promotions) or 'none'
    )
    return CancellationResult(pnr, True, promotions)


def promote_rac_to_confirmed(exclude=None):
    """
    Move the RAC ticket with the lowest RAC number onto a standard berth,
    chosen with the same priority rule as a new booking.
    """
    candidate = Ticket.objects.select_for_update().filter(
        status=TicketStatus.RAC
    ).exclude(pk=exclude).order_by('rac_number').first()

    if candidate is None:
        return None

    berth = find_standard_berth(prefer_lower=candidate.passenger.prefers_lower_berth)
    if berth is None:
        logger.error(
            'No berths available to confirm RAC ticket %s despite counter showing availability',
            candidate.pnr
        )
        return None

    vacated_berth_id = candidate.berth_id
    berth.occupy()

    candidate.status = TicketStatus.CONFIRMED
    candidate.rac_number = None
    candidate.berth = berth
    candidate.save(update_fields=['status', 'rac_number', 'berth', 'updated_at'])

    # The side lower berth is only marked free once nobody is left on it
    lock_berth(vacated_berth_id).release()

    logger.info('Promoted %s from RAC to CONFIRMED on berth %d', candidate.pnr, berth.berth_number)
    return Promotion(candidate.pnr, TicketStatus.RAC, TicketStatus.CONFIRMED)


def promote_waiting_list_to_rac(exclude=None):
    """
    Move the waiting-list ticket with the lowest waiting number onto a free RAC
    slot. Its RAC number follows the highest RAC number in use.
    """
    candidate = Ticket.objects.select_for_update().filter(
        status=TicketStatus.WAITING_LIST
    ).exclude(pk=exclude).order_by('waiting_list_number').first()

    if candidate is None:
        return None

    berth = find_rac_berth()
    if berth is None:
        logger.warning(
            'No RAC berths available to promote waiting list ticket %s despite counter showing availability',
            candidate.pnr
        )
        return None

    highest = Ticket.objects.filter(
        status=TicketStatus.RAC
    ).aggregate(highest=Max('rac_number'))['highest'] or 0
    berth.occupy()

    candidate.status = TicketStatus.RAC
    candidate.waiting_list_number = None
    candidate.rac_number = highest + 1
    candidate.berth = berth
    candidate.save(update_fields=['status', 'waiting_list_number', 'rac_number', 'berth', 'updated_at'])

    logger.info(
        'Promoted %s from WAITING_LIST to RAC %d on berth %d',
        candidate.pnr, candidate.rac_number, berth.berth_number
    )
    return Promotion(candidate.pnr, TicketStatus.WAITING_LIST, TicketStatus.RAC)


# Each step fills the tier it targets from the tier below it
PROMOTION_LADDER = [
    (TicketStatus.CONFIRMED, promote_rac_to_confirmed),
    (TicketStatus.RAC, promote_waiting_list_to_rac),
]


def promotion_steps_for(status):
    """Promotion steps a cancellation in `status` triggers, in ladder order."""
    rank = TierLedger.LADDER.index(status)
    return [
        promote for target, promote in PROMOTION_LADDER
        if TierLedger.LADDER.index(target) >= rank
    ]
