"""
Resource pool and tier ledger operations.

The booking and cancellation engines call these inside a single
transaction.atomic() block, after taking the ledger row lock with
lock_ledger(). The ledger lock is the serialization point for every
reservation change; berth rows are locked after it.
"""
import logging
import random
import time

from django.db import OperationalError, transaction
from django.utils import timezone

from .exceptions import LedgerBusyError, LedgerConflictError, LedgerIntegrityError
from .limits import get_limit
from .models import Berth, TierLedger

logger = logging.getLogger(__name__)


# =============================================================================
# Inventory setup
# =============================================================================

def build_berth_layout(confirmed_berths, rac_berths):
    """
    Return (berth_number, berth_type) pairs for the coach.

    Standard berths are numbered from 1 in LOWER/MIDDLE/UPPER sets, the side
    lower (RAC) berths follow directly after the last standard berth.
    """
    cycle = Berth.STANDARD_TYPES
    layout = [
        (number, cycle[(number - 1) % len(cycle)])
        for number in range(1, confirmed_berths + 1)
    ]
    layout += [
        (confirmed_berths + offset + 1, Berth.BerthType.SIDE_LOWER)
        for offset in range(rac_berths)
    ]
    return layout


@transaction.atomic
def initialize_inventory(confirmed_berths=None, rac_berths=None, waiting_list_size=None):
    """
    Create the berths and the ledger row if they do not exist yet.

    Returns (ledger, created).
    """
    ledger = TierLedger.objects.first()
    if ledger is not None:
        return ledger, False

    if Berth.objects.exists():
        raise LedgerIntegrityError('Berths exist without a tier ledger; reset the inventory first.')

    if confirmed_berths is None:
        confirmed_berths = get_limit('CONFIRMED_BERTHS')
    if rac_berths is None:
        rac_berths = get_limit('RAC_BERTHS')
    if waiting_list_size is None:
        waiting_list_size = get_limit('WAITING_LIST_SIZE')

    Berth.objects.bulk_create([
        Berth(berth_number=number, berth_type=berth_type)
        for number, berth_type in build_berth_layout(confirmed_berths, rac_berths)
    ])

    rac_capacity = rac_berths * get_limit('RAC_PASSENGERS_PER_BERTH')
    ledger = TierLedger.objects.create(
        available_confirmed_berths=confirmed_berths,
        available_rac_berths=rac_capacity,
        available_waiting_list=waiting_list_size,
        confirmed_capacity=confirmed_berths,
        rac_capacity=rac_capacity,
        waiting_list_capacity=waiting_list_size,
    )
    logger.info(
        'Initialised inventory: %d standard berths, %d RAC berths (%d slots), waiting list of %d',
        confirmed_berths, rac_berths, rac_capacity, waiting_list_size
    )
    return ledger, True


@transaction.atomic
def clear_inventory():
    """Remove the ledger and all berths. Tickets must be deleted first."""
    TierLedger.objects.all().delete()
    Berth.objects.all().delete()
    logger.info('Cleared berth inventory and tier ledger')


# =============================================================================
# Tier ledger
# =============================================================================

def lock_ledger():
    """Fetch the ledger row with an exclusive lock for the current transaction."""
    ledger = TierLedger.objects.select_for_update().order_by('pk').first()
    if ledger is None:
        raise LedgerIntegrityError('Tier ledger has not been initialised.')
    return ledger


def save_ledger(ledger):
    """
    Persist the ledger counters with a version check.
    The running RAC/waiting numbers are recomputed on every write.
    """
    ledger.refresh_current_numbers()
    updated = TierLedger.objects.filter(
        pk=ledger.pk,
        version=ledger.version
    ).update(
        available_confirmed_berths=ledger.available_confirmed_berths,
        available_rac_berths=ledger.available_rac_berths,
        available_waiting_list=ledger.available_waiting_list,
        current_rac_number=ledger.current_rac_number,
        current_waiting_list_number=ledger.current_waiting_list_number,
        version=ledger.version + 1,
        updated_at=timezone.now()
    )

    if updated == 0:
        # Another transaction modified the ledger
        raise LedgerConflictError(ledger.version)

    ledger.version += 1
    return ledger


def apply_cancellation_cascade(ledger):
    """
    Give back the one unit of capacity a cancellation frees.

    Tiers are scanned from the waiting list upwards and the first one with a
    deficit is incremented; the confirmed tier takes it when both lower tiers
    are fully available. Returns the tier that was incremented.
    """
    for tier in reversed(TierLedger.LADDER):
        if tier == TierLedger.CONFIRMED or ledger.remaining(tier) < ledger.capacity(tier):
            ledger.give_back(tier)
            return tier


def _is_lock_error(exc):
    """Lock timeouts and deadlocks surface as OperationalError on every backend."""
    return 'lock' in str(exc).lower()


def run_serialized(operation, *args, **kwargs):
    """
    Run `operation` in its own atomic block and retry it when it could not
    get a consistent view of the ledger:

    - the ledger version check failed (up to LEDGER_RETRY_ATTEMPTS times)
    - the database was locked by another unit of work (SQLite write lock,
      lock wait timeout, deadlock), with a short jittered backoff until
      LOCK_WAIT_TIMEOUT runs out

    Any other exception rolls back and propagates.
    """
    attempts = max(get_limit('LEDGER_RETRY_ATTEMPTS'), 1)
    deadline = time.monotonic() + get_limit('LOCK_WAIT_TIMEOUT')
    conflicts = 0
    lock_waits = 0

    while True:
        try:
            with transaction.atomic():
                return operation(*args, **kwargs)
        except LedgerConflictError:
            conflicts += 1
            if conflicts >= attempts:
                logger.error('Giving up after %d ledger conflicts', attempts)
                raise
            logger.warning('Ledger conflict on attempt %d/%d, retrying', conflicts, attempts)
        except OperationalError as e:
            # Inside an outer transaction the lock can only be retried by the caller
            if not _is_lock_error(e) or transaction.get_connection().in_atomic_block:
                raise
            if time.monotonic() >= deadline:
                logger.error('Database still locked after %d retries: %s', lock_waits, e)
                raise LedgerBusyError('Reservation database is busy, please try again.') from e
            lock_waits += 1
            logger.debug('Database locked (%s), retry %d', e, lock_waits)
            time.sleep(random.uniform(0, min(0.005 * 2 ** lock_waits, 0.1)))


# =============================================================================
# Resource pool
# =============================================================================

def find_standard_berth(prefer_lower=False):
    """
    Lock and return the berth a confirmed passenger should get, or None.

    Priority passengers get the lowest-numbered free LOWER berth when there is
    one; everybody else (and priority passengers when no lower berth is free)
    gets the lowest-numbered free LOWER/MIDDLE/UPPER berth.
    """
    free_berths = Berth.objects.select_for_update().filter(
        is_allocated=False,
        berth_type__in=Berth.STANDARD_TYPES
    ).order_by('berth_number')

    if prefer_lower:
        berth = free_berths.filter(berth_type=Berth.BerthType.LOWER).first()
        if berth is not None:
            return berth

    return free_berths.first()


def find_rac_berth():
    """Lock and return the lowest-numbered side lower berth with a free slot, or None."""
    return Berth.objects.select_for_update().filter(
        berth_type=Berth.BerthType.SIDE_LOWER,
        occupant_count__lt=get_limit('RAC_PASSENGERS_PER_BERTH')
    ).order_by('berth_number').first()


def lock_berth(berth_id):
    return Berth.objects.select_for_update().get(pk=berth_id)


# =============================================================================
# Availability
# =============================================================================

def get_availability():
    """Snapshot of booked/available counts per tier for display."""
    ledger = TierLedger.objects.order_by('pk').first()
    if ledger is None:
        raise LedgerIntegrityError('Counter information not found.')

    def tier_summary(tier):
        available = ledger.remaining(tier)
        return {
            'total': ledger.capacity(tier),
            'booked': ledger.booked(tier),
            'available': available,
            'status': 'AVAILABLE' if available > 0 else 'FULL',
        }

    overall = 'FULL'
    for tier in TierLedger.LADDER:
        if ledger.remaining(tier) > 0:
            overall = f'{tier}_AVAILABLE'
            break

    return {
        'confirmed': tier_summary(TierLedger.CONFIRMED),
        'rac': tier_summary(TierLedger.RAC),
        'waiting_list': tier_summary(TierLedger.WAITING_LIST),
        'overall': {'status': overall},
    }
