"""
Tests for the berths app.
Tests cover: Coach layout, Berth occupancy, Berth selection, Tier ledger, Cascade rule, Availability.
"""
from io import StringIO

from django.core.management import call_command
from unittest.mock import patch

from django.db import OperationalError, transaction
from django.test import TestCase, TransactionTestCase, override_settings

from berths.exceptions import LedgerBusyError, LedgerConflictError, LedgerIntegrityError
from berths.models import Berth, TierLedger
from berths.services import (
    apply_cancellation_cascade, build_berth_layout, clear_inventory, find_rac_berth,
    find_standard_berth, get_availability, initialize_inventory, lock_ledger,
    run_serialized, save_ledger
)


def make_ledger(confirmed=(0, 3), rac=(0, 2), waiting=(0, 2)):
    """Unsaved ledger from (remaining, capacity) pairs."""
    return TierLedger(
        available_confirmed_berths=confirmed[0], confirmed_capacity=confirmed[1],
        available_rac_berths=rac[0], rac_capacity=rac[1],
        available_waiting_list=waiting[0], waiting_list_capacity=waiting[1],
    )


# =============================================================================
# UNIT TESTS - Inventory setup
# =============================================================================

class BerthLayoutTests(TestCase):
    """Test berth numbering and types."""

    def test_standard_berths_cycle_lower_middle_upper(self):
        layout = build_berth_layout(6, 0)
        self.assertEqual(layout, [
            (1, Berth.BerthType.LOWER),
            (2, Berth.BerthType.MIDDLE),
            (3, Berth.BerthType.UPPER),
            (4, Berth.BerthType.LOWER),
            (5, Berth.BerthType.MIDDLE),
            (6, Berth.BerthType.UPPER),
        ])

    def test_side_lower_berths_follow_standard_berths(self):
        layout = build_berth_layout(3, 2)
        self.assertEqual(layout[3:], [
            (4, Berth.BerthType.SIDE_LOWER),
            (5, Berth.BerthType.SIDE_LOWER),
        ])

    def test_default_coach(self):
        """Default inventory: 63 standard berths, 9 side lower berths numbered 64-72."""
        ledger, created = initialize_inventory()

        self.assertTrue(created)
        self.assertEqual(Berth.objects.count(), 72)
        for berth_type in Berth.STANDARD_TYPES:
            self.assertEqual(Berth.objects.filter(berth_type=berth_type).count(), 21)
        side_lower = list(
            Berth.objects.filter(berth_type=Berth.BerthType.SIDE_LOWER).values_list('berth_number', flat=True)
        )
        self.assertEqual(side_lower, list(range(64, 73)))

        self.assertEqual(ledger.available_confirmed_berths, 63)
        self.assertEqual(ledger.available_rac_berths, 18)
        self.assertEqual(ledger.available_waiting_list, 10)
        self.assertEqual(ledger.current_rac_number, 0)
        self.assertEqual(ledger.current_waiting_list_number, 0)


class InitializeInventoryTests(TestCase):
    """Test inventory creation and reset."""

    def test_initialize_is_idempotent(self):
        first, created = initialize_inventory(confirmed_berths=3, rac_berths=1, waiting_list_size=1)
        second, created_again = initialize_inventory(confirmed_berths=6, rac_berths=2, waiting_list_size=4)

        self.assertTrue(created)
        self.assertFalse(created_again)
        self.assertEqual(first.pk, second.pk)
        self.assertEqual(Berth.objects.count(), 4)
        self.assertEqual(TierLedger.objects.count(), 1)

    def test_berths_without_ledger_rejected(self):
        Berth.objects.create(berth_number=1, berth_type=Berth.BerthType.LOWER)

        with self.assertRaises(LedgerIntegrityError):
            initialize_inventory(confirmed_berths=3, rac_berths=1, waiting_list_size=1)

    def test_clear_inventory(self):
        initialize_inventory(confirmed_berths=3, rac_berths=1, waiting_list_size=1)
        clear_inventory()

        self.assertFalse(Berth.objects.exists())
        self.assertFalse(TierLedger.objects.exists())

    @override_settings(RAILWAY_RESERVATION={'CONFIRMED_BERTHS': 6, 'RAC_BERTHS': 2, 'WAITING_LIST_SIZE': 3})
    def test_sizes_come_from_settings(self):
        ledger, _ = initialize_inventory()

        self.assertEqual(ledger.confirmed_capacity, 6)
        self.assertEqual(ledger.rac_capacity, 4)
        self.assertEqual(ledger.waiting_list_capacity, 3)
        self.assertEqual(Berth.objects.count(), 8)

    def test_setup_berths_command(self):
        out = StringIO()
        call_command('setup_berths', '--confirmed', '3', '--rac-berths', '1', '--waiting-list', '2', stdout=out)

        self.assertEqual(Berth.objects.count(), 4)
        self.assertIn('Berth inventory created', out.getvalue())

        call_command('setup_berths', '--reset', '--confirmed', '6', '--rac-berths', '1', stdout=out)
        self.assertEqual(Berth.objects.count(), 7)
        self.assertEqual(TierLedger.objects.get().confirmed_capacity, 6)


# =============================================================================
# UNIT TESTS - Berth occupancy
# =============================================================================

class BerthOccupancyTests(TestCase):
    """Test occupant bookkeeping on standard and shared berths."""

    def setUp(self):
        initialize_inventory(confirmed_berths=3, rac_berths=1, waiting_list_size=1)
        self.standard = Berth.objects.get(berth_number=1)
        self.side_lower = Berth.objects.get(berth_number=4)

    def test_standard_berth_hosts_one_passenger(self):
        self.standard.occupy()
        self.standard.refresh_from_db()

        self.assertTrue(self.standard.is_allocated)
        self.assertEqual(self.standard.occupant_count, 1)
        with self.assertRaises(LedgerIntegrityError):
            self.standard.occupy()

    def test_side_lower_berth_flagged_when_full(self):
        self.assertEqual(self.side_lower.capacity, 2)

        self.side_lower.occupy()
        self.assertFalse(self.side_lower.is_allocated)

        self.side_lower.occupy()
        self.assertTrue(self.side_lower.is_allocated)

        with self.assertRaises(LedgerIntegrityError):
            self.side_lower.occupy()

    def test_shared_berth_stays_allocated_for_remaining_occupant(self):
        self.side_lower.occupy()
        self.side_lower.occupy()

        self.side_lower.release()
        self.side_lower.refresh_from_db()
        self.assertEqual(self.side_lower.occupant_count, 1)
        self.assertTrue(self.side_lower.is_allocated)

        self.side_lower.release()
        self.side_lower.refresh_from_db()
        self.assertEqual(self.side_lower.occupant_count, 0)
        self.assertFalse(self.side_lower.is_allocated)

    def test_release_empty_berth_rejected(self):
        with self.assertRaises(LedgerIntegrityError):
            self.standard.release()


# =============================================================================
# UNIT TESTS - Berth selection
# =============================================================================

class BerthSelectionTests(TestCase):
    """Test the priority rule and RAC slot selection."""

    def setUp(self):
        initialize_inventory(confirmed_berths=6, rac_berths=2, waiting_list_size=1)

    def test_regular_passenger_gets_lowest_free_berth(self):
        self.assertEqual(find_standard_berth().berth_number, 1)

        Berth.objects.filter(berth_number=1).update(is_allocated=True, occupant_count=1)
        self.assertEqual(find_standard_berth().berth_number, 2)

    def test_priority_passenger_gets_lowest_free_lower_berth(self):
        Berth.objects.filter(berth_number=1).update(is_allocated=True, occupant_count=1)

        berth = find_standard_berth(prefer_lower=True)
        self.assertEqual(berth.berth_number, 4)
        self.assertEqual(berth.berth_type, Berth.BerthType.LOWER)

    def test_priority_passenger_falls_back_when_no_lower_berth(self):
        Berth.objects.filter(berth_number__in=[1, 2, 4]).update(is_allocated=True, occupant_count=1)

        self.assertEqual(find_standard_berth(prefer_lower=True).berth_number, 3)

    def test_no_standard_berth_left(self):
        Berth.objects.filter(berth_type__in=Berth.STANDARD_TYPES).update(is_allocated=True, occupant_count=1)

        self.assertIsNone(find_standard_berth())
        self.assertIsNone(find_standard_berth(prefer_lower=True))

    def test_rac_berth_filled_before_next_one(self):
        self.assertEqual(find_rac_berth().berth_number, 7)

        Berth.objects.filter(berth_number=7).update(occupant_count=1)
        self.assertEqual(find_rac_berth().berth_number, 7)

        Berth.objects.filter(berth_number=7).update(occupant_count=2, is_allocated=True)
        self.assertEqual(find_rac_berth().berth_number, 8)

        Berth.objects.filter(berth_number=8).update(occupant_count=2, is_allocated=True)
        self.assertIsNone(find_rac_berth())

    def test_rac_selection_keys_off_occupant_count(self):
        """A shared berth with one remaining occupant still has a free slot."""
        Berth.objects.filter(berth_number=7).update(occupant_count=1, is_allocated=True)

        self.assertEqual(find_rac_berth().berth_number, 7)


# =============================================================================
# UNIT TESTS - Tier ledger
# =============================================================================

class CascadeRuleTests(TestCase):
    """Test which counter a cancellation gives back to."""

    def test_waiting_list_deficit_first(self):
        ledger = make_ledger(confirmed=(0, 3), rac=(0, 2), waiting=(1, 2))

        self.assertEqual(apply_cancellation_cascade(ledger), TierLedger.WAITING_LIST)
        self.assertEqual(ledger.available_waiting_list, 2)
        self.assertEqual(ledger.available_rac_berths, 0)

    def test_rac_when_waiting_list_empty(self):
        ledger = make_ledger(confirmed=(0, 3), rac=(1, 2), waiting=(2, 2))

        self.assertEqual(apply_cancellation_cascade(ledger), TierLedger.RAC)
        self.assertEqual(ledger.available_rac_berths, 2)

    def test_confirmed_when_lower_tiers_empty(self):
        ledger = make_ledger(confirmed=(1, 3), rac=(2, 2), waiting=(2, 2))

        self.assertEqual(apply_cancellation_cascade(ledger), TierLedger.CONFIRMED)
        self.assertEqual(ledger.available_confirmed_berths, 2)

    def test_nothing_booked_is_integrity_error(self):
        ledger = make_ledger(confirmed=(3, 3), rac=(2, 2), waiting=(2, 2))

        with self.assertRaises(LedgerIntegrityError):
            apply_cancellation_cascade(ledger)

    def test_take_from_empty_tier_rejected(self):
        ledger = make_ledger(rac=(0, 2))

        with self.assertRaises(LedgerIntegrityError):
            ledger.take(TierLedger.RAC)

    def test_running_numbers_follow_occupancy(self):
        ledger = make_ledger(rac=(0, 4), waiting=(1, 3))
        ledger.refresh_current_numbers()

        self.assertEqual(ledger.current_rac_number, 4)
        self.assertEqual(ledger.current_waiting_list_number, 2)
        self.assertEqual(ledger.next_number(TierLedger.WAITING_LIST), 3)


class LedgerPersistenceTests(TestCase):
    """Test locking and the optimistic version check."""

    def setUp(self):
        initialize_inventory(confirmed_berths=3, rac_berths=1, waiting_list_size=2)

    def test_lock_ledger_without_inventory(self):
        clear_inventory()

        with self.assertRaises(LedgerIntegrityError):
            lock_ledger()

    def test_save_ledger_bumps_version(self):
        ledger = lock_ledger()
        ledger.take(TierLedger.RAC)
        save_ledger(ledger)

        stored = TierLedger.objects.get()
        self.assertEqual(stored.version, 1)
        self.assertEqual(stored.available_rac_berths, 1)
        self.assertEqual(stored.current_rac_number, 1)
        self.assertEqual(ledger.version, 1)

    def test_stale_version_rejected(self):
        stale = TierLedger.objects.get()
        TierLedger.objects.filter(pk=stale.pk).update(version=5)

        stale.take(TierLedger.CONFIRMED)
        with self.assertRaises(LedgerConflictError):
            save_ledger(stale)

        stored = TierLedger.objects.get()
        self.assertEqual(stored.available_confirmed_berths, 3)
        self.assertEqual(stored.version, 5)


class RunSerializedTests(TestCase):
    """Test the retry loop around ledger conflicts."""

    def test_retries_after_conflict(self):
        calls = []

        def operation(value):
            calls.append(value)
            if len(calls) == 1:
                raise LedgerConflictError(0)
            return value * 2

        self.assertEqual(run_serialized(operation, 21), 42)
        self.assertEqual(len(calls), 2)

    @override_settings(RAILWAY_RESERVATION={'LEDGER_RETRY_ATTEMPTS': 2})
    def test_gives_up_after_configured_attempts(self):
        calls = []

        def operation():
            calls.append(1)
            raise LedgerConflictError(0)

        with self.assertRaises(LedgerConflictError):
            run_serialized(operation)
        self.assertEqual(len(calls), 2)

    def test_other_errors_not_retried(self):
        calls = []

        def operation():
            calls.append(1)
            raise LedgerIntegrityError('diverged')

        with self.assertRaises(LedgerIntegrityError):
            run_serialized(operation)
        self.assertEqual(len(calls), 1)

    def test_failed_attempt_rolled_back(self):
        initialize_inventory(confirmed_berths=3, rac_berths=1, waiting_list_size=1)

        def operation():
            Berth.objects.filter(berth_number=1).update(is_allocated=True, occupant_count=1)
            raise LedgerIntegrityError('diverged')

        with self.assertRaises(LedgerIntegrityError):
            run_serialized(operation)
        self.assertFalse(Berth.objects.get(berth_number=1).is_allocated)


@patch('berths.services.time.sleep')
class RunSerializedLockTests(TransactionTestCase):
    """Test the retry loop around a locked database."""

    def test_locked_database_retried(self, sleep):
        calls = []

        def operation():
            calls.append(1)
            if len(calls) < 3:
                raise OperationalError('database table is locked')
            return 'booked'

        self.assertEqual(run_serialized(operation), 'booked')
        self.assertEqual(len(calls), 3)
        self.assertEqual(sleep.call_count, 2)

    def test_other_operational_errors_not_retried(self, sleep):
        calls = []

        def operation():
            calls.append(1)
            raise OperationalError('no such table: berths_tier_ledger')

        with self.assertRaises(OperationalError):
            run_serialized(operation)
        self.assertEqual(len(calls), 1)
        sleep.assert_not_called()

    @override_settings(RAILWAY_RESERVATION={'LOCK_WAIT_TIMEOUT': 0})
    def test_gives_up_when_lock_outlasts_timeout(self, sleep):
        def operation():
            raise OperationalError('database is locked')

        with self.assertRaises(LedgerBusyError):
            run_serialized(operation)

    def test_lock_inside_outer_transaction_not_retried(self, sleep):
        calls = []

        def operation():
            calls.append(1)
            raise OperationalError('database is locked')

        with self.assertRaises(OperationalError):
            with transaction.atomic():
                run_serialized(operation)
        self.assertEqual(len(calls), 1)
        sleep.assert_not_called()


# =============================================================================
# UNIT TESTS - Availability
# =============================================================================

class AvailabilityTests(TestCase):
    """Test the availability snapshot."""

    def test_fresh_inventory(self):
        initialize_inventory(confirmed_berths=3, rac_berths=1, waiting_list_size=2)

        availability = get_availability()
        self.assertEqual(availability['confirmed'], {
            'total': 3, 'booked': 0, 'available': 3, 'status': 'AVAILABLE'
        })
        self.assertEqual(availability['rac']['total'], 2)
        self.assertEqual(availability['overall']['status'], 'CONFIRMED_AVAILABLE')

    def test_overall_status_moves_down_the_ladder(self):
        initialize_inventory(confirmed_berths=3, rac_berths=1, waiting_list_size=2)
        TierLedger.objects.update(available_confirmed_berths=0)
        self.assertEqual(get_availability()['overall']['status'], 'RAC_AVAILABLE')
        self.assertEqual(get_availability()['confirmed']['status'], 'FULL')

        TierLedger.objects.update(available_rac_berths=0)
        self.assertEqual(get_availability()['overall']['status'], 'WAITING_LIST_AVAILABLE')

        TierLedger.objects.update(available_waiting_list=0)
        availability = get_availability()
        self.assertEqual(availability['overall']['status'], 'FULL')
        self.assertEqual(availability['waiting_list']['booked'], 2)

    def test_missing_ledger(self):
        with self.assertRaises(LedgerIntegrityError):
            get_availability()
