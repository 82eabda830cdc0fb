"""
Comprehensive tests for tickets app.
Tests cover: PNR generation, Model constraints, Allocation tiers, Berth priority,
Cancellation and promotions, Ledger consistency, API endpoints, Concurrency scenarios.
"""
import random
import threading
from unittest.mock import patch

from django.db import DatabaseError, IntegrityError, connection, transaction
from django.db.models import Count
from django.test import TestCase, TransactionTestCase, override_settings
from rest_framework import status
from rest_framework.test import APIClient, APITestCase

from berths.exceptions import ConfirmationCodeCollisionError, LedgerIntegrityError
from berths.models import Berth, TierLedger
from berths.services import initialize_inventory
from tickets.allocation import NO_TICKETS_AVAILABLE, book_ticket
from tickets.models import Child, Passenger, Ticket, TicketStatus, _to_base36, generate_pnr
from tickets.promotion import Promotion, cancel_ticket, promotion_steps_for, promote_rac_to_confirmed
from tickets.serializers import TicketBookSerializer


def passenger(name='Arjun Mehta', age=30, gender='MALE'):
    return {'name': name, 'age': age, 'gender': gender}


def book(name, age=30, gender='MALE', children=None):
    """Book and return the ticket (None when rejected)."""
    return book_ticket(passenger(name, age, gender), children).ticket


def reload(ticket):
    return Ticket.objects.get(pk=ticket.pk)


class LedgerAssertionsMixin:
    """Checks that counters, tickets and berth occupancy agree."""

    def assertLedgerConsistent(self):
        ledger = TierLedger.objects.get()

        confirmed = Ticket.objects.filter(status=TicketStatus.CONFIRMED, berth__isnull=False).count()
        rac = Ticket.objects.filter(status=TicketStatus.RAC).count()
        waiting = Ticket.objects.filter(status=TicketStatus.WAITING_LIST).count()

        self.assertEqual(ledger.booked(TierLedger.CONFIRMED), confirmed)
        self.assertEqual(ledger.booked(TierLedger.RAC), rac)
        self.assertEqual(ledger.booked(TierLedger.WAITING_LIST), waiting)
        self.assertEqual(ledger.current_rac_number, rac)
        self.assertEqual(ledger.current_waiting_list_number, waiting)

        # Nobody waits in a lower tier while a higher one has room
        if waiting:
            self.assertEqual(ledger.available_rac_berths, 0)
        if rac:
            self.assertEqual(ledger.available_confirmed_berths, 0)

        for berth in Berth.objects.annotate(holders=Count('tickets')):
            self.assertEqual(berth.occupant_count, berth.holders, berth)
            self.assertLessEqual(berth.occupant_count, berth.capacity, berth)
            if berth.occupant_count == berth.capacity:
                self.assertTrue(berth.is_allocated, berth)
            if berth.occupant_count == 0:
                self.assertFalse(berth.is_allocated, berth)


# =============================================================================
# UNIT TESTS - Models
# =============================================================================

class PNRGenerationTests(TestCase):
    """Test PNR generation utility."""

    def test_pnr_length(self):
        """Test PNR is 10 characters."""
        self.assertEqual(len(generate_pnr()), 10)

    def test_pnr_alphanumeric_upper_case(self):
        pnr = generate_pnr()
        self.assertTrue(pnr.isalnum())
        self.assertEqual(pnr, pnr.upper())

    def test_pnr_uniqueness(self):
        """Test multiple PNR generations are unique."""
        pnrs = set(generate_pnr() for _ in range(100))
        self.assertEqual(len(pnrs), 100)

    def test_base36(self):
        self.assertEqual(_to_base36(0), '0')
        self.assertEqual(_to_base36(35), 'z')
        self.assertEqual(_to_base36(36), '10')
        self.assertEqual(_to_base36(1296), '100')


class TicketModelTests(TestCase):
    """Test Ticket model constraints and PNR assignment."""

    def setUp(self):
        initialize_inventory(confirmed_berths=3, rac_berths=1, waiting_list_size=2)
        self.passenger = Passenger.objects.create(name='Kavya Nair', age=24, gender='FEMALE')

    def test_pnr_assigned_on_save(self):
        ticket = Ticket.objects.create(
            passenger=self.passenger, status=TicketStatus.WAITING_LIST, waiting_list_number=1
        )
        self.assertEqual(len(ticket.pnr), 10)
        self.assertIn('PNR:', str(ticket))

    def test_colliding_pnr_regenerated(self):
        existing = book('Arjun Mehta')

        with patch('tickets.models.generate_pnr', side_effect=[existing.pnr, 'ZZZZ999999']):
            ticket = book('Vikram Singh')

        self.assertEqual(ticket.pnr, 'ZZZZ999999')

    def test_pnr_attempts_exhausted(self):
        existing = book('Arjun Mehta')
        ledger_before = TierLedger.objects.get()

        with patch('tickets.models.generate_pnr', return_value=existing.pnr):
            with self.assertRaises(ConfirmationCodeCollisionError):
                book('Vikram Singh')

        # The whole booking was rolled back
        ledger_after = TierLedger.objects.get()
        self.assertEqual(ledger_after.available_confirmed_berths, ledger_before.available_confirmed_berths)
        self.assertEqual(ledger_after.version, ledger_before.version)
        self.assertEqual(Ticket.objects.count(), 1)
        self.assertFalse(Passenger.objects.filter(name='Vikram Singh').exists())

    def test_waiting_list_ticket_requires_number(self):
        with self.assertRaises(IntegrityError), transaction.atomic():
            Ticket.objects.create(passenger=self.passenger, status=TicketStatus.WAITING_LIST)

    def test_rac_ticket_requires_berth(self):
        with self.assertRaises(IntegrityError), transaction.atomic():
            Ticket.objects.create(passenger=self.passenger, status=TicketStatus.RAC, rac_number=1)

    def test_confirmed_ticket_cannot_carry_queue_number(self):
        berth = Berth.objects.get(berth_number=1)
        with self.assertRaises(IntegrityError), transaction.atomic():
            Ticket.objects.create(
                passenger=self.passenger, status=TicketStatus.CONFIRMED, berth=berth, waiting_list_number=1
            )


class PassengerModelTests(TestCase):
    """Test passenger priority inputs."""

    def test_needs_berth(self):
        self.assertFalse(Passenger(name='Anaya', age=4, gender='FEMALE').needs_berth)
        self.assertTrue(Passenger(name='Rohan', age=5, gender='MALE').needs_berth)

    def test_prefers_lower_berth(self):
        self.assertTrue(Passenger(name='Ramesh', age=60, gender='MALE').prefers_lower_berth)
        self.assertTrue(
            Passenger(name='Priya', age=31, gender='FEMALE', has_child_under_five=True).prefers_lower_berth
        )
        self.assertFalse(Passenger(name='Priya', age=31, gender='FEMALE').prefers_lower_berth)
        self.assertFalse(
            Passenger(name='Arjun', age=31, gender='MALE', has_child_under_five=True).prefers_lower_berth
        )


# =============================================================================
# UNIT TESTS - Allocation engine
# =============================================================================

class BookingTierTests(LedgerAssertionsMixin, TestCase):
    """Test that bookings walk down the ladder."""

    def setUp(self):
        initialize_inventory(confirmed_berths=1, rac_berths=1, waiting_list_size=1)

    def test_tiers_fill_in_order(self):
        first = book('Passenger A')
        self.assertEqual(first.status, TicketStatus.CONFIRMED)
        self.assertEqual(first.berth.berth_number, 1)
        self.assertIsNone(first.rac_number)

        second = book('Passenger B')
        self.assertEqual(second.status, TicketStatus.RAC)
        self.assertEqual(second.rac_number, 1)
        self.assertEqual(second.berth.berth_number, 2)
        self.assertFalse(Berth.objects.get(berth_number=2).is_allocated)

        third = book('Passenger C')
        self.assertEqual(third.status, TicketStatus.RAC)
        self.assertEqual(third.rac_number, 2)
        self.assertEqual(third.berth.berth_number, 2)
        self.assertTrue(Berth.objects.get(berth_number=2).is_allocated)

        fourth = book('Passenger D')
        self.assertEqual(fourth.status, TicketStatus.WAITING_LIST)
        self.assertEqual(fourth.waiting_list_number, 1)
        self.assertIsNone(fourth.berth)

        self.assertLedgerConsistent()

    def test_rejection_changes_nothing(self):
        for name in ['A', 'B', 'C', 'D']:
            book(f'Passenger {name}')
        ledger_before = TierLedger.objects.get()

        result = book_ticket(passenger('Passenger E'))

        self.assertFalse(result.success)
        self.assertEqual(result.reason, NO_TICKETS_AVAILABLE)
        self.assertIsNone(result.ticket)
        ledger_after = TierLedger.objects.get()
        self.assertEqual(ledger_after.version, ledger_before.version)
        self.assertEqual(Passenger.objects.count(), 4)
        self.assertEqual(Ticket.objects.count(), 4)

    def test_children_stored_with_parent(self):
        ticket = book_ticket(
            passenger('Priya Sharma', 31, 'FEMALE'),
            [{'name': 'Anaya Sharma', 'age': 3, 'gender': 'FEMALE'}]
        ).ticket

        self.assertTrue(ticket.passenger.has_child_under_five)
        self.assertEqual(list(ticket.passenger.children.values_list('name', flat=True)), ['Anaya Sharma'])


class BerthPriorityTests(LedgerAssertionsMixin, TestCase):
    """Test lower berth priority for seniors and women with small children."""

    def setUp(self):
        initialize_inventory(confirmed_berths=6, rac_berths=1, waiting_list_size=1)

    def test_priority_passengers_get_lower_berths(self):
        regular = book('Arjun Mehta')
        senior = book('Ramesh Iyer', age=67)
        next_regular = book('Kavya Nair', gender='FEMALE')
        mother = book_ticket(
            passenger('Priya Sharma', 31, 'FEMALE'),
            [{'name': 'Anaya Sharma', 'age': 3, 'gender': 'FEMALE'}]
        ).ticket

        self.assertEqual(regular.berth.berth_number, 1)
        self.assertEqual(senior.berth.berth_number, 4)
        self.assertEqual(senior.berth.berth_type, Berth.BerthType.LOWER)
        self.assertEqual(next_regular.berth.berth_number, 2)
        # Both lower berths are taken, so the lowest free berth is used
        self.assertEqual(mother.berth.berth_number, 3)
        self.assertLedgerConsistent()

    def test_senior_round_trip(self):
        ticket = book('Meera Das', age=61, gender='FEMALE')

        self.assertEqual(ticket.status, TicketStatus.CONFIRMED)
        self.assertEqual(ticket.berth.berth_type, Berth.BerthType.LOWER)

        cancel_ticket(ticket.pnr)

        self.assertFalse(Berth.objects.get(pk=ticket.berth_id).is_allocated)
        self.assertEqual(TierLedger.objects.get().available_confirmed_berths, 6)
        self.assertLedgerConsistent()

    def test_woman_without_child_not_prioritised(self):
        book('Arjun Mehta')
        ticket = book('Kavya Nair', age=24, gender='FEMALE')

        self.assertEqual(ticket.berth.berth_number, 2)


class MinorBookingTests(LedgerAssertionsMixin, TestCase):
    """Test passengers under the child age limit."""

    def setUp(self):
        initialize_inventory(confirmed_berths=1, rac_berths=1, waiting_list_size=1)

    def test_minor_confirmed_without_berth(self):
        ticket = book('Rohan Das', age=4)

        self.assertEqual(ticket.status, TicketStatus.CONFIRMED)
        self.assertIsNone(ticket.berth)
        self.assertFalse(ticket.holds_capacity)
        ledger = TierLedger.objects.get()
        self.assertEqual(ledger.available_confirmed_berths, 1)
        self.assertEqual(ledger.version, 0)
        self.assertLedgerConsistent()

    def test_minor_booked_when_coach_full(self):
        for name in ['A', 'B', 'C', 'D']:
            book(f'Passenger {name}')

        ticket = book('Rohan Das', age=2)
        self.assertEqual(ticket.status, TicketStatus.CONFIRMED)

    def test_cancelling_minor_frees_nothing(self):
        book('Passenger A')
        rac = book('Passenger B')
        minor = book('Rohan Das', age=4)
        version = TierLedger.objects.get().version

        result = cancel_ticket(minor.pnr)

        self.assertTrue(result.found)
        self.assertEqual(result.promotions, [])
        self.assertEqual(reload(rac).status, TicketStatus.RAC)
        self.assertEqual(TierLedger.objects.get().version, version)
        self.assertLedgerConsistent()


class AllocationIntegrityTests(TestCase):
    """Test that a ledger/pool divergence fails loudly and rolls back."""

    def test_no_free_berth_despite_confirmed_counter(self):
        initialize_inventory(confirmed_berths=2, rac_berths=1, waiting_list_size=1)
        Berth.objects.filter(berth_type__in=Berth.STANDARD_TYPES).update(is_allocated=True, occupant_count=1)

        with self.assertRaises(LedgerIntegrityError):
            book('Arjun Mehta')

        ledger = TierLedger.objects.get()
        self.assertEqual(ledger.available_confirmed_berths, 2)
        self.assertEqual(ledger.available_rac_berths, 2)
        self.assertFalse(Passenger.objects.exists())

    def test_no_rac_slot_despite_rac_counter(self):
        initialize_inventory(confirmed_berths=0, rac_berths=1, waiting_list_size=1)
        Berth.objects.filter(berth_type=Berth.BerthType.SIDE_LOWER).update(is_allocated=True, occupant_count=2)

        with self.assertRaises(LedgerIntegrityError):
            book('Arjun Mehta')

        ledger = TierLedger.objects.get()
        self.assertEqual(ledger.available_rac_berths, 2)
        self.assertEqual(ledger.available_waiting_list, 1)
        self.assertFalse(Ticket.objects.exists())

    def test_booking_without_inventory(self):
        with self.assertRaises(LedgerIntegrityError):
            book('Arjun Mehta')


# =============================================================================
# UNIT TESTS - Promotion engine
# =============================================================================

class CancellationTests(LedgerAssertionsMixin, TestCase):
    """Test cancellation, promotions and the counter cascade."""

    def setUp(self):
        initialize_inventory(confirmed_berths=1, rac_berths=1, waiting_list_size=2)

    def test_unknown_pnr(self):
        book('Passenger A')
        version = TierLedger.objects.get().version

        result = cancel_ticket('NOSUCHPNR0')

        self.assertFalse(result.found)
        self.assertFalse(result.success)
        self.assertEqual(TierLedger.objects.get().version, version)
        self.assertEqual(Ticket.objects.count(), 1)

    def test_cancel_confirmed_promotes_through_the_ladder(self):
        a = book('Passenger A')
        b = book('Passenger B')
        c = book('Passenger C')
        d = book('Passenger D')
        e = book('Passenger E')

        result = cancel_ticket(a.pnr)

        self.assertEqual(result.promotions, [
            Promotion(b.pnr, TicketStatus.RAC, TicketStatus.CONFIRMED),
            Promotion(d.pnr, TicketStatus.WAITING_LIST, TicketStatus.RAC),
        ])

        b = reload(b)
        self.assertEqual(b.status, TicketStatus.CONFIRMED)
        self.assertEqual(b.berth.berth_number, 1)
        self.assertIsNone(b.rac_number)

        d = reload(d)
        self.assertEqual(d.status, TicketStatus.RAC)
        self.assertEqual(d.rac_number, 3)
        self.assertEqual(d.berth.berth_number, 2)
        self.assertIsNone(d.waiting_list_number)

        self.assertEqual(reload(c).rac_number, 2)
        self.assertEqual(reload(e).waiting_list_number, 2)
        self.assertTrue(Berth.objects.get(berth_number=2).is_allocated)

        ledger = TierLedger.objects.get()
        self.assertEqual(ledger.available_confirmed_berths, 0)
        self.assertEqual(ledger.available_rac_berths, 0)
        self.assertEqual(ledger.available_waiting_list, 1)
        self.assertFalse(Ticket.objects.filter(pnr=a.pnr).exists())
        self.assertLedgerConsistent()

    def test_cancel_confirmed_without_rac(self):
        a = book('Passenger A')

        result = cancel_ticket(a.pnr)

        self.assertEqual(result.promotions, [])
        ledger = TierLedger.objects.get()
        self.assertEqual(ledger.available_confirmed_berths, 1)
        self.assertFalse(Berth.objects.get(berth_number=1).is_allocated)
        self.assertEqual(book('Passenger B').berth.berth_number, 1)
        self.assertLedgerConsistent()

    def test_cancel_confirmed_with_rac_but_no_waiting_list(self):
        a = book('Passenger A')
        b = book('Passenger B')

        cancel_ticket(a.pnr)

        self.assertEqual(reload(b).status, TicketStatus.CONFIRMED)
        berth = Berth.objects.get(berth_number=2)
        self.assertEqual(berth.occupant_count, 0)
        self.assertFalse(berth.is_allocated)
        ledger = TierLedger.objects.get()
        self.assertEqual(ledger.available_confirmed_berths, 0)
        self.assertEqual(ledger.available_rac_berths, 2)
        self.assertLedgerConsistent()

    def test_cancel_rac_keeps_shared_berth_for_other_occupant(self):
        book('Passenger A')
        b = book('Passenger B')
        c = book('Passenger C')

        result = cancel_ticket(b.pnr)

        self.assertEqual(result.promotions, [])
        berth = Berth.objects.get(berth_number=2)
        self.assertEqual(berth.occupant_count, 1)
        self.assertTrue(berth.is_allocated)
        self.assertEqual(reload(c).rac_number, 2)
        self.assertEqual(TierLedger.objects.get().available_rac_berths, 1)
        self.assertLedgerConsistent()

    def test_cancel_waiting_list(self):
        for name in ['A', 'B', 'C']:
            book(f'Passenger {name}')
        d = book('Passenger D')
        e = book('Passenger E')

        result = cancel_ticket(d.pnr)

        self.assertEqual(result.promotions, [])
        self.assertEqual(reload(e).waiting_list_number, 2)
        ledger = TierLedger.objects.get()
        self.assertEqual(ledger.available_waiting_list, 1)
        self.assertEqual(ledger.current_waiting_list_number, 1)
        self.assertLedgerConsistent()

    def test_pnr_lookup_is_case_insensitive(self):
        a = book('Passenger A')

        result = cancel_ticket(f'  {a.pnr.lower()} ')

        self.assertTrue(result.found)
        self.assertEqual(result.pnr, a.pnr)

    def test_passenger_and_children_removed(self):
        ticket = book_ticket(
            passenger('Priya Sharma', 31, 'FEMALE'),
            [{'name': 'Anaya Sharma', 'age': 3, 'gender': 'FEMALE'}]
        ).ticket

        cancel_ticket(ticket.pnr)

        self.assertFalse(Passenger.objects.exists())
        self.assertFalse(Child.objects.exists())

    def test_promotion_steps_per_tier(self):
        self.assertEqual(len(promotion_steps_for(TicketStatus.CONFIRMED)), 2)
        self.assertEqual(len(promotion_steps_for(TicketStatus.RAC)), 1)
        self.assertEqual(promotion_steps_for(TicketStatus.WAITING_LIST), [])

    def test_promotion_without_free_berth_is_skipped(self):
        book('Passenger A')
        b = book('Passenger B')

        # Every standard berth is taken, so the RAC ticket stays where it is
        self.assertIsNone(promote_rac_to_confirmed())
        self.assertEqual(reload(b).status, TicketStatus.RAC)


class ScenarioTests(LedgerAssertionsMixin, TestCase):
    """End-to-end sequences on tiny coaches."""

    def test_waiting_list_promoted_past_highest_rac_number(self):
        initialize_inventory(confirmed_berths=0, rac_berths=1, waiting_list_size=1)

        a = book('Passenger A')
        self.assertEqual((a.status, a.rac_number), (TicketStatus.RAC, 1))
        self.assertFalse(Berth.objects.get().is_allocated)

        b = book('Passenger B')
        self.assertEqual((b.status, b.rac_number), (TicketStatus.RAC, 2))
        self.assertTrue(Berth.objects.get().is_allocated)

        c = book('Passenger C')
        self.assertEqual((c.status, c.waiting_list_number), (TicketStatus.WAITING_LIST, 1))

        cancel_ticket(a.pnr)

        c = reload(c)
        self.assertEqual(c.status, TicketStatus.RAC)
        self.assertEqual(c.rac_number, 3)
        berth = Berth.objects.get()
        self.assertEqual(berth.occupant_count, 2)
        self.assertTrue(berth.is_allocated)
        self.assertLedgerConsistent()

    def test_waiting_number_never_reused_while_held(self):
        initialize_inventory(confirmed_berths=0, rac_berths=1, waiting_list_size=2)
        book('Passenger A')
        b = book('Passenger B')
        book('Passenger C')
        d = book('Passenger D')

        cancel_ticket(b.pnr)
        e = book('Passenger E')

        self.assertEqual(reload(d).waiting_list_number, 2)
        self.assertEqual(e.status, TicketStatus.WAITING_LIST)
        self.assertEqual(e.waiting_list_number, 3)
        self.assertLedgerConsistent()

    def test_rac_number_never_reused_while_held(self):
        initialize_inventory(confirmed_berths=0, rac_berths=1, waiting_list_size=0)
        a = book('Passenger A')
        b = book('Passenger B')

        cancel_ticket(a.pnr)
        c = book('Passenger C')

        self.assertEqual(reload(b).rac_number, 2)
        self.assertEqual(c.status, TicketStatus.RAC)
        self.assertEqual(c.rac_number, 3)
        self.assertLedgerConsistent()

    def test_new_rac_booking_queued_behind_promoted_ticket(self):
        initialize_inventory(confirmed_berths=0, rac_berths=1, waiting_list_size=1)
        a = book('Passenger A')
        b = book('Passenger B')
        c = book('Passenger C')

        cancel_ticket(b.pnr)
        self.assertEqual(reload(c).rac_number, 3)
        cancel_ticket(a.pnr)
        d = book('Passenger D')

        self.assertEqual(d.status, TicketStatus.RAC)
        self.assertEqual(d.rac_number, 4)
        self.assertGreater(d.rac_number, reload(c).rac_number)
        self.assertLedgerConsistent()

    def test_new_waiting_list_booking_queued_behind_oldest(self):
        initialize_inventory(confirmed_berths=0, rac_berths=0, waiting_list_size=3)
        w1 = book('Passenger W1')
        w2 = book('Passenger W2')
        w3 = book('Passenger W3')

        cancel_ticket(w1.pnr)
        cancel_ticket(w2.pnr)
        w4 = book('Passenger W4')

        self.assertEqual(reload(w3).waiting_list_number, 3)
        self.assertEqual(w4.status, TicketStatus.WAITING_LIST)
        self.assertEqual(w4.waiting_list_number, 4)
        self.assertLedgerConsistent()

    def test_queue_numbers_restart_when_queue_drains(self):
        initialize_inventory(confirmed_berths=0, rac_berths=1, waiting_list_size=1)
        a = book('Passenger A')
        cancel_ticket(a.pnr)

        self.assertEqual(book('Passenger B').rac_number, 1)


class RandomizedSequenceTests(LedgerAssertionsMixin, TestCase):
    """Random bookings and cancellations never let counters and berths drift apart."""

    def test_random_sequence_keeps_ledger_consistent(self):
        initialize_inventory(confirmed_berths=4, rac_berths=2, waiting_list_size=3)
        rng = random.Random(20240611)
        active = []

        for step in range(120):
            if active and rng.random() < 0.4:
                pnr = active.pop(rng.randrange(len(active)))
                self.assertTrue(cancel_ticket(pnr).found)
            else:
                age = rng.choice([2, 25, 34, 61, 70])
                gender = rng.choice(['MALE', 'FEMALE', 'OTHER'])
                children = []
                if gender == 'FEMALE' and age < 60 and age >= 5 and rng.random() < 0.5:
                    children = [{'name': f'Child {step}', 'age': rng.randrange(5), 'gender': 'MALE'}]
                result = book_ticket(passenger(f'Passenger {step}', age, gender), children)
                if result.success:
                    active.append(result.ticket.pnr)

            self.assertLedgerConsistent()

        self.assertEqual(Ticket.objects.count(), len(active))


# =============================================================================
# SERIALIZER TESTS
# =============================================================================

class TicketBookSerializerTests(TestCase):
    """Test booking request validation."""

    def test_children_set_the_flag(self):
        serializer = TicketBookSerializer(data={
            'passenger': passenger('Priya Sharma', 31, 'FEMALE'),
            'children': [{'name': 'Anaya Sharma', 'age': 3, 'gender': 'FEMALE'}]
        })

        self.assertTrue(serializer.is_valid(), serializer.errors)
        self.assertTrue(serializer.validated_data['passenger']['has_child_under_five'])

    def test_flag_without_children_rejected(self):
        data = passenger('Priya Sharma', 31, 'FEMALE')
        data['has_child_under_five'] = True
        serializer = TicketBookSerializer(data={'passenger': data})

        self.assertFalse(serializer.is_valid())
        self.assertIn('children', serializer.errors)

    def test_child_over_age_limit_rejected(self):
        serializer = TicketBookSerializer(data={
            'passenger': passenger('Priya Sharma', 31, 'FEMALE'),
            'children': [{'name': 'Rohan Sharma', 'age': 5, 'gender': 'MALE'}]
        })

        self.assertFalse(serializer.is_valid())
        self.assertIn('children', serializer.errors)

    def test_passenger_fields_validated(self):
        serializer = TicketBookSerializer(data={
            'passenger': {'name': 'A', 'age': 121, 'gender': 'M'}
        })

        self.assertFalse(serializer.is_valid())
        errors = serializer.errors['passenger']
        self.assertIn('name', errors)
        self.assertIn('age', errors)
        self.assertIn('gender', errors)


# =============================================================================
# API TESTS
# =============================================================================

@override_settings(MONGODB_ENABLED=False)
class TicketAPITests(APITestCase):
    """Test ticket API endpoints."""

    def setUp(self):
        initialize_inventory(confirmed_berths=1, rac_berths=1, waiting_list_size=1)

    def post_booking(self, name='Arjun Mehta', age=30, gender='MALE', children=None):
        data = {'passenger': passenger(name, age, gender)}
        if children is not None:
            data['children'] = children
        return self.client.post('/api/v1/tickets/book/', data, format='json')

    def test_book_ticket_success(self):
        response = self.post_booking()

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['message'], 'Ticket booked successfully')
        ticket = response.data['ticket']
        self.assertEqual(len(ticket['pnr']), 10)
        self.assertEqual(ticket['status'], 'CONFIRMED')
        self.assertEqual(ticket['berth'], {'berth_number': 1, 'berth_type': 'LOWER'})
        self.assertIsNone(ticket['rac_number'])
        self.assertIsNone(ticket['waiting_list_number'])
        self.assertEqual(ticket['passenger']['name'], 'Arjun Mehta')
        self.assertEqual(ticket['children'], [])

    def test_book_with_children(self):
        response = self.post_booking(
            'Priya Sharma', 31, 'FEMALE',
            children=[{'name': 'Anaya Sharma', 'age': 3, 'gender': 'FEMALE'}]
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        ticket = response.data['ticket']
        self.assertTrue(ticket['passenger']['has_child_under_five'])
        self.assertEqual(ticket['children'], [{'name': 'Anaya Sharma', 'age': 3, 'gender': 'FEMALE'}])

    def test_book_invalid_payload(self):
        response = self.client.post('/api/v1/tickets/book/', {'passenger': {'name': 'X'}}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('passenger', response.data)
        self.assertFalse(Ticket.objects.exists())

    def test_book_when_full(self):
        for i in range(4):
            self.assertEqual(self.post_booking(f'Passenger {i}').status_code, status.HTTP_201_CREATED)

        response = self.post_booking('Passenger Late')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data, {'error': 'No tickets available'})

    def test_book_without_inventory_is_server_error(self):
        TierLedger.objects.all().delete()

        response = self.post_booking()

        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertIn('error', response.data)

    @patch('tickets.serializers.book_ticket', side_effect=DatabaseError('disk I/O error'))
    def test_book_database_error_is_json_server_error(self, mock_book):
        response = self.post_booking()

        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.data, {'error': 'Booking failed, please try again.'})

    @patch('tickets.views.cancel_ticket', side_effect=DatabaseError('database is locked'))
    def test_cancel_database_error_is_json_server_error(self, mock_cancel):
        response = self.client.post('/api/v1/tickets/cancel/ABCDEFGHIJ/')

        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.data, {'error': 'Cancellation failed, please try again.'})

    def test_cancel_ticket(self):
        pnr = self.post_booking().data['ticket']['pnr']

        response = self.client.post(f'/api/v1/tickets/cancel/{pnr}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data, {'message': 'Ticket cancelled successfully', 'pnr': pnr})

        response = self.client.post(f'/api/v1/tickets/cancel/{pnr}/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_get_ticket_by_pnr(self):
        pnr = self.post_booking().data['ticket']['pnr']

        response = self.client.get(f'/api/v1/tickets/{pnr.lower()}/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['pnr'], pnr)

    def test_get_unknown_ticket(self):
        response = self.client.get('/api/v1/tickets/NOSUCHPNR0/')

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data, {'error': 'Ticket not found'})

    def test_booked_tickets_grouped_in_queue_order(self):
        adult = self.post_booking('Passenger A').data['ticket']['pnr']
        minor = self.post_booking('Rohan Das', age=3).data['ticket']['pnr']
        rac_first = self.post_booking('Passenger B').data['ticket']['pnr']
        rac_second = self.post_booking('Passenger C').data['ticket']['pnr']
        waiting = self.post_booking('Passenger D').data['ticket']['pnr']

        response = self.client.get('/api/v1/tickets/booked/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['summary'], {'total': 5, 'confirmed': 2, 'rac': 2, 'waiting_list': 1})
        tickets = response.data['tickets']
        self.assertEqual([t['pnr'] for t in tickets['confirmed']], [minor, adult])
        self.assertIsNone(tickets['confirmed'][0]['berth'])
        self.assertEqual([t['pnr'] for t in tickets['rac']], [rac_first, rac_second])
        self.assertEqual([t['pnr'] for t in tickets['waiting_list']], [waiting])

    def test_availability(self):
        self.post_booking()

        response = self.client.get('/api/v1/tickets/available/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['confirmed'], {
            'total': 1, 'booked': 1, 'available': 0, 'status': 'FULL'
        })
        self.assertEqual(response.data['rac']['available'], 2)
        self.assertEqual(response.data['waiting_list']['total'], 1)
        self.assertEqual(response.data['overall'], {'status': 'RAC_AVAILABLE'})

    def test_health_and_index(self):
        self.assertEqual(self.client.get('/health/').json(), {'status': 'ok'})

        response = self.client.get('/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('endpoints', response.json())


# =============================================================================
# CONCURRENCY TESTS
# =============================================================================

class BookingConcurrencyTests(LedgerAssertionsMixin, TransactionTestCase):
    """
    Test booking concurrency scenarios.
    Uses TransactionTestCase for proper transaction isolation. Runs on SQLite
    too, where units of work queue on the database write lock.
    """

    def setUp(self):
        initialize_inventory(confirmed_berths=2, rac_berths=1, waiting_list_size=1)

    def test_concurrent_bookings_dont_oversell(self):
        results = []
        errors = []

        def make_booking(index):
            try:
                results.append(book_ticket(passenger(f'Passenger {index}')))
            except Exception as e:
                errors.append(e)
            finally:
                connection.close()

        threads = [threading.Thread(target=make_booking, args=(i,)) for i in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        self.assertEqual(len([r for r in results if r.success]), 5)
        self.assertEqual(len([r for r in results if not r.success]), 3)
        self.assertLedgerConsistent()

    def test_concurrent_cancellations_promote_once(self):
        tickets = [book(f'Passenger {i}') for i in range(5)]
        errors = []

        def cancel(pnr):
            try:
                cancel_ticket(pnr)
            except Exception as e:
                errors.append(e)
            finally:
                connection.close()

        threads = [threading.Thread(target=cancel, args=(t.pnr,)) for t in tickets[:2]]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        self.assertEqual(Ticket.objects.filter(status=TicketStatus.CONFIRMED).count(), 2)
        self.assertLedgerConsistent()


@override_settings(MONGODB_ENABLED=False)
class BookingAPIConcurrencyTests(LedgerAssertionsMixin, TransactionTestCase):
    """Concurrent requests against the booking endpoint."""

    def setUp(self):
        initialize_inventory(confirmed_berths=2, rac_berths=1, waiting_list_size=1)

    def test_concurrent_book_requests_never_fail(self):
        status_codes = []
        errors = []

        def post_booking(index):
            try:
                response = APIClient().post(
                    '/api/v1/tickets/book/',
                    {'passenger': passenger(f'Passenger {index}')},
                    format='json'
                )
                status_codes.append(response.status_code)
            except Exception as e:
                errors.append(e)
            finally:
                connection.close()

        threads = [threading.Thread(target=post_booking, args=(i,)) for i in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        self.assertEqual(sorted(status_codes), [201] * 5 + [400] * 3)
        self.assertEqual(Ticket.objects.count(), 5)
        self.assertLedgerConsistent()
