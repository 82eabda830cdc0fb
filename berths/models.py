"""
Berth inventory and tier ledger models.
"""
from django.db import models

from .exceptions import LedgerIntegrityError
from .limits import get_limit


class Berth(models.Model):
    """
    A physical berth in the coach (fixed inventory).
    Maps to the 'berths' table.

    Standard berths host one passenger. SIDE_LOWER berths are the RAC berths
    and are shared by up to RAC_PASSENGERS_PER_BERTH passengers.
    """

    class BerthType(models.TextChoices):
        LOWER = 'LOWER', 'Lower'
        MIDDLE = 'MIDDLE', 'Middle'
        UPPER = 'UPPER', 'Upper'
        SIDE_LOWER = 'SIDE_LOWER', 'Side lower'

    STANDARD_TYPES = [BerthType.LOWER, BerthType.MIDDLE, BerthType.UPPER]

    berth_number = models.PositiveSmallIntegerField(unique=True)
    berth_type = models.CharField(max_length=10, choices=BerthType.choices)
    is_allocated = models.BooleanField(default=False)
    occupant_count = models.PositiveSmallIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'berths'
        ordering = ['berth_number']
        indexes = [
            models.Index(fields=['berth_type', 'is_allocated']),
            models.Index(fields=['berth_type', 'occupant_count']),
        ]

    def __str__(self):
        return f"Berth {self.berth_number} ({self.berth_type})"

    @property
    def is_shared(self):
        return self.berth_type == self.BerthType.SIDE_LOWER

    @property
    def capacity(self):
        """Number of passengers this berth can host."""
        if self.is_shared:
            return get_limit('RAC_PASSENGERS_PER_BERTH')
        return 1

    def occupy(self):
        """Seat one more passenger on this berth and persist the occupancy."""
        if self.occupant_count >= self.capacity:
            raise LedgerIntegrityError(
                f"{self} already hosts {self.occupant_count} passenger(s)"
            )
        self.occupant_count += 1
        if self.occupant_count >= self.capacity:
            self.is_allocated = True
        self.save(update_fields=['occupant_count', 'is_allocated', 'updated_at'])

    def release(self):
        """
        Vacate one passenger slot. The berth is only marked free once its last
        occupant has left; a shared berth keeps its flag for the remaining one.
        """
        if self.occupant_count == 0:
            raise LedgerIntegrityError(f"{self} has no occupant to release")
        self.occupant_count -= 1
        if self.occupant_count == 0:
            self.is_allocated = False
        self.save(update_fields=['occupant_count', 'is_allocated', 'updated_at'])


class TierLedger(models.Model):
    """
    Single-row counter table tracking remaining capacity per tier.
    Maps to the 'tier_ledger' table.
    Uses optimistic locking with version field on top of the row lock.
    """
    CONFIRMED = 'CONFIRMED'
    RAC = 'RAC'
    WAITING_LIST = 'WAITING_LIST'

    # Ladder from the most to the least desirable tier:
    # tier -> (remaining field, capacity field)
    TIER_FIELDS = {
        CONFIRMED: ('available_confirmed_berths', 'confirmed_capacity'),
        RAC: ('available_rac_berths', 'rac_capacity'),
        WAITING_LIST: ('available_waiting_list', 'waiting_list_capacity'),
    }
    LADDER = [CONFIRMED, RAC, WAITING_LIST]

    available_confirmed_berths = models.PositiveIntegerField()
    available_rac_berths = models.PositiveIntegerField()
    available_waiting_list = models.PositiveIntegerField()
    current_rac_number = models.PositiveIntegerField(default=0)
    current_waiting_list_number = models.PositiveIntegerField(default=0)
    confirmed_capacity = models.PositiveIntegerField()
    rac_capacity = models.PositiveIntegerField()
    waiting_list_capacity = models.PositiveIntegerField()
    version = models.PositiveIntegerField(default=0)  # For optimistic locking
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'tier_ledger'

    def __str__(self):
        return (
            f"Ledger CNF {self.available_confirmed_berths}/{self.confirmed_capacity}, "
            f"RAC {self.available_rac_berths}/{self.rac_capacity}, "
            f"WL {self.available_waiting_list}/{self.waiting_list_capacity}"
        )

    def remaining(self, tier):
        return getattr(self, self.TIER_FIELDS[tier][0])

    def capacity(self, tier):
        return getattr(self, self.TIER_FIELDS[tier][1])

    def booked(self, tier):
        return self.capacity(tier) - self.remaining(tier)

    def next_number(self, tier):
        """Queue position the next booking into `tier` would take."""
        return self.booked(tier) + 1

    def take(self, tier):
        """Consume one unit of capacity from `tier`."""
        field = self.TIER_FIELDS[tier][0]
        if getattr(self, field) <= 0:
            raise LedgerIntegrityError(f"No {tier} capacity left to take")
        setattr(self, field, getattr(self, field) - 1)

    def give_back(self, tier):
        """Return one unit of capacity to `tier`."""
        field = self.TIER_FIELDS[tier][0]
        if getattr(self, field) >= self.capacity(tier):
            raise LedgerIntegrityError(f"{tier} capacity is already fully available")
        setattr(self, field, getattr(self, field) + 1)

    def refresh_current_numbers(self):
        """Recompute the running RAC and waiting-list numbers from occupancy."""
        self.current_rac_number = self.booked(self.RAC)
        self.current_waiting_list_number = self.booked(self.WAITING_LIST)
