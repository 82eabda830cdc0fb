"""Ticket, passenger and child models."""
import time
import uuid

from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import Q

from berths.exceptions import ConfirmationCodeCollisionError
from berths.limits import get_limit
from berths.models import Berth, TierLedger

BASE36_DIGITS = '0123456789abcdefghijklmnopqrstuvwxyz'


def _to_base36(value):
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(BASE36_DIGITS[remainder])
    return ''.join(reversed(digits)) or '0'


def generate_pnr():
    """
    10-character PNR: last 4 chars of the base-36 millisecond timestamp
    followed by the first 6 hex digits of a UUID4.
    """
    timestamp = _to_base36(int(time.time() * 1000))
    return (timestamp[-4:].rjust(4, '0') + uuid.uuid4().hex[:6]).upper()


class Gender(models.TextChoices):
    MALE = 'MALE', 'Male'
    FEMALE = 'FEMALE', 'Female'
    OTHER = 'OTHER', 'Other'


class TicketStatus(models.TextChoices):
    CONFIRMED = TierLedger.CONFIRMED, 'Confirmed'
    RAC = TierLedger.RAC, 'Reservation Against Cancellation'
    WAITING_LIST = TierLedger.WAITING_LIST, 'Waiting List'


class Passenger(models.Model):
    name = models.CharField(max_length=100)
    age = models.PositiveSmallIntegerField(validators=[MaxValueValidator(120)])
    gender = models.CharField(max_length=6, choices=Gender.choices)
    has_child_under_five = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'passengers'

    def __str__(self):
        return f"{self.name} ({self.age}{self.gender[0]})"

    @property
    def needs_berth(self):
        """Children under the age limit travel without a berth of their own."""
        return self.age >= get_limit('CHILD_AGE_LIMIT')

    @property
    def prefers_lower_berth(self):
        """Senior citizens and women travelling with a small child get lower berths first."""
        return (
            self.age >= get_limit('SENIOR_CITIZEN_AGE')
            or (self.gender == Gender.FEMALE and self.has_child_under_five)
        )


class Child(models.Model):
    parent = models.ForeignKey(Passenger, on_delete=models.CASCADE, related_name='children')
    name = models.CharField(max_length=100)
    age = models.PositiveSmallIntegerField()
    gender = models.CharField(max_length=6, choices=Gender.choices)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'children'
        verbose_name_plural = 'Children'

    def __str__(self):
        return f"{self.name} ({self.age}{self.gender[0]}) with {self.parent.name}"


class Ticket(models.Model):
    """
    A reservation on the coach.

    The status columns form a tagged variant enforced by the database:
    CONFIRMED  - berth (none for a lap-held child), no queue numbers
    RAC        - shared side lower berth and a RAC number
    WAITING_LIST - waiting list number only
    """
    pnr = models.CharField(max_length=10, unique=True, editable=False)
    passenger = models.OneToOneField(Passenger, on_delete=models.CASCADE, related_name='ticket')
    berth = models.ForeignKey(
        Berth,
        on_delete=models.PROTECT,
        related_name='tickets',
        null=True,
        blank=True
    )
    status = models.CharField(max_length=12, choices=TicketStatus.choices)
    rac_number = models.PositiveSmallIntegerField(
        unique=True, null=True, blank=True, validators=[MinValueValidator(1)]
    )
    waiting_list_number = models.PositiveSmallIntegerField(
        unique=True, null=True, blank=True, validators=[MinValueValidator(1)]
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'tickets'
        ordering = ['created_at']
        indexes = [
            models.Index(fields=['status', 'rac_number']),
            models.Index(fields=['status', 'waiting_list_number']),
        ]
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(status=TicketStatus.CONFIRMED, rac_number__isnull=True,
                      waiting_list_number__isnull=True)
                    | Q(status=TicketStatus.RAC, berth__isnull=False, rac_number__isnull=False,
                        waiting_list_number__isnull=True)
                    | Q(status=TicketStatus.WAITING_LIST, berth__isnull=True, rac_number__isnull=True,
                        waiting_list_number__isnull=False)
                ),
                name='ticket_status_fields_consistent',
            ),
        ]

    def __str__(self):
        return f"PNR: {self.pnr} - {self.status}"

    @property
    def holds_capacity(self):
        """A confirmed ticket without a berth (lap-held child) consumes no tier capacity."""
        return not (self.status == TicketStatus.CONFIRMED and self.berth_id is None)

    def save(self, *args, **kwargs):
        if not self.pnr:
            self.pnr = self._unused_pnr()
        super().save(*args, **kwargs)

    @classmethod
    def _unused_pnr(cls):
        attempts = get_limit('PNR_GENERATION_ATTEMPTS')
        for _ in range(attempts):
            pnr = generate_pnr()
            if not cls.objects.filter(pnr=pnr).exists():
                return pnr
        raise ConfirmationCodeCollisionError(
            f"Could not generate an unused PNR in {attempts} attempts"
        )
