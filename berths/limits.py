"""
Reservation limits, read from settings.RAILWAY_RESERVATION at call time.
"""
from django.conf import settings

DEFAULT_LIMITS = {
    'CONFIRMED_BERTHS': 63,
    'RAC_BERTHS': 9,
    'RAC_PASSENGERS_PER_BERTH': 2,  # 2 passengers per RAC berth
    'WAITING_LIST_SIZE': 10,
    'CHILD_AGE_LIMIT': 5,
    'SENIOR_CITIZEN_AGE': 60,
    'LEDGER_RETRY_ATTEMPTS': 3,
    'LOCK_WAIT_TIMEOUT': 10.0,
    'PNR_GENERATION_ATTEMPTS': 5,
}


def get_limit(name):
    overrides = getattr(settings, 'RAILWAY_RESERVATION', {})
    if name in overrides:
        return overrides[name]
    return DEFAULT_LIMITS[name]
