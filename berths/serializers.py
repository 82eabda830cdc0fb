"""
Serializers for the berth inventory.
"""
from rest_framework import serializers
from .models import Berth


class BerthSerializer(serializers.ModelSerializer):
    """Serializer for Berth model."""

    class Meta:
        model = Berth
        fields = ['berth_number', 'berth_type']


class TierAvailabilitySerializer(serializers.Serializer):
    total = serializers.IntegerField()
    booked = serializers.IntegerField()
    available = serializers.IntegerField()
    status = serializers.ChoiceField(choices=['AVAILABLE', 'FULL'])


class OverallAvailabilitySerializer(serializers.Serializer):
    status = serializers.ChoiceField(
        choices=['CONFIRMED_AVAILABLE', 'RAC_AVAILABLE', 'WAITING_LIST_AVAILABLE', 'FULL']
    )


class AvailabilitySerializer(serializers.Serializer):
    """Shape of berths.services.get_availability()."""
    confirmed = TierAvailabilitySerializer()
    rac = TierAvailabilitySerializer()
    waiting_list = TierAvailabilitySerializer()
    overall = OverallAvailabilitySerializer()
