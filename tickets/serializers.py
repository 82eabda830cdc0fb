"""
Serializers for ticket booking and ticket views.
"""
from rest_framework import serializers

from berths.limits import get_limit
from berths.serializers import BerthSerializer
from .allocation import book_ticket
from .models import Child, Gender, Passenger, Ticket


class ChildSerializer(serializers.ModelSerializer):
    """Serializer for Child model."""

    class Meta:
        model = Child
        fields = ['name', 'age', 'gender']


class PassengerSerializer(serializers.ModelSerializer):
    """Serializer for Passenger model."""

    class Meta:
        model = Passenger
        fields = ['name', 'age', 'gender', 'has_child_under_five']


class TicketSerializer(serializers.ModelSerializer):
    """Serializer for viewing tickets."""
    berth = BerthSerializer(read_only=True, allow_null=True)
    passenger = PassengerSerializer(read_only=True)
    children = ChildSerializer(source='passenger.children', many=True, read_only=True)

    class Meta:
        model = Ticket
        fields = [
            'pnr', 'status', 'berth', 'rac_number', 'waiting_list_number',
            'passenger', 'children', 'created_at'
        ]


class PassengerInputSerializer(serializers.Serializer):
    """Serializer for passenger input during booking."""
    name = serializers.CharField(min_length=2, max_length=100)
    age = serializers.IntegerField(min_value=0, max_value=120)
    gender = serializers.ChoiceField(choices=Gender.choices)
    has_child_under_five = serializers.BooleanField(required=False, default=False)


class ChildInputSerializer(serializers.Serializer):
    """Serializer for a child travelling on the passenger's berth."""
    name = serializers.CharField(min_length=2, max_length=100)
    age = serializers.IntegerField(min_value=0)
    gender = serializers.ChoiceField(choices=Gender.choices)

    def validate_age(self, value):
        limit = get_limit('CHILD_AGE_LIMIT')
        if value >= limit:
            raise serializers.ValidationError(
                f"Children must be under {limit}; book a separate ticket instead."
            )
        return value


class TicketBookSerializer(serializers.Serializer):
    """Serializer for booking a ticket."""
    passenger = PassengerInputSerializer()
    children = ChildInputSerializer(many=True, required=False, default=list)

    def validate(self, attrs):
        passenger = attrs['passenger']
        children = attrs.get('children') or []

        if children:
            passenger['has_child_under_five'] = True
        elif passenger.get('has_child_under_five'):
            raise serializers.ValidationError({
                'children': "At least one child under "
                            f"{get_limit('CHILD_AGE_LIMIT')} is required when has_child_under_five is set."
            })

        return attrs

    def create(self, validated_data):
        """Run the allocation engine; returns a BookingResult."""
        return book_ticket(validated_data['passenger'], validated_data.get('children') or [])
