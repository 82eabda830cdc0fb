"""Views for ticket booking, cancellation and lookups."""
import logging

from rest_framework import status
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import AllowAny
from drf_spectacular.utils import extend_schema, OpenApiParameter, OpenApiExample, inline_serializer
from rest_framework import serializers as drf_serializers

from django.db import DatabaseError

from berths.exceptions import ReservationError
from berths.serializers import AvailabilitySerializer
from berths.services import get_availability
from .promotion import cancel_ticket
from .queries import get_ticket_by_pnr, list_tickets
from .serializers import TicketSerializer, TicketBookSerializer

logger = logging.getLogger(__name__)

ErrorResponseSerializer = inline_serializer(name='ErrorResponse', fields={'error': drf_serializers.CharField()})
PNR_PARAMETER = OpenApiParameter(name='pnr', type=str, location='path', description='Ticket PNR (10-character code)')


# Response serializers for Swagger
class TicketBookResponseSerializer(drf_serializers.Serializer):
    message = drf_serializers.CharField()
    ticket = TicketSerializer()


class CancelResponseSerializer(drf_serializers.Serializer):
    message = drf_serializers.CharField()
    pnr = drf_serializers.CharField()


class BookedSummarySerializer(drf_serializers.Serializer):
    total = drf_serializers.IntegerField()
    confirmed = drf_serializers.IntegerField()
    rac = drf_serializers.IntegerField()
    waiting_list = drf_serializers.IntegerField()


class BookedTicketsSerializer(drf_serializers.Serializer):
    confirmed = TicketSerializer(many=True)
    rac = TicketSerializer(many=True)
    waiting_list = TicketSerializer(many=True)


class BookedListResponseSerializer(drf_serializers.Serializer):
    summary = BookedSummarySerializer()
    tickets = BookedTicketsSerializer()


def _server_error(message):
    return Response({'error': message}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


class TicketBookView(APIView):
    """Book a ticket."""
    permission_classes = [AllowAny]

    @extend_schema(
        summary="Book a ticket",
        description=(
            "Books one passenger into the best tier still open: a confirmed berth, "
            "a shared RAC berth or the waiting list. Children under five travel on "
            "the passenger's berth. Seniors and women travelling with a small child "
            "get lower berths first."
        ),
        request=TicketBookSerializer,
        responses={201: TicketBookResponseSerializer, 400: ErrorResponseSerializer, 500: ErrorResponseSerializer},
        examples=[
            OpenApiExample(
                "Adult passenger",
                value={"passenger": {"name": "Arjun Mehta", "age": 28, "gender": "MALE"}},
                request_only=True
            ),
            OpenApiExample(
                "Mother with a small child",
                value={
                    "passenger": {"name": "Priya Sharma", "age": 31, "gender": "FEMALE"},
                    "children": [{"name": "Anaya Sharma", "age": 3, "gender": "FEMALE"}]
                },
                request_only=True
            )
        ],
        tags=["Tickets"]
    )
    def post(self, request):
        serializer = TicketBookSerializer(data=request.data)

        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        try:
            result = serializer.save()
        except (ReservationError, DatabaseError):
            logger.exception('Booking failed')
            return _server_error('Booking failed, please try again.')

        if not result.success:
            return Response({'error': result.reason}, status=status.HTTP_400_BAD_REQUEST)

        return Response({
            'message': 'Ticket booked successfully',
            'ticket': TicketSerializer(result.ticket).data
        }, status=status.HTTP_201_CREATED)


class TicketCancelView(APIView):
    """Cancel a ticket and promote the queue behind it."""
    permission_classes = [AllowAny]

    @extend_schema(
        summary="Cancel a ticket",
        description=(
            "Cancels the ticket with the given PNR. A freed confirmed berth goes to "
            "the first RAC passenger and a freed RAC slot to the first waiting-list passenger."
        ),
        request=None,
        parameters=[PNR_PARAMETER],
        responses={200: CancelResponseSerializer, 404: ErrorResponseSerializer, 500: ErrorResponseSerializer},
        tags=["Tickets"]
    )
    def post(self, request, pnr):
        try:
            result = cancel_ticket(pnr)
        except (ReservationError, DatabaseError):
            logger.exception('Cancellation of %s failed', pnr)
            return _server_error('Cancellation failed, please try again.')

        if not result.found:
            return Response({'error': 'Ticket not found'}, status=status.HTTP_404_NOT_FOUND)

        return Response({
            'message': 'Ticket cancelled successfully',
            'pnr': result.pnr
        })


class BookedTicketsView(APIView):
    """List every ticket grouped by tier."""
    permission_classes = [AllowAny]

    @extend_schema(
        summary="List booked tickets",
        description="Returns all tickets grouped into confirmed, RAC and waiting list, in queue order.",
        responses={200: BookedListResponseSerializer},
        tags=["Tickets"]
    )
    def get(self, request):
        groups = list_tickets()

        return Response({
            'summary': {
                'total': sum(len(tickets) for tickets in groups.values()),
                'confirmed': len(groups['confirmed']),
                'rac': len(groups['rac']),
                'waiting_list': len(groups['waiting_list']),
            },
            'tickets': {
                tier: TicketSerializer(tickets, many=True).data
                for tier, tickets in groups.items()
            }
        })


class AvailabilityView(APIView):
    """Remaining capacity per tier."""
    permission_classes = [AllowAny]

    @extend_schema(
        summary="Get availability",
        description="Returns total, booked and available counts for each tier and the overall booking status.",
        responses={200: AvailabilitySerializer, 500: ErrorResponseSerializer},
        tags=["Tickets"]
    )
    def get(self, request):
        try:
            availability = get_availability()
        except (ReservationError, DatabaseError):
            logger.exception('Availability lookup failed')
            return _server_error('Availability information is not set up.')

        return Response(AvailabilitySerializer(availability).data)


class TicketDetailView(APIView):
    """Get ticket by PNR."""
    permission_classes = [AllowAny]

    @extend_schema(
        summary="Get ticket by PNR",
        description="Returns the ticket with its berth, queue position, passenger and children.",
        parameters=[PNR_PARAMETER],
        responses={200: TicketSerializer, 404: ErrorResponseSerializer},
        tags=["Tickets"]
    )
    def get(self, request, pnr):
        ticket = get_ticket_by_pnr(pnr)
        if ticket is None:
            return Response({'error': 'Ticket not found'}, status=status.HTTP_404_NOT_FOUND)

        return Response(TicketSerializer(ticket).data)
