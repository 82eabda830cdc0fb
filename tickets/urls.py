"""
URL configuration for tickets app.
"""
from django.urls import path
from .views import (
    TicketBookView, TicketCancelView, BookedTicketsView, AvailabilityView, TicketDetailView
)

urlpatterns = [
    path('book/', TicketBookView.as_view(), name='ticket_book'),
    path('cancel/<str:pnr>/', TicketCancelView.as_view(), name='ticket_cancel'),
    path('booked/', BookedTicketsView.as_view(), name='tickets_booked'),
    path('available/', AvailabilityView.as_view(), name='tickets_available'),
    path('<str:pnr>/', TicketDetailView.as_view(), name='ticket_detail'),
]
