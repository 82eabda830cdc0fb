from django.contrib import admin
from .models import Child, Passenger, Ticket


class ChildInline(admin.TabularInline):
    model = Child
    extra = 0


class TicketInline(admin.StackedInline):
    model = Ticket
    extra = 0
    can_delete = False
    readonly_fields = ['pnr', 'status', 'berth', 'rac_number', 'waiting_list_number', 'created_at']


@admin.register(Ticket)
class TicketAdmin(admin.ModelAdmin):
    list_display = ['pnr', 'passenger', 'status', 'berth', 'rac_number', 'waiting_list_number', 'created_at']
    list_filter = ['status', 'created_at']
    search_fields = ['pnr', 'passenger__name']
    readonly_fields = ['pnr', 'passenger', 'status', 'berth', 'rac_number', 'waiting_list_number', 'created_at', 'updated_at']
    ordering = ['created_at']

    # Tickets change only through booking and cancellation
    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Passenger)
class PassengerAdmin(admin.ModelAdmin):
    list_display = ['name', 'age', 'gender', 'has_child_under_five', 'created_at']
    list_filter = ['gender', 'has_child_under_five']
    search_fields = ['name', 'ticket__pnr']
    inlines = [TicketInline, ChildInline]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
