from django.contrib import admin
from .models import Berth, TierLedger


@admin.register(Berth)
class BerthAdmin(admin.ModelAdmin):
    list_display = ['berth_number', 'berth_type', 'is_allocated', 'occupant_count', 'updated_at']
    list_filter = ['berth_type', 'is_allocated']
    search_fields = ['berth_number']
    ordering = ['berth_number']
    readonly_fields = ['berth_number', 'berth_type', 'is_allocated', 'occupant_count']


@admin.register(TierLedger)
class TierLedgerAdmin(admin.ModelAdmin):
    list_display = [
        'available_confirmed_berths', 'available_rac_berths', 'available_waiting_list',
        'current_rac_number', 'current_waiting_list_number', 'version', 'updated_at'
    ]
    readonly_fields = [
        'available_confirmed_berths', 'available_rac_berths', 'available_waiting_list',
        'current_rac_number', 'current_waiting_list_number',
        'confirmed_capacity', 'rac_capacity', 'waiting_list_capacity', 'version'
    ]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
