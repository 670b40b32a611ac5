from django.contrib import admin
from .models import Payment

@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = (
        'reference',
        'amount',
        'currency',
        'method',
        'status',
        'checkout_request_id',
        'transaction_id',
        'created_at',
        'updated_at'
    )
    list_filter = (
        'status',
        'method',
        'created_at'
    )
    search_fields = (
        'reference',
        'customer_phone',
        'transaction_id',
        'merchant_request_id',
        'checkout_request_id'
    )
    readonly_fields = ('merchant_request_id', 'checkout_request_id', 'created_at', 'updated_at')
