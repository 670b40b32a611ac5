from django.urls import path
from .views import (
    PaymentDetailView,
    PaymentListView,
    initiate_stk_push,
    mpesa_callback,
    mpesa_timeout,
    payment_by_checkout_request_id,
    query_stk_push_status,
    verify_payment_reference,
)

urlpatterns = [
    path('payments/', PaymentListView.as_view(), name='payment-list'),
    path('payments/callback/', verify_payment_reference, name='payment-verify-reference'),
    path('payments/<int:pk>/', PaymentDetailView.as_view(), name='payment-detail'),
    path('payments/mpesa/stkpush/', initiate_stk_push, name='mpesa-stkpush'),
    path('payments/mpesa/callback/', mpesa_callback, name='mpesa-callback'),
    path('payments/mpesa/timeout/', mpesa_timeout, name='mpesa-timeout'),
    path(
        'payments/mpesa/status/<str:checkout_request_id>/',
        query_stk_push_status,
        name='mpesa-status',
    ),
    path(
        'payments/mpesa/payment/<str:checkout_request_id>/',
        payment_by_checkout_request_id,
        name='mpesa-payment',
    ),
]
