import logging

from rest_framework import status
from rest_framework.decorators import api_view
from rest_framework.exceptions import ParseError
from rest_framework.views import APIView

from .models import Payment
from .responses import ServiceResult
from .serializers import InitiateSTKPushSerializer, PaymentSerializer
from .services import MpesaService

logger = logging.getLogger(__name__)


def validation_failed(errors):
    return ServiceResult.fail("Validation failed", error=errors).to_response(
        status.HTTP_400_BAD_REQUEST
    )


def payment_not_found(pk):
    return ServiceResult.fail(f"Payment with ID {pk} not found").to_response(
        status.HTTP_404_NOT_FOUND
    )


class PaymentListView(APIView):
    """
    GET lists payments newest first, POST records a payment.
    A blank reference is generated on save.
    """

    def get(self, request):
        payments = Payment.objects.all()
        return ServiceResult.ok(
            "Payments retrieved successfully",
            data=PaymentSerializer(payments, many=True).data,
        ).to_response()

    def post(self, request):
        serializer = PaymentSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_failed(serializer.errors)
        payment = serializer.save()
        logger.info("Payment %s created with reference %s", payment.id, payment.reference)
        return ServiceResult.ok(
            "Payment created successfully",
            data=PaymentSerializer(payment).data,
        ).to_response(status.HTTP_201_CREATED)


class PaymentDetailView(APIView):

    def get(self, request, pk):
        payment = Payment.objects.filter(pk=pk).first()
        if payment is None:
            return payment_not_found(pk)
        return ServiceResult.ok(
            "Payment retrieved successfully",
            data=PaymentSerializer(payment).data,
        ).to_response()

    def put(self, request, pk):
        payment = Payment.objects.filter(pk=pk).first()
        if payment is None:
            return payment_not_found(pk)
        serializer = PaymentSerializer(payment, data=request.data, partial=True)
        if not serializer.is_valid():
            return validation_failed(serializer.errors)
        payment = serializer.save()
        return ServiceResult.ok(
            "Payment updated successfully",
            data=PaymentSerializer(payment).data,
        ).to_response()

    def delete(self, request, pk):
        deleted, _ = Payment.objects.filter(pk=pk).delete()
        if not deleted:
            return payment_not_found(pk)
        logger.info("Payment %s deleted", pk)
        return ServiceResult.ok("Payment deleted successfully").to_response()


@api_view(['GET'])
def verify_payment_reference(request):
    """
    Provider redirect target: ?reference=, ?trxref= or ?ref=, plus an
    optional ?provider=. Reports the stored payment's status.
    """
    params = request.query_params
    reference = params.get('reference') or params.get('trxref') or params.get('ref') or ''
    provider = params.get('provider')

    if not reference:
        return ServiceResult.fail("Payment reference is required").to_response(
            status.HTTP_400_BAD_REQUEST
        )

    payment = Payment.objects.filter(reference=reference).first()
    if payment is None:
        return ServiceResult.fail(
            "Payment not found", data={"reference": reference, "provider": provider}
        ).to_response(status.HTTP_404_NOT_FOUND)

    return ServiceResult.ok(
        "Payment reference verified",
        data={
            "reference": reference,
            "provider": provider or payment.payment_provider,
            "status": payment.status,
        },
    ).to_response()


@api_view(['POST'])
def initiate_stk_push(request):
    """
    Initiates an STK push to the customer's phone.
    Expects JSON: {
        "phoneNumber": "0712345678",
        "amount": 1000,
        "accountReference": "INV-1",
        "transactionDesc": "Consultation fee",
        "userId": 1,            (optional)
        "consultationId": 3     (optional)
    }
    """
    serializer = InitiateSTKPushSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_failed(serializer.errors)

    data = serializer.validated_data
    result = MpesaService().initiate_stk_push(
        phone_number=data['phoneNumber'],
        amount=data['amount'],
        account_reference=data['accountReference'],
        transaction_desc=data['transactionDesc'],
        user_id=data.get('userId'),
        consultation_id=data.get('consultationId'),
    )
    return result.to_response()


@api_view(['POST'])
def mpesa_callback(request):
    """
    Handles the M-Pesa STK push callback.
    Safaricom only needs a 200 back, so the outcome is reported in the body.
    """
    try:
        data = request.data
    except ParseError:
        logger.error("Unparseable M-Pesa callback body")
        data = None
    result = MpesaService().handle_callback(data)
    return ServiceResult(success=result.success, message=result.message).to_response()


@api_view(['POST'])
def mpesa_timeout(request):
    try:
        data = request.data
    except ParseError:
        data = None
    return MpesaService().handle_timeout(data).to_response()


@api_view(['GET'])
def query_stk_push_status(request, checkout_request_id):
    return MpesaService().query_stk_push_status(checkout_request_id).to_response()


@api_view(['GET'])
def payment_by_checkout_request_id(request, checkout_request_id):
    payment = MpesaService().get_payment_by_checkout_request_id(checkout_request_id)
    if payment is None:
        return ServiceResult.fail("Payment not found").to_response()
    return ServiceResult.ok("Payment found", data=PaymentSerializer(payment).data).to_response()
