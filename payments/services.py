import logging

from django.conf import settings
from django.db import DatabaseError, transaction
from django.utils import timezone

from .exceptions import MpesaError, MpesaRequestError
from .models import Payment, PaymentStatus, generate_reference
from .mpesa_utils import (
    STK_PUSH_PATH,
    STK_QUERY_PATH,
    build_stk_push_payload,
    build_stk_query_payload,
    format_phone_number,
    generate_password,
    get_mpesa_access_token,
    mpesa_post,
    parse_callback_items,
    parse_result_code,
)
from .responses import ServiceResult

logger = logging.getLogger(__name__)

STK_PUSH_SUCCESS_MESSAGE = (
    "STK Push initiated successfully. Please check your phone and enter your M-PESA PIN."
)


class MpesaService:
    """
    Lipa na M-Pesa Online (STK Push) flow: initiation, callback handling and
    status queries. Every public method returns a ServiceResult and never lets
    an M-Pesa or database error escape to the caller.
    """

    def _password(self):
        return generate_password(settings.MPESA_BUSINESS_SHORT_CODE, settings.MPESA_PASSKEY)

    def initiate_stk_push(
        self,
        *,
        phone_number,
        amount,
        account_reference,
        transaction_desc,
        user_id=None,
        consultation_id=None,
    ):
        formatted_phone = format_phone_number(phone_number)
        short_code = settings.MPESA_BUSINESS_SHORT_CODE

        try:
            access_token = get_mpesa_access_token()
            password, timestamp = self._password()
            payload = build_stk_push_payload(
                short_code=short_code,
                password=password,
                timestamp=timestamp,
                amount=amount,
                phone_number=formatted_phone,
                callback_url=settings.MPESA_CALLBACK_URL,
                account_reference=account_reference,
                transaction_desc=transaction_desc,
                transaction_type=settings.MPESA_TRANSACTION_TYPE,
            )
            logger.info(
                "Initiating STK Push phone=%s amount=%s account_reference=%s",
                formatted_phone,
                amount,
                account_reference,
            )
            response_json = mpesa_post(STK_PUSH_PATH, payload, access_token)
        except MpesaRequestError as e:
            logger.error("STK Push failed: %s", e)
            if e.response_data is not None:
                error = e.provider_detail() or "M-Pesa API error"
            else:
                error = str(e)
            return ServiceResult.fail("Payment initiation failed", error=error)
        except MpesaError as e:
            logger.error("STK Push failed: %s", e)
            return ServiceResult.fail("Payment initiation failed", error=str(e))

        merchant_request_id = response_json.get("MerchantRequestID")
        checkout_request_id = response_json.get("CheckoutRequestID")
        metadata = {
            "phoneNumber": formatted_phone,
            "merchantRequestId": merchant_request_id,
            "checkoutRequestId": checkout_request_id,
            "accountReference": account_reference,
            "transactionDesc": transaction_desc,
            "timestamp": timezone.now().isoformat(),
        }
        if consultation_id is not None:
            metadata["consultationId"] = consultation_id

        try:
            payment = Payment.objects.create(
                user_id=user_id,
                amount=amount,
                currency="KES",
                method="mpesa",
                payment_method="mpesa",
                payment_provider="mpesa",
                status=PaymentStatus.PENDING,
                reference=generate_reference(f"MPESA-{account_reference}"),
                customer_phone=formatted_phone,
                description=transaction_desc,
                consultation_id=consultation_id,
                merchant_request_id=merchant_request_id,
                checkout_request_id=checkout_request_id,
                metadata=metadata,
            )
        except DatabaseError:
            logger.exception("Failed to record STK Push payment %s", checkout_request_id)
            return ServiceResult.fail("Payment initiation failed", error="Failed to record payment")

        self._schedule_reconciliation(payment)

        response_code = response_json.get("ResponseCode")
        if response_code == "0":
            return ServiceResult.ok(STK_PUSH_SUCCESS_MESSAGE, data=response_json)

        logger.warning(
            "STK Push rejected for payment %s: %s (%s)",
            payment.id,
            response_json.get("ResponseDescription"),
            response_code,
        )
        return ServiceResult.fail(
            response_json.get("ResponseDescription") or "Failed to initiate payment",
            error=f"Response Code: {response_code}",
        )

    def _schedule_reconciliation(self, payment):
        delay = getattr(settings, "MPESA_RECONCILE_AFTER_SECONDS", 0)
        if delay <= 0 or not payment.checkout_request_id:
            return
        from .tasks import reconcile_pending_payment

        try:
            reconcile_pending_payment(payment.id, schedule=delay)
        except DatabaseError:
            logger.exception("Failed to schedule reconciliation for payment %s", payment.id)

    def handle_callback(self, callback_data):
        """
        Applies a Daraja stkCallback to the matching payment.

        Payments already in a terminal state are left untouched, so a
        redelivered callback is acknowledged without changing anything.
        """
        body = callback_data.get("Body") if isinstance(callback_data, dict) else None
        stk_callback = body.get("stkCallback") if isinstance(body, dict) else None
        if not isinstance(stk_callback, dict):
            logger.error("Invalid M-Pesa callback payload: %s", callback_data)
            return ServiceResult.fail("Invalid callback payload")

        merchant_request_id = stk_callback.get("MerchantRequestID")
        checkout_request_id = stk_callback.get("CheckoutRequestID")
        result_code = parse_result_code(stk_callback.get("ResultCode"))
        result_desc = stk_callback.get("ResultDesc")
        callback_metadata = stk_callback.get("CallbackMetadata")
        items = callback_metadata.get("Item") if isinstance(callback_metadata, dict) else None

        logger.info(
            "Processing M-Pesa callback merchant_request_id=%s checkout_request_id=%s result_code=%s",
            merchant_request_id,
            checkout_request_id,
            result_code,
        )

        if not merchant_request_id or not checkout_request_id:
            logger.error("M-Pesa callback without correlation ids")
            return ServiceResult.fail("Payment record not found")

        if result_code is None:
            logger.error(
                "M-Pesa callback for %s has no usable ResultCode: %s",
                checkout_request_id,
                stk_callback.get("ResultCode"),
            )
            return ServiceResult.fail("Invalid callback payload")

        try:
            with transaction.atomic():
                payment = (
                    Payment.objects.select_for_update()
                    .filter(
                        merchant_request_id=merchant_request_id,
                        checkout_request_id=checkout_request_id,
                    )
                    .first()
                )
                if payment is None:
                    logger.error(
                        "Payment record not found for callback merchant_request_id=%s checkout_request_id=%s",
                        merchant_request_id,
                        checkout_request_id,
                    )
                    return ServiceResult.fail("Payment record not found")

                if payment.is_terminal:
                    logger.info(
                        "Ignoring callback for payment %s already %s", payment.id, payment.status
                    )
                    return ServiceResult.ok("Callback already processed")

                self._apply_result(payment, result_code, result_desc, items)
        except DatabaseError:
            logger.exception("Failed to process M-Pesa callback %s", checkout_request_id)
            return ServiceResult.fail("Failed to process callback")

        return ServiceResult.ok("Callback processed successfully")

    def _apply_result(self, payment, result_code, result_desc, items=None, from_callback=True):
        now = timezone.now().isoformat()
        metadata = dict(payment.metadata or {})
        updates = {"resultCode": result_code, "resultDesc": result_desc}
        if from_callback:
            updates["callbackReceived"] = True
        else:
            updates["reconciledAt"] = now

        if result_code == 0:
            values = parse_callback_items(items)
            receipt = values.get("MpesaReceiptNumber")
            phone = values.get("PhoneNumber")
            extracted = {
                "mpesaReceiptNumber": receipt,
                "transactionDate": values.get("TransactionDate"),
                "amountPaid": values.get("Amount"),
                "payerPhoneNumber": str(phone) if phone is not None else None,
            }
            updates.update({k: v for k, v in extracted.items() if v is not None})
            updates["completedAt"] = now
            payment.status = PaymentStatus.COMPLETED
            if receipt:
                payment.transaction_id = str(receipt)
            logger.info("Payment %s completed receipt=%s", payment.id, receipt)
        else:
            updates["failedAt"] = now
            payment.status = PaymentStatus.FAILED
            logger.warning(
                "Payment %s failed result_code=%s result_desc=%s",
                payment.id,
                result_code,
                result_desc,
            )

        metadata.update(updates)
        payment.metadata = metadata
        payment.save(update_fields=["status", "transaction_id", "metadata", "updated_at"])

    def handle_timeout(self, timeout_data):
        logger.info("M-Pesa timeout callback received: %s", timeout_data)
        return ServiceResult.ok("Timeout callback received")

    def query_stk_push_status(self, checkout_request_id):
        try:
            access_token = get_mpesa_access_token()
            password, timestamp = self._password()
            payload = build_stk_query_payload(
                short_code=settings.MPESA_BUSINESS_SHORT_CODE,
                password=password,
                timestamp=timestamp,
                checkout_request_id=checkout_request_id,
            )
            response_json = mpesa_post(STK_QUERY_PATH, payload, access_token)
        except MpesaError as e:
            logger.error("STK Push status query failed for %s: %s", checkout_request_id, e)
            return ServiceResult.fail(
                "Failed to query payment status",
                error=e.response_data if e.response_data is not None else str(e),
            )

        return ServiceResult.ok("Status query successful", data=response_json)

    def get_payment_by_checkout_request_id(self, checkout_request_id):
        try:
            return Payment.objects.filter(checkout_request_id=checkout_request_id).first()
        except DatabaseError:
            logger.exception("Failed to get payment by checkout request id %s", checkout_request_id)
            return None

    def reconcile_payment(self, payment):
        """
        Settles a PENDING payment from the provider's status query when its
        callback never arrived. A query that is still processing, or fails,
        leaves the payment PENDING.
        """
        if payment.status != PaymentStatus.PENDING:
            return ServiceResult.ok("Payment already settled", data={"status": payment.status})
        if not payment.checkout_request_id:
            return ServiceResult.fail("Payment has no checkout request id")

        result = self.query_stk_push_status(payment.checkout_request_id)
        if not result.success:
            return result

        result_code = parse_result_code(result.data.get("ResultCode"))
        if result_code is None:
            return ServiceResult.ok("Payment still pending", data=result.data)

        try:
            with transaction.atomic():
                locked = Payment.objects.select_for_update().get(pk=payment.pk)
                if locked.is_terminal:
                    return ServiceResult.ok("Payment already settled", data={"status": locked.status})
                self._apply_result(
                    locked, result_code, result.data.get("ResultDesc"), from_callback=False
                )
        except (DatabaseError, Payment.DoesNotExist):
            logger.exception("Failed to reconcile payment %s", payment.pk)
            return ServiceResult.fail("Failed to reconcile payment")

        logger.info("Payment %s reconciled to %s", locked.pk, locked.status)
        return ServiceResult.ok("Payment reconciled", data={"status": locked.status})
