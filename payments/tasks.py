import logging

from background_task import background

from .models import Payment
from .services import MpesaService

logger = logging.getLogger(__name__)


@background(schedule=300)
def reconcile_pending_payment(payment_id):
    """Polls Daraja for a payment whose STK callback has not arrived yet."""
    payment = Payment.objects.filter(pk=payment_id).first()
    if payment is None:
        logger.warning("Reconciliation skipped, payment %s no longer exists", payment_id)
        return
    result = MpesaService().reconcile_payment(payment)
    logger.info("Reconciliation for payment %s: %s", payment_id, result.message)
