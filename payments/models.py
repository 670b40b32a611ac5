import secrets
import string
import time

from django.db import models


def generate_reference(prefix="PAY"):
    """
    Builds a payment reference from the current epoch milliseconds and a
    short random suffix, e.g. PAY-1718000000000-X7K2QD.
    """
    alphabet = string.ascii_uppercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(6))
    return f"{prefix}-{int(time.time() * 1000)}-{suffix}"


class PaymentStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    COMPLETED = "COMPLETED", "Completed"
    FAILED = "FAILED", "Failed"
    REFUNDED = "REFUNDED", "Refunded"


TERMINAL_STATUSES = (
    PaymentStatus.COMPLETED,
    PaymentStatus.FAILED,
    PaymentStatus.REFUNDED,
)


class Payment(models.Model):
    """
    Holds payment records, including M-Pesa STK push attempts.
    """
    user_id = models.IntegerField(blank=True, null=True)
    amount = models.DecimalField(max_digits=15, decimal_places=2)
    currency = models.CharField(max_length=10, default="KES")
    method = models.CharField(max_length=255, blank=True, null=True)
    payment_method = models.CharField(max_length=255, blank=True, null=True)
    payment_provider = models.CharField(max_length=255, blank=True, null=True)
    transaction_id = models.CharField(max_length=255, blank=True, null=True)
    status = models.CharField(
        max_length=50,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
    )
    reference = models.CharField(max_length=255, blank=True)
    customer_email = models.CharField(max_length=255, blank=True, null=True)
    customer_phone = models.CharField(max_length=255, blank=True, null=True)
    customer_name = models.CharField(max_length=255, blank=True, null=True)
    description = models.TextField(blank=True, null=True)
    consultation_id = models.IntegerField(blank=True, null=True)
    diaspora_request_id = models.IntegerField(blank=True, null=True)
    # Provider correlation ids, mirrored into metadata for API consumers
    merchant_request_id = models.CharField(max_length=100, blank=True, null=True, db_index=True)
    checkout_request_id = models.CharField(max_length=100, blank=True, null=True, db_index=True)
    metadata = models.JSONField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"Payment {self.id} - {self.reference} ({self.status})"

    @property
    def is_terminal(self):
        return self.status in TERMINAL_STATUSES

    def save(self, *args, **kwargs):
        if not self.reference or not self.reference.strip():
            self.reference = generate_reference()
        super().save(*args, **kwargs)
