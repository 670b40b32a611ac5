from decimal import Decimal

from rest_framework import serializers

from .models import Payment


class PaymentSerializer(serializers.ModelSerializer):
    reference = serializers.CharField(max_length=255, required=False, allow_blank=True)

    class Meta:
        model = Payment
        fields = [
            "id",
            "user_id",
            "amount",
            "currency",
            "method",
            "payment_method",
            "payment_provider",
            "transaction_id",
            "status",
            "reference",
            "customer_email",
            "customer_phone",
            "customer_name",
            "description",
            "consultation_id",
            "diaspora_request_id",
            "merchant_request_id",
            "checkout_request_id",
            "metadata",
            "created_at",
            "updated_at",
        ]
        read_only_fields = [
            "id",
            "merchant_request_id",
            "checkout_request_id",
            "created_at",
            "updated_at",
        ]

    def validate_metadata(self, value):
        if value is not None and not isinstance(value, dict):
            raise serializers.ValidationError("metadata must be an object")
        return value


class InitiateSTKPushSerializer(serializers.Serializer):
    phoneNumber = serializers.CharField(max_length=20)
    amount = serializers.DecimalField(max_digits=15, decimal_places=2, min_value=Decimal("1"))
    accountReference = serializers.CharField(max_length=100)
    transactionDesc = serializers.CharField(max_length=255)
    userId = serializers.IntegerField(required=False, allow_null=True)
    consultationId = serializers.IntegerField(required=False, allow_null=True)

    def validate_phoneNumber(self, value):
        if not any(ch.isdigit() for ch in value):
            raise serializers.ValidationError("phoneNumber must contain digits")
        return value
