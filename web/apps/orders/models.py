from django.db import models


class ProductModel(models.Model):
    # Catalogue rows are owned by the products service; orders only read
    # them and decrement `stock` through ProductRepository.try_decrement.
    producer_id = models.BigIntegerField(db_index=True)
    name = models.CharField(max_length=200)
    price_cents = models.PositiveBigIntegerField(default=0)
    stock = models.PositiveIntegerField(default=0)
    active = models.BooleanField(default=True)
    is_deleted = models.BooleanField(default=False)

    class Meta:
        db_table = "products"


class OrderModel(models.Model):
    id = models.BigAutoField(primary_key=True)

    # Public code exposed in the API instead of the numeric id
    code = models.CharField(max_length=32, unique=True, editable=False)

    class Status(models.TextChoices):
        PENDING_REVIEW = "PendingReview"
        ACCEPTED_AWAITING_PAYMENT = "AcceptedAwaitingPayment"
        PAYMENT_SUBMITTED = "PaymentSubmitted"
        PREPARING = "Preparing"
        DISPATCHED = "Dispatched"
        DELIVERED_PENDING_BUYER_CONFIRM = "DeliveredPendingBuyerConfirm"
        COMPLETED = "Completed"
        DISPUTED = "Disputed"
        REJECTED = "Rejected"
        CANCELLED_BY_USER = "CancelledByUser"
        EXPIRED = "Expired"

    class Answer(models.TextChoices):
        YES = "yes"
        NO = "no"

    user_id = models.BigIntegerField(db_index=True)
    product = models.ForeignKey(ProductModel, on_delete=models.PROTECT, related_name="orders")

    # Snapshots taken at creation, never resynced from the product
    producer_id_snapshot = models.BigIntegerField(db_index=True)
    product_name_snapshot = models.CharField(max_length=200)
    unit_price_cents_snapshot = models.PositiveBigIntegerField()

    quantity_requested = models.PositiveIntegerField()
    subtotal_cents = models.PositiveBigIntegerField()
    total_cents = models.PositiveBigIntegerField()

    status = models.CharField(max_length=40, choices=Status.choices, default=Status.PENDING_REVIEW)
    created_at = models.DateTimeField()
    accepted_at = models.DateTimeField(null=True, blank=True)
    producer_decision_at = models.DateTimeField(null=True, blank=True)
    producer_decision_reason = models.CharField(max_length=500, null=True, blank=True)
    producer_notes = models.CharField(max_length=500, null=True, blank=True)
    payment_image_url = models.URLField(max_length=500, null=True, blank=True)
    payment_uploaded_at = models.DateTimeField(null=True, blank=True)
    payment_submitted_at = models.DateTimeField(null=True, blank=True)
    user_confirm_enabled_at = models.DateTimeField(null=True, blank=True)
    user_received_answer = models.CharField(max_length=3, choices=Answer.choices, null=True, blank=True)
    user_received_at = models.DateTimeField(null=True, blank=True)
    # Deadline owned by the current status (payment upload / buyer confirm)
    auto_close_at = models.DateTimeField(null=True, blank=True)

    active = models.BooleanField(default=True)
    is_deleted = models.BooleanField(default=False)

    # Concurrency token, bumped by every successful conditional UPDATE
    row_version = models.PositiveIntegerField(default=1)

    class Meta:
        db_table = "orders"
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["status", "auto_close_at"], name="orders_status_deadline_idx"),
        ]
