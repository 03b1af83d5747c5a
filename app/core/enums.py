"""
Shared enums and constants used across the application.
"""

from enum import Enum


class OrderStatus(str, Enum):
    """Local order status values used in both models and schemas"""
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"

    @classmethod
    def values(cls):
        return {member.value for member in cls}


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"


class PaymentMethod(str, Enum):
    CASH = "CASH"
    BANK_TRANSFER = "BANK_TRANSFER"
    PAYPAL = "PAYPAL"
    CREDIT_CARD = "CREDIT_CARD"


class SyncDirection(str, Enum):
    IMPORT_ONLY = "import_only"
    EXPORT_ONLY = "export_only"
    BOTH = "both"

    @property
    def allows_import(self) -> bool:
        return self in (SyncDirection.IMPORT_ONLY, SyncDirection.BOTH)

    @property
    def allows_export(self) -> bool:
        return self in (SyncDirection.EXPORT_ONLY, SyncDirection.BOTH)


class LedgerDirection(str, Enum):
    FROM_REMOTE = "from_remote"
    TO_REMOTE = "to_remote"


class LedgerStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class SyncType(str, Enum):
    WEBHOOK = "webhook"
    POLLING = "polling"
    MANUAL_IMPORT = "manual_import"
    EXPORT = "export_order"
    BATCH_IMPORT = "batch_import"


class ImportJobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ImportJobStatus.COMPLETED, ImportJobStatus.CANCELLED)


class DuplicateAction(str, Enum):
    SKIP = "skip"
    UPDATE = "update"


class ImportOutcome(str, Enum):
    IMPORTED = "imported"
    UPDATED = "updated"
    SKIPPED = "skipped"


class WebhookTopic(str, Enum):
    ORDER_CREATED = "order.created"
    ORDER_UPDATED = "order.updated"
    ORDER_DELETED = "order.deleted"
