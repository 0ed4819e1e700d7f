from enum import Enum

class UserRole(str, Enum):
    ADMIN = "admin"
    OPS = "ops"
    VIEWER = "viewer"

class LocationType(str, Enum):
    WAREHOUSE = "warehouse"
    THREEPL = "threepl"
    FBA = "fba"
    FINISHED_GOODS = "finished_goods"

class TransactionType(str, Enum):
    RECEIPT = "receipt"
    INITIAL = "initial"
    BUILD = "build"
    TRANSFER = "transfer"
    ADJUSTMENT = "adjustment"
    OUTBOUND = "outbound"

class BOMState(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    SUPERSEDED = "superseded"

class ReorderStatus(str, Enum):
    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"

class ExpiryStatus(str, Enum):
    OK = "ok"
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"

class SalesChannel(str, Enum):
    AMAZON = "Amazon"
    SHOPIFY = "Shopify"
    TIKTOK = "TikTok"
    GENERIC = "Generic"

class AlertMode(str, Enum):
    DAILY_DIGEST = "daily_digest"
    PER_TRANSITION = "per_transition"


# Tipos que pueden excluirse del cálculo de consumo del forecast
FORECAST_EXCLUDABLE_TYPES = (
    TransactionType.INITIAL,
    TransactionType.ADJUSTMENT,
    TransactionType.RECEIPT,
    TransactionType.TRANSFER,
)
