from enum import Enum

# =====================================================
# 🧑‍🌾 FARMERS
# =====================================================
class FarmerStatusEnum(str, Enum):
    active = "active"
    archived = "archived"


# =====================================================
# 📦 STOCK LEDGER
# =====================================================
class StockEntryKindEnum(str, Enum):
    INITIAL = "INITIAL"          # Opening balance on farmer registration
    RESTOCK = "RESTOCK"          # Manual addition
    CORRECTION = "CORRECTION"    # Manual deduction (amount negated)
    CYCLE_CLOSE = "CYCLE_CLOSE"  # Intake realized when a cycle ends
    TRANSFER = "TRANSFER"        # One side of a farmer-to-farmer transfer
    REVERSAL = "REVERSAL"        # Compensating entry (transfer revert, cycle reopen)


# =====================================================
# 🔁 CYCLES
# =====================================================
class CycleStatusEnum(str, Enum):
    active = "active"


class HistoryStatusEnum(str, Enum):
    archived = "archived"
    deleted = "deleted"


class CycleLogKindEnum(str, Enum):
    SYSTEM = "SYSTEM"
    NOTE = "NOTE"
    CORRECTION = "CORRECTION"
    MORTALITY = "MORTALITY"
    SALES = "SALES"


class CorrectionFieldEnum(str, Enum):
    doc = "doc"
    mortality = "mortality"
    age = "age"


# =====================================================
# 🔔 NOTIFICATIONS
# =====================================================
class NotificationSeverityEnum(str, Enum):
    INFO = "INFO"
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"
    UPDATE = "UPDATE"
    SALES = "SALES"


class NotificationAudienceEnum(str, Enum):
    ORG_MANAGERS = "ORG_MANAGERS"
