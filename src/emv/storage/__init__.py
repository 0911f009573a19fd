"""Persistence for EMV calculations, custom topics and rate-table edits."""

from emv.storage.models import CalculationRecord, CustomTopic, RateChange
from emv.storage.store import (
    CalculationStore,
    CustomTopicStore,
    RateTableStore,
    close_emv_db,
    init_emv_db,
)

__all__ = [
    "CalculationRecord",
    "CalculationStore",
    "CustomTopic",
    "CustomTopicStore",
    "RateChange",
    "RateTableStore",
    "close_emv_db",
    "init_emv_db",
]
