from flask import current_app

from services.ledger import BookingLedger
from services.orchestrator import BookingOrchestrator
from services.slot_allocator import SlotAllocator


def get_allocator() -> SlotAllocator:
    cfg = current_app.config
    return SlotAllocator(cfg["SLOT_CAPACITY"], cfg["SLOT_TIME_LABELS"])


def get_orchestrator(gateway=None) -> BookingOrchestrator:
    cfg = current_app.config
    return BookingOrchestrator(
        allocator=get_allocator(),
        ledger=BookingLedger(),
        gateway=gateway,
        advance_ratio=cfg.get("ADVANCE_RATIO", 0.8),
        currency=cfg.get("CURRENCY", "INR"),
        order_ttl_seconds=cfg.get("PENDING_ORDER_TTL_SECONDS", 900),
        cancel_cutoff_hours=cfg.get("CANCEL_CUTOFF_HOURS", 12),
    )
