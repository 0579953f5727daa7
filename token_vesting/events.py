"""
Event System Module

Domain events returned by ledger mutations, and a publish/subscribe
dispatcher callers can hand them to.
"""

from enum import Enum
from typing import Callable, Dict, List, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone
import uuid
import logging
from threading import RLock


class DomainEvent(Enum):
    """Domain events that can occur in the vesting ledger"""

    # Schedule events
    SCHEDULE_CREATED = "schedule.created"
    TOKENS_RELEASED = "schedule.released"
    SCHEDULE_REVOKED = "schedule.revoked"

    # Admin events
    SETUP_FEE_UPDATED = "admin.setup_fee_updated"
    FEE_RECIPIENT_UPDATED = "admin.fee_recipient_updated"
    OWNERSHIP_TRANSFERRED = "admin.ownership_transferred"

    # Escrow events
    FUNDS_DEPOSITED = "escrow.deposited"
    EMERGENCY_RECOVERY = "escrow.emergency_recovery"


@dataclass
class EventPayload:
    """Payload for domain events"""
    event_type: DomainEvent
    entity_type: str
    entity_id: str
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'data': self.data,
            'timestamp': self.timestamp.isoformat(),
            'event_id': self.event_id
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EventPayload':
        """Create from dictionary"""
        return cls(
            event_type=DomainEvent(data['event_type']),
            entity_type=data['entity_type'],
            entity_id=data['entity_id'],
            data=data['data'],
            timestamp=datetime.fromisoformat(data['timestamp']) if isinstance(data['timestamp'], str) else data['timestamp'],
            event_id=data['event_id']
        )


def _handler_name(handler: Callable) -> str:
    return getattr(handler, '__name__', repr(handler))


class EventDispatcher:
    """Central event dispatcher, publish/subscribe pattern"""

    def __init__(self):
        self._handlers: Dict[DomainEvent, List[Callable]] = {}
        self._global_handlers: List[Callable] = []
        self._lock = RLock()
        self.logger = logging.getLogger("vesting.events")

    def subscribe(self, event_type: DomainEvent, handler: Callable) -> None:
        """Subscribe to a specific event type"""
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)
            self.logger.debug(f"Subscribed handler {_handler_name(handler)} to {event_type.value}")

    def subscribe_all(self, handler: Callable) -> None:
        """Subscribe to ALL events"""
        with self._lock:
            self._global_handlers.append(handler)
            self.logger.debug(f"Subscribed global handler {_handler_name(handler)}")

    def unsubscribe(self, event_type: DomainEvent, handler: Callable) -> None:
        """Unsubscribe from a specific event type"""
        with self._lock:
            try:
                self._handlers.get(event_type, []).remove(handler)
            except ValueError:
                self.logger.warning(f"Handler {_handler_name(handler)} was not subscribed to {event_type.value}")

    def publish(self, event: EventPayload) -> None:
        """Publish event to all subscribers; handler failures are logged, not raised"""
        with self._lock:
            handlers = list(self._handlers.get(event.event_type, [])) + list(self._global_handlers)

        self.logger.debug(f"Publishing event {event.event_type.value} for {event.entity_type}:{event.entity_id}")
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                self.logger.error(f"Error in event handler {_handler_name(handler)} for {event.event_type.value}: {e}")

    def clear(self) -> None:
        """Clear all handlers"""
        with self._lock:
            self._handlers.clear()
            self._global_handlers.clear()

    def get_handler_count(self, event_type: Optional[DomainEvent] = None) -> int:
        """Get count of handlers for a specific event type or all"""
        with self._lock:
            if event_type:
                return len(self._handlers.get(event_type, []))
            total = sum(len(handlers) for handlers in self._handlers.values())
            return total + len(self._global_handlers)


def create_schedule_event(event_type: DomainEvent, beneficiary: str, **data: Any) -> EventPayload:
    """Create a schedule-related event; amounts are carried as decimal strings"""
    payload = {"beneficiary": beneficiary}
    for key, value in data.items():
        if isinstance(value, int) and not isinstance(value, bool):
            value = str(value)
        payload[key] = value
    return EventPayload(
        event_type=event_type,
        entity_type="schedule",
        entity_id=beneficiary,
        data=payload
    )


def create_ledger_event(event_type: DomainEvent, entity_type: str, entity_id: str,
                        **data: Any) -> EventPayload:
    """Create an admin or escrow event"""
    payload = {}
    for key, value in data.items():
        if isinstance(value, int) and not isinstance(value, bool):
            value = str(value)
        payload[key] = value
    return EventPayload(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        data=payload
    )
