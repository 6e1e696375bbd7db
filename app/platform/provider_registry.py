from app.core.config import settings
from app.platform.ports.event_bus import EventBusPort
from app.platform.adapters.bus_noop import NoopEventBus
from app.platform.adapters.bus_redis import RedisEventBus
from app.platform.ports.booking_store import BookingStorePort
from app.platform.adapters.store_memory import InMemoryBookingStore
from app.platform.adapters.store_sql import SqlBookingStore

class ProviderRegistry:
    _booking_store: BookingStorePort | None = None
    _event_bus: EventBusPort | None = None

    @classmethod
    def booking_store(cls) -> BookingStorePort:
        if cls._booking_store is None:
            if settings.BOOKING_STORE_PROVIDER == "memory":
                cls._booking_store = InMemoryBookingStore()
            else:
                from app.core.db import SessionLocal
                cls._booking_store = SqlBookingStore(SessionLocal)
        return cls._booking_store

    @classmethod
    def event_bus(cls) -> EventBusPort:
        if cls._event_bus is None:
            prov = (settings.EVENT_BUS_PROVIDER or "noop").lower()
            if prov == "redis":
                cls._event_bus = RedisEventBus()
            else:
                cls._event_bus = NoopEventBus()
        return cls._event_bus

    @classmethod
    def use_booking_store(cls, store: BookingStorePort) -> None:
        """Swap the store (tests, scripts)."""
        cls._booking_store = store

registry = ProviderRegistry()
