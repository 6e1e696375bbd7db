from typing import Protocol, runtime_checkable

@runtime_checkable
class EventBusPort(Protocol):
    """Publishes booking and availability events relayed from the outbox."""
    async def publish(self, topic: str, key: str, value: dict, headers: dict | None = None) -> None: ...
