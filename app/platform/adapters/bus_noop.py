import json
import logging
from app.platform.ports.event_bus import EventBusPort

log = logging.getLogger("bus.noop")

class NoopEventBus(EventBusPort):
    """Logs events instead of publishing them; the default outside production."""

    def __init__(self):
        self.published = 0

    async def publish(self, topic: str, key: str, value: dict, headers: dict | None = None) -> None:
        self.published += 1
        log.info(f"[NOOP BUS] topic={topic} key={key} event={value.get('event_type')} value={json.dumps(value, default=str)}")
