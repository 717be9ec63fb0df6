"""Edge-triggered threshold alerts."""

import logging
from typing import TYPE_CHECKING, Dict, List

from .config import AlertConfig
from .events import AlertEventData, EventType, Recipient, Severity, SystemEvent
from .metrics import GlobalMetrics

if TYPE_CHECKING:
    from .world import World

logger = logging.getLogger(__name__)


class AlertMonitor:
    """Raises ``alert_sent`` once per threshold crossing.

    An alert re-arms when its metric falls back to or below the threshold.
    """

    def __init__(self, config: AlertConfig):
        self.config = config
        self._armed: Dict[str, bool] = {"hall_load": True, "waiting_backlog": True}

    def evaluate(self, world: "World", metrics: GlobalMetrics) -> List[SystemEvent]:
        raised = []

        if self._crossed("hall_load", metrics.hall_load, self.config.hall_load_critical):
            raised.append(
                world.emit(
                    EventType.ALERT_SENT,
                    f"Hall load at {metrics.hall_load}% exceeds "
                    f"{self.config.hall_load_critical:.0f}%",
                    AlertEventData(
                        alert="hall_load",
                        value=metrics.hall_load,
                        threshold=self.config.hall_load_critical,
                    ),
                    severity=Severity.WARNING,
                    recipients=(Recipient.SUPERVISOR, Recipient.MANAGER),
                )
            )

        if self._crossed("waiting_backlog", metrics.waiting_count, self.config.waiting_backlog):
            raised.append(
                world.emit(
                    EventType.ALERT_SENT,
                    f"{metrics.waiting_count} tasks waiting, backlog limit "
                    f"{self.config.waiting_backlog}",
                    AlertEventData(
                        alert="waiting_backlog",
                        value=metrics.waiting_count,
                        threshold=self.config.waiting_backlog,
                    ),
                    severity=Severity.WARNING,
                    recipients=(Recipient.SUPERVISOR,),
                )
            )

        for event in raised:
            logger.warning(event.message)
        return raised

    def _crossed(self, name: str, value: float, threshold: float) -> bool:
        if value > threshold:
            if self._armed[name]:
                self._armed[name] = False
                return True
            return False
        self._armed[name] = True
        return False
