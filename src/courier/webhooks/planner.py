"""Fan-out of an event into one delivery per subscribed target."""

from __future__ import annotations

from typing import TYPE_CHECKING

from courier.logging import get_logger
from courier.models import Delivery

if TYPE_CHECKING:
    from courier.scheduler import TaskScheduler
    from courier.storage import ForwardingStore

    from .delivery import WebhookDispatcher

logger = get_logger(__name__)


class DeliveryPlanner:
    """Materializes deliveries for an event and queues their first attempt.

    Targets are matched at planning time: a target created or subscribed
    later never receives the event. Planning twice is harmless because
    delivery IDs are derived from (event, target) and creation is
    insert-if-absent.
    """

    def __init__(
        self,
        store: ForwardingStore,
        scheduler: TaskScheduler,
        dispatcher: WebhookDispatcher,
    ) -> None:
        self._store = store
        self._scheduler = scheduler
        self._dispatcher = dispatcher

    async def plan_deliveries(self, event_id: str) -> int:
        """Create deliveries for every enabled target subscribed to the event.

        Args:
            event_id: Event to fan out.

        Returns:
            Number of deliveries created by this call.
        """
        event = await self._store.get_event(event_id)
        if event is None:
            logger.info("Event missing, nothing to plan", event_id=event_id)
            return 0

        targets = await self._store.list_subscribed_targets(event.account_id, event.event_type)

        created = 0
        for target in targets:
            delivery = Delivery.for_target(
                event_id=event.id,
                account_id=event.account_id,
                target_id=target.id,
                max_attempts=target.max_attempts,
            )
            if not await self._store.create_delivery(delivery):
                logger.debug(
                    "Delivery already planned", event_id=event.id, target_id=target.id
                )
                continue
            created += 1
            self._scheduler.run_after(0, self._dispatcher.dispatch, delivery.id)

        logger.info(
            "Planned deliveries",
            event_id=event.id,
            event_type=event.event_type,
            matched_targets=len(targets),
            created=created,
        )
        return created
