"""
Pollen Registry - Lifecycle State Machine

Owns every tracked pollen and applies the transition table for each event:

    current      | PROCESSING event        | DONE event
    -------------+-------------------------+--------------------------
    (new)        | PROCESSING              | DONE
    PROCESSING   | PROCESSING              | DONE
    DONE         | PROCESSING              | DONE
    APPLIED_ONCE | PROCESSING (attach) /   | ignored
                 | ignored (otherwise)     |

Pollens removed after being applied are remembered, so late duplicates of
their done message stay ignored.
"""
import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, Iterator, Optional

from pollen_wall.models.pollen import (
    PolledEvolution,
    PollenEvent,
    PollenInfo,
    PollenStatus,
    Topic,
)

logger = logging.getLogger(__name__)

RETIRED_MEMORY = 1024


@dataclass(frozen=True)
class StatusTransition:
    """
    Outcome of applying one event to the registry

    Attributes:
        pollen_id: Pollen the event belongs to
        previous: Status before the event, None if the pollen was unknown
        current: Status after the event, None if the pollen is not tracked
        created: The event started tracking the pollen
        ignored: The event left the registry untouched
    """
    pollen_id: str
    previous: Optional[PollenStatus]
    current: Optional[PollenStatus]
    created: bool = False
    ignored: bool = False


class PollenRegistry:
    """
    In-memory store of tracked pollens, keyed by pollen id.

    Not thread safe; it is owned by the event loop that feeds it.
    """

    def __init__(self, attach_mode: bool = False, ignore_done_after_apply: bool = True):
        self.attach_mode = attach_mode
        self.ignore_done_after_apply = ignore_done_after_apply
        self._pollens: Dict[str, PollenInfo] = {}
        self._retired: "OrderedDict[str, PollenInfo]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._pollens)

    def __contains__(self, pollen_id: str) -> bool:
        return pollen_id in self._pollens

    def __iter__(self) -> Iterator[PollenInfo]:
        return iter(list(self._pollens.values()))

    def get(self, pollen_id: str) -> Optional[PollenInfo]:
        return self._pollens.get(pollen_id)

    def is_retired(self, pollen_id: str) -> bool:
        return pollen_id in self._retired

    def retired(self, pollen_id: str) -> Optional[PollenInfo]:
        """Final state of a pollen removed after being applied."""
        return self._retired.get(pollen_id)

    def needs_metadata(self, pollen_id: str) -> bool:
        """True until the metadata lookup of the pollen has run once."""
        pollen = self._pollens.get(pollen_id)
        return pollen is None or not pollen.has_metadata

    def processing_count(self) -> int:
        return sum(1 for p in self._pollens.values() if p.status == PollenStatus.PROCESSING)

    def _ignored(self, pollen_id: str, status: Optional[PollenStatus]) -> StatusTransition:
        return StatusTransition(pollen_id, status, status, ignored=True)

    def upsert(self, pollen_id: str, event: PollenEvent) -> StatusTransition:
        """
        Apply an event to the pollen it belongs to.

        Raises:
            ValueError: The event has no usable topic
        """
        if event.topic == Topic.UNKNOWN:
            raise ValueError(f"Cannot apply an event of unknown topic to {pollen_id}")

        pollen = self._pollens.get(pollen_id)

        if pollen is None:
            if pollen_id in self._retired:
                # Applied and forgotten: behave as APPLIED_ONCE
                if event.topic == Topic.DONE and self.ignore_done_after_apply:
                    logger.debug(f"Ignoring duplicate done message for {pollen_id}")
                    return self._ignored(pollen_id, PollenStatus.APPLIED_ONCE)
                if event.topic == Topic.PROCESSING and not self.attach_mode:
                    return self._ignored(pollen_id, PollenStatus.APPLIED_ONCE)
                del self._retired[pollen_id]

            status = PollenStatus.for_topic(event.topic)
            self._pollens[pollen_id] = PollenInfo(
                id=pollen_id,
                topic=event.topic,
                current_iteration_ref=event.ref,
                status=status,
                model_type=event.model_type,
                text_input=event.text_input,
                metadata_fetched=event.metadata_fetched
            )
            logger.info(f"Tracking new pollen {pollen_id} ({status.value})")
            return StatusTransition(pollen_id, None, status, created=True)

        previous = pollen.status
        if previous == PollenStatus.APPLIED_ONCE:
            if event.topic == Topic.DONE and self.ignore_done_after_apply:
                logger.debug(f"Ignoring duplicate done message for {pollen_id}")
                return self._ignored(pollen_id, previous)
            if event.topic == Topic.PROCESSING and not self.attach_mode:
                return self._ignored(pollen_id, previous)

        pollen.status = PollenStatus.for_topic(event.topic)
        pollen.topic = event.topic
        pollen.current_iteration_ref = event.ref
        if event.metadata_fetched and not pollen.metadata_fetched:
            pollen.model_type = event.model_type
            pollen.text_input = event.text_input
            pollen.metadata_fetched = True

        if previous != pollen.status:
            logger.info(f"Pollen {pollen_id}: {previous.value} -> {pollen.status.value}")
        return StatusTransition(pollen_id, previous, pollen.status)

    def mark_applied(self, pollen_id: str, evolution: PolledEvolution):
        """Record that `evolution` was saved and set as wallpaper."""
        pollen = self._pollens[pollen_id]
        pollen.status = PollenStatus.APPLIED_ONCE
        pollen.last_polled_evolution = evolution

    def record_evolution(self, pollen_id: str, evolution: PolledEvolution):
        """Record the evolution most recently saved for a pollen."""
        self._pollens[pollen_id].last_polled_evolution = evolution

    def remove(self, pollen_id: str) -> Optional[PollenInfo]:
        """
        Stop tracking a pollen.

        An applied pollen is remembered as retired so duplicates of its done
        message keep being ignored.
        """
        pollen = self._pollens.pop(pollen_id, None)
        if pollen is not None and pollen.status == PollenStatus.APPLIED_ONCE:
            self._retired[pollen_id] = pollen
            self._retired.move_to_end(pollen_id)
            while len(self._retired) > RETIRED_MEMORY:
                self._retired.popitem(last=False)
        return pollen
