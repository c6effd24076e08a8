# artifact_gatherer/gather/consumers.py
# Gate between finished artifacts and whatever consumes them (audits, report
# sections). A broken required chain drops only the consumer that needed it.
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

from pydantic import BaseModel

from artifact_gatherer.errors import ArtifactMissing
from artifact_gatherer.gather.artifacts import ArtifactSet

logger = logging.getLogger(__name__)


class ArtifactConsumer(Protocol):
    id: str
    required_artifacts: Sequence[str]

    def evaluate(self, artifacts: Dict[str, Any]) -> Any: ...


class ConsumerOutcome(BaseModel):
    id: str
    value: Any = None
    fatal_reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.fatal_reason is None


def run_consumers(artifacts: ArtifactSet, consumers: Iterable[ArtifactConsumer]) -> List[ConsumerOutcome]:
    outcomes: List[ConsumerOutcome] = []
    for consumer in consumers:
        try:
            inputs = {name: artifacts.require(name) for name in consumer.required_artifacts}
        except ArtifactMissing as e:
            logger.warning("Omitting %s: %s", consumer.id, e)
            outcomes.append(ConsumerOutcome(id=consumer.id, fatal_reason=str(e)))
            continue
        try:
            value = consumer.evaluate(inputs)
        except Exception as e:
            logger.exception("Consumer %s failed", consumer.id)
            outcomes.append(ConsumerOutcome(id=consumer.id, fatal_reason=f"{type(e).__name__}: {e}"))
            continue
        outcomes.append(ConsumerOutcome(id=consumer.id, value=value))
    return outcomes
