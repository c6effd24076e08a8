from __future__ import annotations

import logging
from typing import Any, Dict, List

from artifact_gatherer.computed.cache import ComputedArtifact
from artifact_gatherer.infra.error_sink import ErrorSink
from artifact_gatherer.models.events import ErrorReport
from artifact_gatherer.models.network import NetworkRequest
from artifact_gatherer.network.records import NetworkRecordReconstructor
from artifact_gatherer.network.urls import elide_data_uri

logger = logging.getLogger(__name__)


def compute_network_records(inputs: Dict[str, Any], error_sink: ErrorSink) -> List[NetworkRequest]:
    reconstructor = NetworkRecordReconstructor()
    for event in inputs["DevtoolsLog"]:
        reconstructor.dispatch(event)
    for issue in reconstructor.incomplete():
        logger.info("%s", issue)
        error_sink.report(ErrorReport(
            component="NetworkRecords",
            message=f"request {issue.request_id} never finished",
            url=elide_data_uri(issue.url) or None,
            severity="warning",
        ))
    return reconstructor.finalize()


NetworkRecords = ComputedArtifact(
    name="NetworkRecords",
    requires=("DevtoolsLog",),
    compute=compute_network_records,
    reports_issues=True,
)

DEFAULT_COMPUTED = (NetworkRecords,)
