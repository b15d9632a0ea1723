"""
Status writers - surface reconcile outcomes on the declared resource.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Optional

from kubernetes import client
from kubernetes.client.rest import ApiException

from mongo_collections.models.outcome import OutcomeKind, StatusReport

logger = logging.getLogger(__name__)

PHASES = {
    OutcomeKind.SUCCESS: "Ready",
    OutcomeKind.TRANSIENT_FAILURE: "Pending",
    OutcomeKind.PERMANENT_FAILURE: "Error",
}

HEALTH = {
    OutcomeKind.SUCCESS: "Healthy",
    OutcomeKind.TRANSIENT_FAILURE: "Degraded",
    OutcomeKind.PERMANENT_FAILURE: "Unhealthy",
}

REASONS = {
    OutcomeKind.SUCCESS: "Reconciled",
    OutcomeKind.TRANSIENT_FAILURE: "TransientFailure",
    OutcomeKind.PERMANENT_FAILURE: "PermanentFailure",
}


class StatusWriter:
    """Receives one report per reconcile pass."""

    async def write(self, report: StatusReport) -> None:
        raise NotImplementedError

    def forget(self, namespace: str, name: str) -> None:
        """Drop anything remembered about a deleted resource."""


class LoggingStatusWriter(StatusWriter):
    """Only logs the reports. Used when status writing is disabled."""

    async def write(self, report: StatusReport) -> None:
        logger.info(
            f"Status of {report.namespace}/{report.name}: "
            f"{PHASES[report.outcome.kind]} - {report.message}"
        )


def status_body(report: StatusReport) -> dict[str, Any]:
    """Merge patch for the status subresource."""
    kind = report.outcome.kind
    timestamp = report.timestamp.isoformat().replace("+00:00", "Z")
    return {
        "status": {
            "phase": PHASES[kind],
            "health": {"status": HEALTH[kind]},
            "message": report.message,
            "observedGeneration": report.generation,
            "lastUpdated": timestamp,
            "conditions": [
                {
                    "type": "Ready",
                    "status": "True" if kind == OutcomeKind.SUCCESS else "False",
                    "reason": REASONS[kind],
                    "message": report.message,
                    "observedGeneration": report.generation,
                    "lastTransitionTime": timestamp,
                }
            ],
        }
    }


class KubernetesStatusWriter(StatusWriter):
    """
    Patches the status subresource of the MongoCollection and records a
    Warning event for every failed pass.

    A report equal to the last one written for the same generation is
    skipped, so periodic resyncs don't patch the resource every minute.
    """

    def __init__(
        self,
        group: str,
        version: str,
        plural: str,
        kind: str,
        controller_name: str,
        custom_objects: Optional[client.CustomObjectsApi] = None,
        core: Optional[client.CoreV1Api] = None,
    ):
        self.group = group
        self.version = version
        self.plural = plural
        self.kind = kind
        self.controller_name = controller_name
        self.custom_objects = custom_objects or client.CustomObjectsApi()
        self.core = core or client.CoreV1Api()
        self._last: dict[tuple[str, str], tuple[Optional[int], OutcomeKind, str]] = {}

    async def write(self, report: StatusReport) -> None:
        key = (report.namespace, report.name)
        state = (report.generation, report.outcome.kind, report.message)
        if self._last.get(key) == state:
            return

        await asyncio.to_thread(self._patch_status, report)
        self._last[key] = state

        if not report.outcome.is_success:
            await asyncio.to_thread(self._record_event, report)

    def _patch_status(self, report: StatusReport) -> None:
        try:
            self.custom_objects.patch_namespaced_custom_object_status(
                self.group,
                self.version,
                report.namespace,
                self.plural,
                report.name,
                status_body(report),
            )
        except ApiException as e:
            if e.status == 404:
                logger.debug(f"{report.namespace}/{report.name} is gone, status not written")
                return
            raise

    def _record_event(self, report: StatusReport) -> None:
        now = datetime.now(report.timestamp.tzinfo)
        event = client.CoreV1Event(
            metadata=client.V1ObjectMeta(generate_name=f"{report.name}."),
            involved_object=client.V1ObjectReference(
                api_version=f"{self.group}/{self.version}",
                kind=self.kind,
                name=report.name,
                namespace=report.namespace,
            ),
            reason="Error",
            message=report.message,
            type="Warning",
            action="update",
            count=1,
            first_timestamp=now,
            last_timestamp=now,
            source=client.V1EventSource(component=self.controller_name),
            reporting_component=self.controller_name,
        )
        self.core.create_namespaced_event(report.namespace, event)

    def forget(self, namespace: str, name: str) -> None:
        """Drop the remembered status of a deleted resource."""
        self._last.pop((namespace, name), None)
