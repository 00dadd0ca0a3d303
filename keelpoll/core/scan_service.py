"""Scan logic for the poll trigger.

This module implements a single reconciliation pass: enumerate every
deployment in the cluster, keep those opted in to the poll trigger, and
make sure the watcher has a watch for each of their container images.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timezone

from .models import (
    Deployment,
    DeploymentBatch,
    DeploymentCheck,
    Enumeration,
    NamespaceFailure,
    PolicyType,
    ScanResult,
    TriggerType,
    WatchRequest,
)
from .policy import (
    POLICY_LABEL,
    POLL_SCHEDULE_LABEL,
    TRIGGER_LABEL,
    classify_policy,
    classify_trigger,
    resolve_schedule,
)
from .ports import ClusterPort, ScanPort, WatcherPort
from .schedule import DEFAULT_POLL_SCHEDULE, validate_schedule

logger = logging.getLogger(__name__)


class ScanService(ScanPort):
    """Implements the scan-and-dispatch pass.

    This service orchestrates:
    - Enumerating deployments across all namespaces
    - Filtering by policy and trigger labels
    - Validating each deployment's poll schedule
    - Dispatching watch requests for every container image

    Failures are isolated per namespace and per deployment; only a
    failure to list namespaces aborts the scan.
    """

    def __init__(
        self,
        cluster: ClusterPort,
        watcher: WatcherPort,
        default_schedule: str = DEFAULT_POLL_SCHEDULE,
        policy_label: str = POLICY_LABEL,
        trigger_label: str = TRIGGER_LABEL,
        schedule_label: str = POLL_SCHEDULE_LABEL,
        schedule_validator: Callable[[str], None] = validate_schedule,
    ):
        self.cluster = cluster
        self.watcher = watcher
        self.default_schedule = default_schedule
        self.policy_label = policy_label
        self.trigger_label = trigger_label
        self.schedule_label = schedule_label
        self.validate = schedule_validator

    async def enumerate_deployments(self) -> Enumeration:
        """Collect deployments from every namespace.

        Raises:
            Exception: If the namespace list cannot be retrieved.
        """
        namespaces = await self.cluster.list_namespaces()

        batches: list[DeploymentBatch] = []
        failures: list[NamespaceFailure] = []

        for namespace in namespaces:
            try:
                deployments = await self.cluster.list_deployments(namespace)
            except Exception as e:
                logger.error(
                    f"Failed to list deployments in namespace {namespace}: {e}",
                    extra={"namespace": namespace},
                )
                failures.append(NamespaceFailure(namespace=namespace, error=str(e)))
                continue
            batches.append(
                DeploymentBatch(namespace=namespace, deployments=tuple(deployments))
            )

        return Enumeration(batches=tuple(batches), failures=tuple(failures))

    def is_poll_triggered(self, deployment: Deployment) -> bool:
        """Does this deployment take part in poll-based triggering?"""
        if classify_policy(deployment.labels, self.policy_label) is PolicyType.NONE:
            return False
        return (
            classify_trigger(deployment.labels, self.trigger_label)
            is TriggerType.POLL
        )

    async def check_deployment(self, deployment: Deployment) -> DeploymentCheck:
        """Ensure every container image of a deployment is watched.

        Processing stops at the first container whose schedule is invalid
        or whose watch request fails; the error is recorded in the result.
        """
        requests: list[WatchRequest] = []

        for container in deployment.containers:
            schedule = resolve_schedule(
                deployment.labels, self.default_schedule, self.schedule_label
            )
            context = {
                "schedule": schedule,
                "image": container.image,
                "deployment": deployment.name,
                "namespace": deployment.namespace,
            }

            try:
                self.validate(schedule)
            except Exception as e:
                logger.error(
                    f"Failed to parse poll schedule {schedule!r} for image "
                    f"{container.image} in {deployment.key}: {e}",
                    extra=context,
                )
                return DeploymentCheck(
                    namespace=deployment.namespace,
                    name=deployment.name,
                    requests=tuple(requests),
                    error=str(e),
                    image=container.image,
                    schedule=schedule,
                )

            request = WatchRequest(image=container.image, schedule=schedule)
            try:
                await self.watcher.watch(request)
            except Exception as e:
                logger.error(
                    f"Failed to start watching repository {container.image} "
                    f"for {deployment.key}: {e}",
                    extra=context,
                )
                return DeploymentCheck(
                    namespace=deployment.namespace,
                    name=deployment.name,
                    requests=tuple(requests),
                    error=str(e),
                    image=container.image,
                    schedule=schedule,
                )
            requests.append(request)

        return DeploymentCheck(
            namespace=deployment.namespace,
            name=deployment.name,
            requests=tuple(requests),
        )

    async def execute_scan(
        self, stop_event: asyncio.Event | None = None
    ) -> ScanResult:
        """Reconcile every poll-triggered deployment with the watcher.

        Returns a summary of what was found and dispatched.
        """
        started_at = datetime.now(timezone.utc)
        enumeration = await self.enumerate_deployments()
        deployments = enumeration.deployments

        checks: list[DeploymentCheck] = []
        skipped = 0
        cancelled = False

        for deployment in deployments:
            if stop_event is not None and stop_event.is_set():
                logger.info("Scan cancelled, skipping remaining deployments")
                cancelled = True
                break

            if not self.is_poll_triggered(deployment):
                skipped += 1
                continue

            context = {
                "deployment": deployment.name,
                "namespace": deployment.namespace,
            }
            try:
                check = await self.check_deployment(deployment)
            except Exception as e:
                logger.error(
                    f"Failed to check deployment {deployment.key} poll status: {e}",
                    exc_info=True,
                    extra=context,
                )
                check = DeploymentCheck(
                    namespace=deployment.namespace,
                    name=deployment.name,
                    error=str(e),
                )
            else:
                if not check.ok:
                    logger.error(
                        f"Failed to check deployment {deployment.key} poll status: "
                        f"{check.error}",
                        extra=context,
                    )
            checks.append(check)

        result = ScanResult(
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            namespaces_listed=len(enumeration.batches) + len(enumeration.failures),
            namespace_failures=enumeration.failures,
            deployments_seen=len(deployments),
            deployments_skipped=skipped,
            checks=tuple(checks),
            cancelled=cancelled,
        )
        logger.debug(
            f"Scan finished: {result.deployments_seen} deployments, "
            f"{len(result.checks)} poll-triggered, "
            f"{result.watches_dispatched} watches dispatched"
        )
        return result
