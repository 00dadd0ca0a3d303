"""Kubernetes cluster adapter.

Implements ClusterPort with the official kubernetes client. The client
is synchronous, so every API call runs in a worker thread to keep the
event loop responsive.
"""

import asyncio
import logging
from typing import Any

from kubernetes import client, config
from kubernetes.client import ApiException, AppsV1Api, CoreV1Api

from keelpoll.core.models import Container, Deployment
from keelpoll.core.ports import ClusterPort

logger = logging.getLogger(__name__)


def load_api_client(
    in_cluster: bool | None = None,
    config_file: str | None = None,
    context: str | None = None,
) -> client.ApiClient:
    """Build an ApiClient from in-cluster credentials or a kubeconfig.

    Args:
        in_cluster: True to require the service account config, False to
            require a kubeconfig, None to try in-cluster first and fall
            back to the kubeconfig.
        config_file: Kubeconfig path (defaults to ~/.kube/config).
        context: Kubeconfig context to use (defaults to the current one).
    """
    if in_cluster is not False:
        configuration = client.Configuration()
        try:
            config.load_incluster_config(client_configuration=configuration)
            logger.info("Loaded in-cluster Kubernetes config")
            return client.ApiClient(configuration)
        except config.ConfigException:
            if in_cluster:
                raise
            logger.debug("In-cluster config not available, falling back to kubeconfig")

    api_client = config.new_client_from_config(config_file=config_file, context=context)
    logger.info("Loaded Kubernetes config from kubeconfig")
    return api_client


def to_deployment(obj: Any) -> Deployment:
    """Normalize a V1Deployment into a core Deployment."""
    metadata = obj.metadata
    template_spec = None
    if obj.spec is not None and obj.spec.template is not None:
        template_spec = obj.spec.template.spec

    containers = tuple(
        Container(name=c.name or "", image=c.image or "")
        for c in ((template_spec.containers if template_spec else None) or [])
    )
    return Deployment(
        namespace=metadata.namespace or "",
        name=metadata.name or "",
        labels=dict(metadata.labels or {}),
        containers=containers,
    )


class KubernetesClusterAdapter(ClusterPort):
    """Reads namespaces and deployments from the Kubernetes API."""

    def __init__(
        self,
        core_api: CoreV1Api | None = None,
        apps_api: AppsV1Api | None = None,
        in_cluster: bool | None = None,
        config_file: str | None = None,
        context: str | None = None,
        page_size: int = 500,
    ):
        """Initialize the Kubernetes adapter.

        Args:
            core_api: Pre-built CoreV1Api (built from config if omitted).
            apps_api: Pre-built AppsV1Api (built from config if omitted).
            in_cluster: See load_api_client().
            config_file: Kubeconfig path.
            context: Kubeconfig context.
            page_size: Page size for list calls.
        """
        if core_api is None or apps_api is None:
            api_client = load_api_client(in_cluster, config_file, context)
            core_api = core_api or CoreV1Api(api_client)
            apps_api = apps_api or AppsV1Api(api_client)
        self.core_api = core_api
        self.apps_api = apps_api
        self.page_size = page_size

    async def list_namespaces(self) -> list[str]:
        """Return the names of every namespace."""
        try:
            items = await asyncio.to_thread(
                self._list_all, self.core_api.list_namespace
            )
        except ApiException as e:
            logger.error(f"Failed to list namespaces: {e.status} {e.reason}")
            raise
        return [item.metadata.name for item in items]

    async def list_deployments(self, namespace: str) -> list[Deployment]:
        """Return every deployment in a namespace."""
        try:
            items = await asyncio.to_thread(
                self._list_all,
                self.apps_api.list_namespaced_deployment,
                namespace=namespace,
            )
        except ApiException as e:
            logger.error(
                f"Failed to list deployments in {namespace}: {e.status} {e.reason}",
                extra={"namespace": namespace},
            )
            raise
        return [to_deployment(item) for item in items]

    def _list_all(self, list_fn: Any, **kwargs: Any) -> list[Any]:
        """Follow continue tokens until every page has been read."""
        items: list[Any] = []
        token: str | None = None
        while True:
            if token:
                response = list_fn(limit=self.page_size, _continue=token, **kwargs)
            else:
                response = list_fn(limit=self.page_size, **kwargs)
            items.extend(response.items or [])
            token = getattr(response.metadata, "_continue", None)
            if not token:
                return items
