import asyncio
import logging
from typing import Any, Iterable, List, Optional

from kubernetes import client

from .config import Configuration
from .models import LabelPair

logger = logging.getLogger(__name__)


class PodNotFoundError(LookupError):
    pass


def render_label_selector(pairs: Optional[Iterable[LabelPair]]) -> Optional[str]:
    """Render label pairs as a Kubernetes label selector string."""
    if not pairs:
        return None
    return ",".join(
        pair.key if pair.value is None else f"{pair.key}={pair.value}" for pair in pairs
    )


class PodClient:
    def __init__(self, config: Configuration, core_api: Optional[client.CoreV1Api] = None):
        self.config = config
        self.v1 = core_api or client.CoreV1Api()
        self.label_selector = render_label_selector(config.pod_label_selector)

    async def _call(self, func, *args, **kwargs):
        # The kubernetes client is blocking; keep it off the event loop
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, lambda: func(*args, **kwargs))

    async def get_mongo_pods(self) -> List[Any]:
        kwargs = {}
        if self.label_selector:
            kwargs["label_selector"] = self.label_selector

        if self.config.namespace:
            pods = await self._call(
                self.v1.list_namespaced_pod, namespace=self.config.namespace, **kwargs
            )
        else:
            pods = await self._call(self.v1.list_pod_for_all_namespaces, **kwargs)

        return list(pods.items or [])

    @staticmethod
    def _pod_ips(pod: Any) -> List[str]:
        status = pod.status
        if status is None:
            return []

        # Older kubernetes models name the field pod_i_ps
        entries = getattr(status, "pod_ips", None) or getattr(status, "pod_i_ps", None) or []
        ips = [entry.ip for entry in entries if entry.ip]
        if status.pod_ip and status.pod_ip not in ips:
            ips.append(status.pod_ip)
        return ips

    async def get_this_pod(self) -> Any:
        if self.config.pod_name and self.config.namespace:
            logger.debug(
                f"Reading pod {self.config.pod_name} in namespace {self.config.namespace}"
            )
            return await self._call(
                self.v1.read_namespaced_pod,
                name=self.config.pod_name,
                namespace=self.config.namespace,
            )

        own_addresses = set(self.config.own_addresses)
        for pod in await self.get_mongo_pods():
            if own_addresses.intersection(self._pod_ips(pod)):
                logger.debug(f"Matched own pod {pod.metadata.name} by address")
                return pod

        raise PodNotFoundError(
            f"No pod matches own addresses {sorted(own_addresses)} "
            f"(selector: {self.label_selector})"
        )

    def get_pod_stable_network_address_and_port(self, pod: Any) -> Optional[str]:
        if not self.config.mongo_service_name or pod is None or pod.metadata is None:
            return None

        pod_name = pod.metadata.name
        if not pod_name:
            return None

        namespace = pod.metadata.namespace or self.config.namespace
        dns_name = (
            f"{pod_name}.{self.config.mongo_service_name}.{namespace}"
            f".svc.{self.config.cluster_domain}"
        )
        return f"{dns_name}:{self.config.mongo_port}"

    def get_pod_ip_address_and_port(self, pod: Any) -> Optional[str]:
        if pod is None or pod.status is None or not pod.status.pod_ip:
            return None
        return f"{pod.status.pod_ip}:{self.config.mongo_port}"
