import asyncio
import ipaddress
import logging
import os
import re
import socket
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import ParseResult

import dns.asyncresolver
import dns.resolver
import psutil

from .models import Credentials, LabelPair
from .security import SecurityValidator

logger = logging.getLogger(__name__)

DEFAULT_DATABASE = "local"
DEFAULT_CLUSTER_DOMAIN = "cluster.local"
DEFAULT_MONGO_PORT = 27017
DEFAULT_MESSAGE_QUEUE_URL = "redis://localhost:6379"
DEFAULT_LOOP_SLEEP_SECONDS = 5
DEFAULT_UNHEALTHY_SECONDS = 15

CONFIG_SERVER_PATTERN = re.compile(r"^(?:y|yes|true|1)$", re.IGNORECASE)


@dataclass(frozen=True)
class Configuration:
    own_addresses: Tuple[str, ...]
    pod_name: Optional[str]
    namespace: Optional[str]
    credentials: Optional[Credentials]
    database: str
    loop_sleep_seconds: int
    unhealthy_seconds: int
    tls_enabled: bool
    tls_allow_invalid_certificates: bool
    tls_allow_invalid_hostnames: bool
    pod_label_selector: Optional[Tuple[LabelPair, ...]]
    mongo_service_name: Optional[str]
    cluster_domain: str
    mongo_port: int
    is_config_server: bool
    message_queue_url: ParseResult
    log_level: str = "info"
    environment: str = "local"
    k8s_ro_service_address: Optional[str] = None
    bootstrap_timeout_seconds: Optional[float] = None

    def log_summary(self) -> Dict[str, Any]:
        """Loggable view of the configuration with credentials redacted"""
        summary = {
            "own_addresses": list(self.own_addresses),
            "pod_name": self.pod_name,
            "namespace": self.namespace,
            "username": self.credentials.username if self.credentials else None,
            "password": self.credentials.password if self.credentials else None,
            "database": self.database,
            "loop_sleep_seconds": self.loop_sleep_seconds,
            "unhealthy_seconds": self.unhealthy_seconds,
            "tls_enabled": self.tls_enabled,
            "tls_allow_invalid_certificates": self.tls_allow_invalid_certificates,
            "tls_allow_invalid_hostnames": self.tls_allow_invalid_hostnames,
            "pod_label_selector": [
                f"{pair.key}={pair.value}" for pair in self.pod_label_selector or ()
            ],
            "mongo_service_name": self.mongo_service_name,
            "cluster_domain": self.cluster_domain,
            "mongo_port": self.mongo_port,
            "is_config_server": self.is_config_server,
            "message_queue_url": SecurityValidator.redact_url(self.message_queue_url),
            "environment": self.environment,
            "k8s_ro_service_address": self.k8s_ro_service_address,
            "bootstrap_timeout_seconds": self.bootstrap_timeout_seconds,
        }
        return SecurityValidator.sanitize_log_data(summary)


def resolve_own_addresses() -> List[str]:
    """Return the addresses of all non-loopback network interfaces."""
    addresses = []
    for name, interface_addresses in psutil.net_if_addrs().items():
        for address in interface_addresses:
            # AF_LINK entries carry MAC addresses
            if address.family not in (socket.AF_INET, socket.AF_INET6):
                continue
            ip = address.address.split("%", 1)[0]
            try:
                if ipaddress.ip_address(ip).is_loopback:
                    continue
            except ValueError:
                logger.debug(f"Skipping unparseable address {address.address} on {name}")
                continue
            addresses.append(ip)
    return addresses


def parse_label_selector(raw: Optional[str]) -> List[LabelPair]:
    """
    Parse ``KEY=VALUE[,KEY=VALUE...]`` into label pairs.

    Unset or empty input yields an empty list. Entries without ``=`` are
    kept with a value of None rather than rejected.
    """
    if not raw:
        return []

    pairs = []
    for entry in raw.split(","):
        key_and_value = entry.split("=")
        value = key_and_value[1] if len(key_and_value) > 1 else None
        pairs.append(LabelPair(key=key_and_value[0], value=value))
    return pairs


def parse_boolean(raw: Optional[str]) -> bool:
    # Only the exact string "true" counts; "1" or "yes" do not.
    return raw == "true"


def parse_config_server_flag(raw: Optional[str]) -> bool:
    value = (raw or "").strip().lower()
    is_config_server = bool(CONFIG_SERVER_PATTERN.match(value))
    if is_config_server:
        logger.info(f"ReplicaSet is configured as a configsvr (CONFIG_SVR={value})")
    return is_config_server


def _parse_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _parse_timeout(raw: Optional[str]) -> Optional[float]:
    if not raw:
        return None
    try:
        timeout = float(raw)
    except ValueError:
        raise ValueError(f"MONGO_SIDECAR_BOOTSTRAP_TIMEOUT_SECONDS must be a number, got {raw!r}")
    if timeout <= 0:
        raise ValueError("MONGO_SIDECAR_BOOTSTRAP_TIMEOUT_SECONDS must be positive")
    return timeout


async def verify_cluster_domain(cluster_domain: str) -> None:
    """
    Reverse-resolve the first configured DNS server and check that its
    hostname lives under ``cluster_domain``.

    Advisory only: every outcome is logged and nothing is raised.
    """
    if not cluster_domain:
        return

    try:
        servers = [str(server) for server in dns.asyncresolver.get_default_resolver().nameservers]
    except dns.resolver.NoResolverConfiguration:
        servers = []

    if not servers:
        logger.error(
            f"No DNS servers configured when verifying the cluster domain {cluster_domain}"
        )
        return

    try:
        answer = await dns.asyncresolver.resolve_address(servers[0])
        hosts = [str(record.target).rstrip(".") for record in answer]
    except Exception as e:
        logger.warning(
            f"Error occurred trying to verify the cluster domain {cluster_domain} "
            f"(servers: {servers}): {e}"
        )
        return

    if not hosts or not hosts[0].endswith(cluster_domain):
        logger.warning(
            f"Possibly wrong cluster domain name {cluster_domain}! "
            f"DNS server resolves to {hosts}"
        )
    else:
        logger.info(f"The cluster domain {cluster_domain} was successfully verified")


def start_domain_verification(cluster_domain: str) -> asyncio.Task:
    """Spawn domain verification as a detached task; requires a running loop."""
    return asyncio.create_task(verify_cluster_domain(cluster_domain))


def load_configuration(environ: Optional[Mapping[str, str]] = None) -> Configuration:
    if environ is None:
        environ = os.environ

    own_addresses = resolve_own_addresses()
    if not own_addresses:
        pod_ip = environ.get("POD_IP")
        own_addresses = [pod_ip] if pod_ip else []
        logger.info(f"No local interface addresses found, using POD_IP: {pod_ip}")

    pod_name = environ.get("POD_NAME") or None
    if pod_name:
        SecurityValidator.validate_kubernetes_name(pod_name, "pod name")

    namespace = environ.get("KUBE_NAMESPACE") or None
    if namespace:
        SecurityValidator.validate_kubernetes_name(namespace, "namespace")

    username = environ.get("MONGODB_USERNAME")
    credentials = (
        Credentials(username=username, password=environ.get("MONGODB_PASSWORD"))
        if username
        else None
    )

    label_selector = parse_label_selector(environ.get("MONGO_SIDECAR_POD_LABELS"))

    mongo_service_name = environ.get("KUBERNETES_MONGO_SERVICE_NAME") or None
    if mongo_service_name:
        SecurityValidator.validate_kubernetes_name(mongo_service_name, "service name")

    cluster_domain = environ.get("KUBERNETES_CLUSTER_DOMAIN") or DEFAULT_CLUSTER_DOMAIN

    mongo_port = SecurityValidator.validate_port(
        environ.get("MONGO_PORT") or DEFAULT_MONGO_PORT
    )
    logger.info(f"Using mongo port: {mongo_port}")

    message_queue_url = SecurityValidator.validate_url(
        environ.get("REDIS_URL") or DEFAULT_MESSAGE_QUEUE_URL
    )
    logger.info(f"Redis URL {SecurityValidator.redact_url(message_queue_url)}")

    service_host = environ.get("KUBERNETES_SERVICE_HOST")
    k8s_ro_service_address = (
        f"{service_host}:{environ.get('KUBERNETES_SERVICE_PORT')}" if service_host else None
    )

    return Configuration(
        own_addresses=tuple(own_addresses),
        pod_name=pod_name,
        namespace=namespace,
        credentials=credentials,
        database=environ.get("MONGODB_DATABASE") or DEFAULT_DATABASE,
        loop_sleep_seconds=_parse_int(
            environ, "MONGO_SIDECAR_SLEEP_SECONDS", DEFAULT_LOOP_SLEEP_SECONDS
        ),
        unhealthy_seconds=_parse_int(
            environ, "MONGO_SIDECAR_UNHEALTHY_SECONDS", DEFAULT_UNHEALTHY_SECONDS
        ),
        tls_enabled=parse_boolean(environ.get("MONGO_SSL_ENABLED")),
        tls_allow_invalid_certificates=parse_boolean(
            environ.get("MONGO_SSL_ALLOW_INVALID_CERTIFICATES")
        ),
        tls_allow_invalid_hostnames=parse_boolean(
            environ.get("MONGO_SSL_ALLOW_INVALID_HOSTNAMES")
        ),
        pod_label_selector=tuple(label_selector) or None,
        mongo_service_name=mongo_service_name,
        cluster_domain=cluster_domain,
        mongo_port=mongo_port,
        is_config_server=parse_config_server_flag(environ.get("CONFIG_SVR")),
        message_queue_url=message_queue_url,
        log_level=environ.get("LOG_LEVEL") or "info",
        environment=environ.get("NODE_ENV") or "local",
        k8s_ro_service_address=k8s_ro_service_address,
        bootstrap_timeout_seconds=_parse_timeout(
            environ.get("MONGO_SIDECAR_BOOTSTRAP_TIMEOUT_SECONDS")
        ),
    )
