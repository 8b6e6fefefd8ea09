from dataclasses import replace
from unittest.mock import patch
from urllib.parse import urlparse

import pytest

from mongo_k8s_sidecar.config import Configuration

# Configure pytest-asyncio
pytest_plugins = ("pytest_asyncio",)


BASE_CONFIGURATION = Configuration(
    own_addresses=("10.0.0.5",),
    pod_name="mongo-0",
    namespace="db",
    credentials=None,
    database="local",
    loop_sleep_seconds=5,
    unhealthy_seconds=15,
    tls_enabled=False,
    tls_allow_invalid_certificates=False,
    tls_allow_invalid_hostnames=False,
    pod_label_selector=None,
    mongo_service_name=None,
    cluster_domain="cluster.local",
    mongo_port=27017,
    is_config_server=False,
    message_queue_url=urlparse("redis://localhost:6379"),
)


@pytest.fixture
def make_config():
    """Build a Configuration from sane defaults plus overrides"""

    def _make(**overrides):
        return replace(BASE_CONFIGURATION, **overrides)

    return _make


@pytest.fixture
def mock_logging():
    """Mock logging to reduce test noise"""
    with (
        patch("mongo_k8s_sidecar.mongo_client.logger"),
        patch("mongo_k8s_sidecar.bootstrap.logger"),
        patch("mongo_k8s_sidecar.k8s_client.logger"),
    ):
        yield
