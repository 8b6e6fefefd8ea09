import asyncio
import logging
from typing import Optional

from .config import Configuration
from .k8s_client import PodClient
from .mongo_client import MongoAdminClient

logger = logging.getLogger(__name__)


def choose_primary_address(
    stable_address_and_port: Optional[str], pod_ip_address_and_port: Optional[str]
) -> Optional[str]:
    """Prefer the stable network identity over the pod IP, if present."""
    return stable_address_and_port or pod_ip_address_and_port


class ReplicaSetBootstrapper:
    """
    Initiates a single-member replica set with this pod as primary.

    Must run at most once in the lifetime of the cluster. The chosen address
    is written into the replica set config and every other member trusts it
    from then on, so it is picked once and never revisited here. A repeated
    initiate is only caught by mongod rejecting it.

    Failures before the initiate command is issued leave the instance
    reusable, so the caller may retry the whole operation.
    """

    def __init__(
        self,
        config: Configuration,
        pod_client: PodClient,
        mongo_client: MongoAdminClient,
    ):
        self.config = config
        self.pod_client = pod_client
        self.mongo_client = mongo_client
        self.initiate_issued = False

    async def _resolve_and_initiate(self, db) -> str:
        primary = await self.pod_client.get_this_pod()

        primary_address_and_port = choose_primary_address(
            self.pod_client.get_pod_stable_network_address_and_port(primary),
            self.pod_client.get_pod_ip_address_and_port(primary),
        )
        logger.debug(f"Start initialising replica set with primary {primary_address_and_port}")

        self.initiate_issued = True
        await self.mongo_client.init_repl_set(db, primary_address_and_port)
        logger.info(f"Initialised replica set with primary {primary_address_and_port}")
        return primary_address_and_port

    async def initialise_replica_set(self) -> str:
        if self.initiate_issued:
            raise RuntimeError("Replica set initialisation may only be attempted once")

        handle = self.mongo_client.get_db()
        try:
            logger.info("MongoDB replica set not yet initialised. Initialising now.")
            if not self.config.own_addresses:
                logger.error("Please set the POD_IP environment variable.")

            if self.config.bootstrap_timeout_seconds is None:
                return await self._resolve_and_initiate(handle.db)

            try:
                return await asyncio.wait_for(
                    self._resolve_and_initiate(handle.db),
                    timeout=self.config.bootstrap_timeout_seconds,
                )
            except asyncio.TimeoutError:
                if self.initiate_issued:
                    logger.warning(
                        f"Replica set initiate exceeded {self.config.bootstrap_timeout_seconds}s; "
                        "the command may still be running against a closed connection"
                    )
                else:
                    logger.warning(
                        f"Pod lookup exceeded {self.config.bootstrap_timeout_seconds}s, "
                        "replica set initiate was not issued"
                    )
                raise
        finally:
            handle.close()
