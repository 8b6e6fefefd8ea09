import asyncio
import logging
from typing import Any, Dict

import backoff
from pymongo import MongoClient
from pymongo.errors import OperationFailure

from .config import Configuration
from .models import DbHandle

logger = logging.getLogger(__name__)

# replSetGetStatus error code when no replica set config exists yet
NOT_YET_INITIALIZED = 94

RECONFIG_MAX_TRIES = 20
RECONFIG_INTERVAL_SECONDS = 0.5


class MongoAdminClient:
    def __init__(self, config: Configuration, host: str = "localhost", timeout: int = 30):
        self.config = config
        self.host = host
        self.timeout = timeout

    def _client_options(self) -> Dict[str, Any]:
        options: Dict[str, Any] = {
            "host": self.host,
            "port": self.config.mongo_port,
            # Talk to this member only; there is no replica set to discover yet
            "directConnection": True,
            "serverSelectionTimeoutMS": self.timeout * 1000,
            "connectTimeoutMS": self.timeout * 1000,
            "socketTimeoutMS": self.timeout * 1000,
        }

        if self.config.credentials:
            options["username"] = self.config.credentials.username
            options["password"] = self.config.credentials.password
            options["authSource"] = self.config.database

        if self.config.tls_enabled:
            options["tls"] = True
            options["tlsAllowInvalidCertificates"] = self.config.tls_allow_invalid_certificates
            options["tlsAllowInvalidHostnames"] = self.config.tls_allow_invalid_hostnames
            if self.config.tls_allow_invalid_certificates:
                logger.warning(f"TLS certificate verification disabled for {self.host}")

        return options

    def get_db(self) -> DbHandle:
        mongo = MongoClient(**self._client_options())
        logger.debug(f"Opened connection to {self.host}:{self.config.mongo_port}")
        return DbHandle(db=mongo[self.config.database], close=mongo.close)

    async def _run(self, func, *args, **kwargs):
        # pymongo is blocking; run commands in the default executor
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, lambda: func(*args, **kwargs))

    async def is_repl_set_initialised(self, db) -> bool:
        try:
            await self._run(db.client.admin.command, "replSetGetStatus")
            return True
        except OperationFailure as e:
            if e.code == NOT_YET_INITIALIZED:
                return False
            logger.error(f"Failed to read replica set status from {self.host}: {e}")
            raise

    @backoff.on_exception(
        backoff.constant,
        OperationFailure,
        max_tries=RECONFIG_MAX_TRIES,
        interval=RECONFIG_INTERVAL_SECONDS,
        jitter=None,
    )
    def _reconfig(self, admin, rs_config: Dict[str, Any], force: bool = False):
        return admin.command("replSetReconfig", rs_config, force=force)

    def _initiate(self, db, primary_address_and_port: str) -> Dict[str, Any]:
        admin = db.client.admin
        admin.command("replSetInitiate", {})

        # mongod names itself by its local hostname, which other members
        # cannot resolve; replace it with the chosen address
        rs_config = admin.command("replSetGetConfig")["config"]
        rs_config["configsvr"] = self.config.is_config_server
        rs_config["members"][0]["host"] = primary_address_and_port
        rs_config["version"] = rs_config.get("version", 1) + 1

        self._reconfig(admin, rs_config)
        return rs_config

    async def init_repl_set(self, db, primary_address_and_port: str) -> None:
        try:
            rs_config = await self._run(self._initiate, db, primary_address_and_port)
        except Exception as e:
            logger.error(
                f"Failed to initiate replica set with primary {primary_address_and_port}: {e}"
            )
            raise

        logger.debug(f"Replica set config after initiate: {rs_config}")
