#!/usr/bin/env python3

import asyncio
import logging
import os
import sys

from kubernetes import config as kube_config

from .bootstrap import ReplicaSetBootstrapper
from .config import load_configuration, start_domain_verification
from .k8s_client import PodClient
from .mongo_client import MongoAdminClient

LOG_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
}


def setup_logging(level: str = "info"):
    logging.basicConfig(
        level=LOG_LEVELS.get(level.lower(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    logging.getLogger("kubernetes").setLevel(logging.WARNING)
    logging.getLogger("pymongo").setLevel(logging.WARNING)


def setup_kubernetes():
    try:
        kube_config.load_incluster_config()
        logging.info("Using in-cluster Kubernetes configuration")
    except kube_config.ConfigException:
        try:
            kube_config.load_kube_config()
            logging.info("Using local Kubernetes configuration")
        except kube_config.ConfigException:
            logging.error("Could not load Kubernetes configuration")
            sys.exit(1)


async def main():
    setup_logging(os.environ.get("LOG_LEVEL") or "info")

    logger = logging.getLogger(__name__)
    configuration = load_configuration()
    logger.info(f"Starting MongoDB sidecar with configuration {configuration.log_summary()}")

    verification = start_domain_verification(configuration.cluster_domain)
    setup_kubernetes()

    mongo_client = MongoAdminClient(configuration)
    bootstrapper = ReplicaSetBootstrapper(
        configuration, PodClient(configuration), mongo_client
    )

    try:
        handle = mongo_client.get_db()
        try:
            initialised = await mongo_client.is_repl_set_initialised(handle.db)
        finally:
            handle.close()

        if initialised:
            logger.info("MongoDB replica set already initialised, nothing to do")
        else:
            await bootstrapper.initialise_replica_set()
    except Exception as e:
        logger.error(f"Replica set bootstrap failed: {e}")
        raise
    finally:
        if not verification.done():
            verification.cancel()
            try:
                await verification
            except asyncio.CancelledError:
                pass
        logger.info("Shutting down MongoDB sidecar")


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
