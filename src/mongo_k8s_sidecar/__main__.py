"""
MongoDB ReplicaSet sidecar for Kubernetes

DESCRIPTION:
    Runs next to every mongod pod of a StatefulSet and keeps the replica set
    membership in line with the running pods. There is no controller: every
    sidecar runs the same loop and a deterministic election decides which one
    acts when the set has no PRIMARY.

CORE FEATURES:
    • Fresh Deployment: the lowest-IP pod initiates the replica set
    • Dynamic Scaling: the PRIMARY adds new pods and drops long-dead members
    • Primary Failover: an elected pod force-reconfigures a set without PRIMARY
    • Invalid Config Recovery: forced re-initialization from the running pods

USAGE:
    python -m mongo_k8s_sidecar
    Configure via environment variables (see mongo_k8s_sidecar.config.get_settings)
"""
import logging
import sys

from . import __version__
from .addresses import AddressResolver
from .config import ConfigError, get_settings, verify_cluster_domain
from .election import LowestIpElection
from .k8s import PodDiscovery
from .log import setup_logging
from .mongo import MongoStore
from .worker import IdentityError, Reconciler, Worker, resolve_local_identity


def build_worker(settings, identity):
    resolver = AddressResolver(
        mongo_port=settings.mongo_port,
        service_name=settings.service_name,
        cluster_domain=settings.cluster_domain,
    )
    store = MongoStore(
        mongo_port=settings.mongo_port,
        username=settings.mongo_user,
        password=settings.mongo_password,
    )
    reconciler = Reconciler(
        identity=identity,
        resolver=resolver,
        election=LowestIpElection(),
        store=store,
        unhealthy_seconds=settings.unhealthy_seconds,
    )
    discovery = PodDiscovery(namespace=settings.namespace, labels=settings.pod_labels)
    return Worker(discovery, store, reconciler, settings.loop_sleep_seconds)


def main(environ=None):
    try:
        settings = get_settings(environ)
    except ConfigError as e:
        setup_logging()
        logging.getLogger(__name__).error(f"Invalid configuration: {e}")
        return 1

    setup_logging(settings.debug)
    logger = logging.getLogger(__name__)
    logger.info("Starting up mongo-k8s-sidecar {}".format(__version__))
    logger.info("Using mongo port: {}".format(settings.mongo_port))

    if settings.service_name:
        logger.info("Using service: {}".format(settings.service_name))
        verify_cluster_domain(settings.cluster_domain)
    else:
        logger.warning("No governing service configured - ReplicaSet members will use pod IPs")

    try:
        identity = resolve_local_identity(settings.mongo_port)
    except IdentityError as e:
        logger.error(f"Error trying to initialize mongo-k8s-sidecar: {e}")
        return 1

    logger.info("Local mongod is reachable at {}".format(identity.host_ip_and_port))
    build_worker(settings, identity).run()
    return 0


if __name__ == '__main__':
    sys.exit(main())
