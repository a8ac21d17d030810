import logging
import socket
import time
import traceback
from dataclasses import dataclass
from datetime import datetime, timezone

from . import mongo
from .diff import addresses_to_add, addresses_to_remove
from .k8s import running_pods
from .mongo import StatusOutcome


class IdentityError(RuntimeError):
    """Raised when this pod cannot work out its own address."""


@dataclass(frozen=True)
class LocalIdentity:
    host_ip: str
    mongo_port: int

    @property
    def host_ip_and_port(self):
        return "{}:{}".format(self.host_ip, self.mongo_port)


def resolve_local_identity(mongo_port, hostname=None):
    """
    Resolve this pod's IP from its hostname.

    :raises IdentityError: if the hostname does not resolve.
    """
    hostname = hostname or socket.gethostname()
    try:
        host_ip = socket.gethostbyname(hostname)
    except OSError as e:
        raise IdentityError(f"Could not resolve host name {hostname!r}: {e}") from e
    return LocalIdentity(host_ip=host_ip, mongo_port=mongo_port)


class Reconciler:
    """
    Runs one reconciliation pass against the local mongod.

    The local replSetGetStatus outcome picks the path:
    - SUCCESS: we are in a replica set, the primary (or an elected stand-in) adds and removes members
    - NOT_INITIALIZED: nobody may have a replica set yet, the elected pod initiates one
    - INVALID_CONFIG: force a reconfiguration from the running pods
    Any other outcome aborts the pass.
    """

    def __init__(self, identity, resolver, election, store, unhealthy_seconds,
                 init_retry_interval=mongo.INIT_RECONFIG_INTERVAL, clock=None):
        self.identity = identity
        self.resolver = resolver
        self.election = election
        self.store = store
        self.unhealthy_seconds = unhealthy_seconds
        self.init_retry_interval = init_retry_interval
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def reconcile(self, conn, pods):
        result = mongo.replset_get_status(conn)

        if result.outcome is StatusOutcome.SUCCESS:
            return self.in_replica_set(conn, pods, result.members)
        if result.outcome is StatusOutcome.NOT_INITIALIZED:
            return self.not_in_replica_set(conn, pods)
        if result.outcome is StatusOutcome.INVALID_CONFIG:
            return self.invalid_replica_set(conn, pods)
        raise result.error

    def in_replica_set(self, conn, pods, members):
        logger = logging.getLogger(__name__)

        primary = next((m for m in members if m.is_primary), None)
        if primary is not None:
            if primary.is_self:
                return self.primary_work(conn, pods, members, force=False)
            logger.debug("PRIMARY is {}, nothing to do".format(primary.host))
            return None

        if self.election.wins(pods, self.identity.host_ip):
            logger.info("No PRIMARY in ReplicaSet - pod has been elected to do the primary work")
            return self.primary_work(conn, pods, members, force=True)
        return None

    def primary_work(self, conn, pods, members, force):
        logger = logging.getLogger(__name__)

        to_add = addresses_to_add(pods, members, self.resolver)
        to_remove = addresses_to_remove(members, self.unhealthy_seconds, self.clock())

        if not (to_add or to_remove):
            return None

        logger.debug("Addresses to add:    {}".format(to_add))
        logger.debug("Addresses to remove: {}".format(to_remove))
        return mongo.add_new_replset_members(conn, to_add, to_remove, force)

    def not_in_replica_set(self, conn, pods):
        logger = logging.getLogger(__name__)

        # Only pods with an IP can be probed, the rest cannot be members anywhere yet
        addresses = [a for a in (self.resolver.ip_address(p) for p in pods) if a]
        if any(mongo.probe_membership(self.store, addresses)):
            # Someone already has a replica set, its primary will add us
            logger.debug("Another pod is already in a ReplicaSet, waiting to be added")
            return None

        if not self.election.wins(pods, self.identity.host_ip):
            return None

        logger.info("Pod has been elected for ReplicaSet initialization")
        primary = self.election.elect(pods)
        address = self.resolver.stable_address(primary) or self.identity.host_ip_and_port
        return mongo.init_replset(conn, address, interval=self.init_retry_interval)

    def invalid_replica_set(self, conn, pods):
        # The config became invalid, most likely after all the members went down at once.
        # Forcing a reconfiguration can lose writes but getting back a healthy set matters more.
        logger = logging.getLogger(__name__)

        logger.warning("Invalid ReplicaSet config, re-initializing")
        to_add = addresses_to_add(pods, [], self.resolver)
        return mongo.add_new_replset_members(conn, to_add, [], True)


class Worker:
    """
    The control loop: list pods, connect to the local mongod, reconcile, sleep.

    A failed cycle is logged and the loop carries on after the usual delay.
    """

    def __init__(self, discovery, store, reconciler, loop_sleep_seconds, local_address=mongo.LOCALHOST,
                 sleep=time.sleep):
        self.discovery = discovery
        self.store = store
        self.reconciler = reconciler
        self.loop_sleep_seconds = loop_sleep_seconds
        self.local_address = local_address
        self._sleep = sleep

    def run_once(self):
        """Run a single cycle. Returns True if the reconciliation pass completed."""
        logger = logging.getLogger(__name__)

        conn = None
        step = "listing mongo pods"
        try:
            pods = running_pods(self.discovery.get_mongo_pods())
            if not pods:
                logger.info("No pods are currently running, probably just give them some time.")
                return False

            step = "connecting to local mongod"
            conn = self.store.connect(self.local_address)

            step = "reconciling ReplicaSet"
            self.reconciler.reconcile(conn, pods)
            return True
        except Exception as e:
            logger.error("Error in workloop while {}: {}".format(step, e))
            logger.debug(traceback.format_exc())
            return False
        finally:
            if conn is not None:
                conn.close()

    def run(self):
        while True:
            self.run_once()
            self._sleep(self.loop_sleep_seconds)
