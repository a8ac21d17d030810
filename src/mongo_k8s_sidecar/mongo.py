import copy
import enum
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import timezone

import backoff
import pymongo as pm
from pymongo.errors import OperationFailure, PyMongoError


LOCALHOST = "127.0.0.1"  # a sidecar reaches its own mongod on the pod loopback

# Server error codes returned by replSetGetStatus
NOT_YET_INITIALIZED = 94
INVALID_REPLICA_SET_CONFIG = 93

PRIMARY_STATE = 1

INIT_RECONFIG_ATTEMPTS = 20
INIT_RECONFIG_INTERVAL = 0.5
PROBE_MAX_WORKERS = 8


class StatusOutcome(enum.Enum):
    SUCCESS = "success"
    NOT_INITIALIZED = "not_initialized"
    INVALID_CONFIG = "invalid_config"
    OTHER = "other"


@dataclass(frozen=True)
class Member:
    """One replica set member as reported by replSetGetStatus (or replSetGetConfig)."""
    id: int
    host: str
    health: bool = True
    last_heartbeat: object = None
    is_self: bool = False
    state: int = None

    @property
    def is_primary(self):
        return self.state == PRIMARY_STATE

    @classmethod
    def from_doc(cls, doc):
        heartbeat = doc.get("lastHeartbeatRecv")
        # pymongo hands back naive datetimes in UTC
        if heartbeat is not None and heartbeat.tzinfo is None:
            heartbeat = heartbeat.replace(tzinfo=timezone.utc)
        return cls(
            id=doc.get("_id"),
            host=doc.get("name") or doc.get("host"),
            health=bool(doc.get("health", 1)),
            last_heartbeat=heartbeat,
            is_self=bool(doc.get("self", False)),
            state=doc.get("state"),
        )


@dataclass(frozen=True)
class StatusResult:
    """Outcome of replSetGetStatus, decoded once so callers can dispatch on it."""
    outcome: StatusOutcome
    status: dict = None
    error: Exception = None

    @property
    def members(self):
        if not self.status:
            return []
        return [Member.from_doc(m) for m in self.status.get("members", [])]


class MongoConnection:
    """A direct connection to a single mongod."""

    def __init__(self, client, address):
        self.client = client
        self.address = address

    def run_admin_command(self, command, value=1, **kwargs):
        return self.client.admin.command(command, value, **kwargs)

    def close(self):
        self.client.close()


def split_address(address, default_port):
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        return address, default_port
    return host, int(port)


class MongoStore:
    """
    Opens connections to mongod instances.

    :param mongo_port: port used when an address carries none.
    :param username: optional root user; authenticates against ``admin``.
    :param password: password for username.
    """

    def __init__(self, mongo_port=27017, username=None, password=None,
                 server_selection_timeout_ms=5000, connect_timeout_ms=10000, socket_timeout_ms=30000):
        self.mongo_port = mongo_port
        self.username = username
        self.password = password
        self.server_selection_timeout_ms = server_selection_timeout_ms
        self.connect_timeout_ms = connect_timeout_ms
        self.socket_timeout_ms = socket_timeout_ms

    def connect(self, address=None):
        host, port = split_address(address or LOCALHOST, self.mongo_port)
        kwargs = {}
        if self.username and self.password:
            kwargs.update(username=self.username, password=self.password, authSource='admin')
        client = pm.MongoClient(
            host=host,
            port=port,
            directConnection=True,  #NOTE: without it the driver discovers the topology instead of asking this node
            serverSelectionTimeoutMS=self.server_selection_timeout_ms,
            connectTimeoutMS=self.connect_timeout_ms,
            socketTimeoutMS=self.socket_timeout_ms,
            **kwargs
        )
        return MongoConnection(client, "{}:{}".format(host, port))


def replset_get_config(conn):
    return conn.run_admin_command("replSetGetConfig")['config']


def replset_get_status(conn):
    """
    Query replSetGetStatus and decode the result into a StatusResult.

    Only OperationFailure codes 94 (NotYetInitialized) and 93
    (InvalidReplicaSetConfig) are structural; everything else is OTHER.
    """
    try:
        status = conn.run_admin_command("replSetGetStatus")
    except OperationFailure as of:
        code = getattr(of, 'code', None)
        if code == NOT_YET_INITIALIZED:
            return StatusResult(StatusOutcome.NOT_INITIALIZED, error=of)
        if code == INVALID_REPLICA_SET_CONFIG:
            return StatusResult(StatusOutcome.INVALID_CONFIG, error=of)
        return StatusResult(StatusOutcome.OTHER, error=of)
    except PyMongoError as e:
        return StatusResult(StatusOutcome.OTHER, error=e)
    return StatusResult(StatusOutcome.SUCCESS, status=status)


def replset_reconfig(conn, config, force=False):
    """
    Submit config with its version incremented by one.

    The given document is left untouched, so retrying with it always submits
    the version it was read with plus one.
    """
    logger = logging.getLogger(__name__)

    new_config = copy.deepcopy(config)
    new_config['version'] = new_config.get('version', 0) + 1
    logger.debug("replSetReconfig (force={}): {}".format(force, new_config))
    return conn.run_admin_command("replSetReconfig", new_config, force=force)


def add_new_members(config, addrs_to_add):
    """Append members for addrs_to_add, ids continuing from the current max id."""
    if not addrs_to_add:
        return config

    max_id = max((m['_id'] for m in config['members']), default=0)
    for addr in addrs_to_add:
        max_id += 1
        config['members'].append({'_id': max_id, 'host': addr})
    return config


def remove_dead_members(config, addrs_to_remove):
    if not addrs_to_remove:
        return config

    for addr in addrs_to_remove:
        for i, member in enumerate(config['members']):
            if member['host'] == addr:
                del config['members'][i]
                break
    return config


def add_new_replset_members(conn, addrs_to_add, addrs_to_remove, force):
    """Fetch the latest config, apply both batches and submit one reconfiguration."""
    logger = logging.getLogger(__name__)

    config = replset_get_config(conn)
    add_new_members(config, addrs_to_add)
    remove_dead_members(config, addrs_to_remove)
    res = replset_reconfig(conn, config, force)
    logger.info("Reconfigured ReplicaSet (added: {}, removed: {}, force: {}) - result: {}".format(
        list(addrs_to_add), list(addrs_to_remove), force, res))
    return res


def _log_retry(details):
    logger = logging.getLogger(__name__)
    logger.info("Waiting for the new PRIMARY before reconfiguring (attempt {}): {}".format(
        details['tries'], details.get('exception')))


def init_replset(conn, host_address, max_tries=INIT_RECONFIG_ATTEMPTS, interval=INIT_RECONFIG_INTERVAL):
    """
    Initiate a new replica set on conn and point its only member at host_address.

    replSetInitiate records the member under a hostname other pods cannot
    reach, so the config is rewritten and resubmitted. mongod only accepts
    the reconfiguration once it has elected itself, hence the retries.
    """
    logger = logging.getLogger(__name__)

    logger.debug("replSetInitiate for {}".format(host_address))
    conn.run_admin_command("replSetInitiate", {})

    config = replset_get_config(conn)
    config['members'][0]['host'] = host_address

    reconfig = backoff.on_exception(
        backoff.constant,
        PyMongoError,
        max_tries=max_tries,
        interval=interval,
        jitter=None,
        on_backoff=_log_retry,
    )(replset_reconfig)
    res = reconfig(conn, config, False)
    logger.info("Initialized ReplicaSet with PRIMARY {}".format(host_address))
    return res


def is_in_replset(store, address):
    """Return True if the mongod at address holds a replica set config. Never raises PyMongoError."""
    logger = logging.getLogger(__name__)

    conn = None
    try:
        conn = store.connect(address)
        config = replset_get_config(conn)
        return bool(config)
    except PyMongoError as e:
        logger.debug("No replicaSet config found on {}: ({})".format(address, e))
        return False
    finally:
        if conn is not None:
            conn.close()


def probe_membership(store, addresses, max_workers=PROBE_MAX_WORKERS):
    """Probe all addresses concurrently, returning one bool per address in order."""
    if not addresses:
        return []
    with ThreadPoolExecutor(max_workers=min(max_workers, len(addresses))) as pool:
        futures = [pool.submit(is_in_replset, store, addr) for addr in addresses]
        return [f.result() for f in futures]
