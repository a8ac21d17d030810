import copy

from pymongo.errors import OperationFailure

from mongo_k8s_sidecar.k8s import Pod


def make_pod(name, ip, phase="Running", namespace="db", labels=None):
    return Pod(name=name, namespace=namespace, ip=ip, phase=phase, labels=labels or {"app": "mongo"})


class FakeConnection:
    """In-memory mongod answering the admin commands the sidecar uses."""

    def __init__(self, status=None, status_error=None, config=None, reconfig_failures=0,
                 initiated_host="mongo-0:27017"):
        self.status = status
        self.status_error = status_error
        self.config = config
        self.reconfig_failures = reconfig_failures
        self.initiated_host = initiated_host
        self.commands = []
        self.closed = False

    def run_admin_command(self, command, value=1, **kwargs):
        self.commands.append((command, copy.deepcopy(value), kwargs))

        if command == "replSetGetStatus":
            if self.status_error is not None:
                raise self.status_error
            return self.status

        if command == "replSetGetConfig":
            if self.config is None:
                raise OperationFailure("no replset config has been received", code=94)
            return {"config": copy.deepcopy(self.config), "ok": 1}

        if command == "replSetInitiate":
            self.config = {"_id": "rs0", "version": 1, "members": [{"_id": 0, "host": self.initiated_host}]}
            return {"ok": 1}

        if command == "replSetReconfig":
            if self.reconfig_failures:
                self.reconfig_failures -= 1
                raise OperationFailure("New config is rejected :: caused by :: not primary", code=10107)
            self.config = copy.deepcopy(value)
            return {"ok": 1}

        raise AssertionError(f"unexpected command {command}")

    def command_names(self):
        return [c[0] for c in self.commands]

    def reconfigs(self):
        return [(value, kwargs.get("force")) for command, value, kwargs in self.commands
                if command == "replSetReconfig"]

    def close(self):
        self.closed = True


class FakeStore:
    """Hands out FakeConnections by address; unknown addresses get a fresh non-member."""

    def __init__(self, connections=None, errors=None):
        self.connections = connections or {}
        self.errors = errors or {}
        self.opened = []

    def connect(self, address=None):
        self.opened.append(address)
        if address in self.errors:
            raise self.errors[address]
        conn = self.connections.get(address)
        if conn is None:
            conn = FakeConnection()
            self.connections[address] = conn
        return conn


class FakeDiscovery:
    def __init__(self, pods=None, error=None):
        self.pods = pods or []
        self.error = error
        self.calls = 0

    def get_mongo_pods(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.pods)
