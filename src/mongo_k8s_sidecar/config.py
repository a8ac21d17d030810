import logging
import math
import os
import socket
from dataclasses import dataclass


DEFAULT_SLEEP_SECONDS = 5
DEFAULT_UNHEALTHY_SECONDS = 15
DEFAULT_MONGO_PORT = 27017
DEFAULT_CLUSTER_DOMAIN = "cluster.local"

RESOLV_CONF = "/etc/resolv.conf"


class ConfigError(RuntimeError):
    """Raised when the environment holds an unusable setting."""


@dataclass(frozen=True)
class Settings:
    pod_labels: tuple = ()
    loop_sleep_seconds: float = DEFAULT_SLEEP_SECONDS
    unhealthy_seconds: float = DEFAULT_UNHEALTHY_SECONDS
    mongo_port: int = DEFAULT_MONGO_PORT
    mongo_user: str = None
    mongo_password: str = None
    namespace: str = None
    service_name: str = None
    cluster_domain: str = DEFAULT_CLUSTER_DOMAIN
    debug: bool = False

    @property
    def authenticated_mongo(self):
        return bool(self.mongo_user and self.mongo_password)


def _lookup_env(environ, *names):
    """Case-insensitive lookup of the first variable present among names."""
    lowered = {key.lower(): value for key, value in environ.items()}
    for name in names:
        value = lowered.get(name.lower())
        if value is not None and value != "":
            return value
    return None


def _to_number(name, value, default, cast):
    if value is None:
        return default
    try:
        number = cast(value)
    except ValueError:
        raise ConfigError(f"Invalid value for {name}: {value!r}") from None
    if not math.isfinite(number) or number <= 0:
        raise ConfigError(f"{name} must be positive, got {value!r}")
    return number


def parse_pod_labels(raw):
    """
    Parse a ``key=value,key2=value2`` label list into a tuple of pairs.

    :param raw: the raw environment value, may be None.
    :return: tuple of (key, value) tuples, empty when raw is unset.
    """
    if not raw:
        return ()
    labels = []
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise ConfigError(f"Invalid pod label {item!r} in MONGO_SIDECAR_POD_LABELS, expected key=value")
        labels.append((key.strip(), value.strip()))
    return tuple(labels)


def get_settings(environ=None):
    """
    Build the sidecar settings from environment variables.

    Names are matched case-insensitively. The misspelled ``KUBERENETES_*``
    variables of older deployments are honoured as fallbacks.
    """
    environ = os.environ if environ is None else environ

    return Settings(
        pod_labels=parse_pod_labels(_lookup_env(environ, "MONGO_SIDECAR_POD_LABELS")),
        loop_sleep_seconds=_to_number(
            "MONGO_SIDECAR_SLEEP_SECONDS", _lookup_env(environ, "MONGO_SIDECAR_SLEEP_SECONDS"),
            DEFAULT_SLEEP_SECONDS, float),
        unhealthy_seconds=_to_number(
            "MONGO_SIDECAR_UNHEALTHY_SECONDS", _lookup_env(environ, "MONGO_SIDECAR_UNHEALTHY_SECONDS"),
            DEFAULT_UNHEALTHY_SECONDS, float),
        mongo_port=_to_number("MONGO_PORT", _lookup_env(environ, "MONGO_PORT"), DEFAULT_MONGO_PORT, int),
        mongo_user=_lookup_env(environ, "MONGO_USER"),
        mongo_password=_lookup_env(environ, "MONGO_PASSWORD"),
        namespace=_lookup_env(environ, "KUBERNETES_NAMESPACE", "KUBERENETES_NAMESPACE"),
        service_name=_lookup_env(environ, "KUBERNETES_MONGO_SERVICE_NAME", "KUBERENETES_SERVICE"),
        cluster_domain=_lookup_env(environ, "KUBERNETES_CLUSTER_DOMAIN") or DEFAULT_CLUSTER_DOMAIN,
        debug=_lookup_env(environ, "DEBUG") == "1",
    )


def first_nameserver(path=RESOLV_CONF):
    try:
        with open(path) as fh:
            for line in fh:
                parts = line.split()
                if len(parts) >= 2 and parts[0] == "nameserver":
                    return parts[1]
    except OSError:
        return None
    return None


def verify_cluster_domain(cluster_domain, resolv_conf=RESOLV_CONF):
    """
    Reverse-resolve the first DNS server and warn when its name does not end
    with the configured cluster domain. Never raises.

    :return: True if verified, False on mismatch, None if nothing could be checked.
    """
    logger = logging.getLogger(__name__)

    nameserver = first_nameserver(resolv_conf)
    if not cluster_domain or not nameserver:
        return None

    try:
        host = socket.gethostbyaddr(nameserver)[0]
    except OSError as e:
        logger.warning("Possibly wrong cluster domain name! Detected '{}' but reverse lookup of {} failed: {}".format(
            cluster_domain, nameserver, e))
        return False

    if not host.rstrip(".").endswith(cluster_domain):
        logger.warning("Possibly wrong cluster domain name! Detected '{}' but expected similar to: {}".format(
            cluster_domain, host))
        return False

    logger.info("The cluster domain '{}' was successfully verified.".format(cluster_domain))
    return True
