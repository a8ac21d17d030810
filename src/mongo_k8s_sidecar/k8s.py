import logging
from dataclasses import dataclass, field

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException


RUNNING = "Running"


class DiscoveryError(RuntimeError):
    """Raised when pods cannot be listed from the kubernetes API."""


@dataclass(frozen=True)
class Pod:
    """Snapshot of a mongo pod as observed during one loop cycle."""
    name: str = None
    namespace: str = None
    ip: str = None
    phase: str = None
    labels: dict = field(default_factory=dict)

    @property
    def is_running(self):
        return self.phase == RUNNING

    @classmethod
    def from_api(cls, pod):
        metadata = pod.metadata
        status = pod.status
        return cls(
            name=getattr(metadata, "name", None),
            namespace=getattr(metadata, "namespace", None),
            ip=getattr(status, "pod_ip", None),
            phase=getattr(status, "phase", None),
            labels=dict(getattr(metadata, "labels", None) or {}),
        )


def pod_contains_labels(pod, labels):
    if not pod.labels:
        return False
    return all(pod.labels.get(key) == value for key, value in labels)


def running_pods(pods):
    return [p for p in pods if p.is_running]


class PodDiscovery:
    """
    Lists the mongo pods matching the configured labels.

    :param namespace: namespace to search, all namespaces when None.
    :param labels: tuple of (key, value) label pairs every pod must carry.
    :param core_api: optional CoreV1Api, loaded from the cluster config when omitted.
    """

    def __init__(self, namespace=None, labels=(), core_api=None):
        self.namespace = namespace
        self.labels = tuple(labels)
        self._core_api = core_api

    @property
    def label_selector(self):
        return ",".join(f"{key}={value}" for key, value in self.labels) or None

    def _api(self):
        if self._core_api is None:
            logger = logging.getLogger(__name__)
            try:
                config.load_incluster_config()
                logger.debug("Loaded in-cluster kubernetes config")
            except ConfigException:
                # Local development, outside of a pod
                try:
                    config.load_kube_config()
                    logger.debug("Loaded kubeconfig")
                except ConfigException as e:
                    raise DiscoveryError(f"No kubernetes config available: {e}") from e
            self._core_api = client.CoreV1Api()
        return self._core_api

    def get_mongo_pods(self):
        api = self._api()
        try:
            if self.namespace:
                result = api.list_namespaced_pod(self.namespace, label_selector=self.label_selector)
            else:
                result = api.list_pod_for_all_namespaces(label_selector=self.label_selector)
        except ApiException as e:
            raise DiscoveryError(f"Listing pods failed: {e.status} {e.reason}") from e

        pods = [Pod.from_api(p) for p in result.items or []]
        return [p for p in pods if pod_contains_labels(p, self.labels)] if self.labels else pods
