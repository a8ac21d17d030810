"""
Network identities of mongo pods.

A pod can be reached either by its ephemeral IP or, when it belongs to a
StatefulSet with a governing headless service, by its stable DNS name:
``<pod-name>.<service>.<namespace>.svc.<cluster-domain>:<port>``. See the
StatefulSet "stable network ID" documentation for details.
"""
from dataclasses import dataclass

from .config import DEFAULT_CLUSTER_DOMAIN, DEFAULT_MONGO_PORT


@dataclass(frozen=True)
class AddressResolver:
    mongo_port: int = DEFAULT_MONGO_PORT
    service_name: str = None
    cluster_domain: str = DEFAULT_CLUSTER_DOMAIN

    def ip_address(self, pod):
        """Return ``<pod ip>:<port>``, or None when the pod has no IP yet."""
        if pod is None or not pod.ip:
            return None
        return "{}:{}".format(pod.ip, self.mongo_port)

    def stable_address(self, pod):
        """Return the stable DNS address, or None without a service name or pod identity."""
        if not self.service_name or pod is None or not pod.name or not pod.namespace:
            return None
        return "{}.{}.{}.svc.{}:{}".format(
            pod.name, self.service_name, pod.namespace, self.cluster_domain, self.mongo_port)

    def candidates(self, pod):
        return self.ip_address(pod), self.stable_address(pod)

    def preferred(self, pod):
        # Stable network ID wins whenever it can be built
        return self.stable_address(pod) or self.ip_address(pod)
