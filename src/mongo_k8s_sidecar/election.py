import ipaddress
import logging


class Election:
    """
    Decides which single pod performs a mutating action this cycle.

    Every sidecar evaluates the election on its own, so implementations must
    agree across processes given the same pods.
    """

    def elect(self, pods):
        raise NotImplementedError

    def wins(self, pods, host_ip):
        leader = self.elect(pods)
        return leader is not None and leader.ip == host_ip


def ip_to_long(ip):
    return int(ipaddress.IPv4Address(ip))


class LowestIpElection(Election):
    """
    Elects the pod with the numerically lowest IPv4 address.

    All the pods run this independently and order the same IPs the same way,
    so they all pick the same pod. Pods without an IPv4 address never win.
    """

    def order(self, pods):
        logger = logging.getLogger(__name__)

        candidates = []
        for pod in pods:
            if not pod.ip:
                continue
            try:
                candidates.append((ip_to_long(pod.ip), pod))
            except ipaddress.AddressValueError:
                logger.warning("Pod {} has no IPv4 address ({}), leaving it out of the election".format(
                    pod.name, pod.ip))
        return [pod for _, pod in sorted(candidates, key=lambda c: c[0])]

    def elect(self, pods):
        ordered = self.order(pods)
        return ordered[0] if ordered else None
