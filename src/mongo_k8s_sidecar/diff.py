from datetime import datetime, timedelta, timezone


def addresses_to_add(pods, members, resolver):
    """
    Return the preferred address of every pod not yet present in members.

    A pod counts as present when either its IP address or its stable address
    matches a member host. Members already listed under both forms are left
    as they are.
    """
    hosts = {m.host for m in members}
    to_add = []
    for pod in pods:
        ip_addr, stable_addr = resolver.candidates(pod)
        if (ip_addr and ip_addr in hosts) or (stable_addr and stable_addr in hosts):
            continue
        addr = stable_addr or ip_addr
        if addr:
            to_add.append(addr)
    return to_add


def member_should_be_removed(member, unhealthy_seconds, now=None):
    if member.health or member.last_heartbeat is None:
        return False
    now = now or datetime.now(timezone.utc)
    return now - member.last_heartbeat > timedelta(seconds=unhealthy_seconds)


def addresses_to_remove(members, unhealthy_seconds, now=None):
    now = now or datetime.now(timezone.utc)
    return [m.host for m in members if member_should_be_removed(m, unhealthy_seconds, now)]
