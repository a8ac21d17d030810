import time
from datetime import datetime, timezone

import pytest
from pymongo.errors import OperationFailure, ServerSelectionTimeoutError

from mongo_k8s_sidecar import mongo
from mongo_k8s_sidecar.mongo import Member, StatusOutcome

from fakes import FakeConnection, FakeStore


def test_member_from_status_doc():
    member = Member.from_doc({
        "_id": 2, "name": "10.0.0.3:27017", "health": 0.0, "state": 8,
        "lastHeartbeatRecv": datetime(2024, 5, 1, 12, 0, 0),
    })
    assert member.host == "10.0.0.3:27017"
    assert member.health is False
    assert member.is_primary is False
    assert member.last_heartbeat.tzinfo is timezone.utc


def test_member_from_config_doc():
    member = Member.from_doc({"_id": 0, "host": "10.0.0.1:27017"})
    assert member.host == "10.0.0.1:27017"
    assert member.health is True


def test_status_success():
    conn = FakeConnection(status={"members": [{"_id": 0, "name": "a:1", "state": 1, "self": True, "health": 1}]})
    result = mongo.replset_get_status(conn)
    assert result.outcome is StatusOutcome.SUCCESS
    assert result.members[0].is_primary and result.members[0].is_self


@pytest.mark.parametrize("code,outcome", [
    (94, StatusOutcome.NOT_INITIALIZED),
    (93, StatusOutcome.INVALID_CONFIG),
    (13, StatusOutcome.OTHER),
])
def test_status_error_codes(code, outcome):
    conn = FakeConnection(status_error=OperationFailure("boom", code=code))
    result = mongo.replset_get_status(conn)
    assert result.outcome is outcome
    assert result.members == []


def test_status_connection_error_is_other():
    conn = FakeConnection(status_error=ServerSelectionTimeoutError("no server"))
    assert mongo.replset_get_status(conn).outcome is StatusOutcome.OTHER


def test_reconfig_increments_version_on_a_copy():
    conn = FakeConnection()
    config = {"_id": "rs0", "version": 4, "members": []}
    mongo.replset_reconfig(conn, config, force=True)
    assert config["version"] == 4
    assert conn.reconfigs() == [({"_id": "rs0", "version": 5, "members": []}, True)]


def test_add_new_members_continues_ids():
    config = {"members": [{"_id": 0, "host": "a:1"}, {"_id": 3, "host": "b:1"}]}
    mongo.add_new_members(config, ["c:1", "d:1"])
    assert [(m["_id"], m["host"]) for m in config["members"][2:]] == [(4, "c:1"), (5, "d:1")]


def test_remove_dead_members_first_match_only():
    config = {"members": [{"_id": 0, "host": "a:1"}, {"_id": 1, "host": "b:1"}, {"_id": 2, "host": "b:1"}]}
    mongo.remove_dead_members(config, ["b:1"])
    assert [m["_id"] for m in config["members"]] == [0, 2]


def test_add_and_remove_bump_version_once():
    conn = FakeConnection(config={"_id": "rs0", "version": 7, "members": [
        {"_id": 0, "host": "a:1"}, {"_id": 1, "host": "dead:1"}]})
    mongo.add_new_replset_members(conn, ["c:1"], ["dead:1"], False)

    [(submitted, force)] = conn.reconfigs()
    assert force is False
    assert submitted["version"] == 8
    assert [(m["_id"], m["host"]) for m in submitted["members"]] == [(0, "a:1"), (2, "c:1")]


def test_init_replset_rewrites_host():
    conn = FakeConnection(initiated_host="mongo-0:27017")
    mongo.init_replset(conn, "mongo-0.mongo.db.svc.cluster.local:27017", interval=0)

    assert conn.command_names() == ["replSetInitiate", "replSetGetConfig", "replSetReconfig"]
    assert conn.config["version"] == 2
    assert conn.config["members"] == [{"_id": 0, "host": "mongo-0.mongo.db.svc.cluster.local:27017"}]


def test_init_replset_retries_until_primary(monkeypatch):
    sleeps = []
    monkeypatch.setattr(time, "sleep", sleeps.append)
    conn = FakeConnection(reconfig_failures=3)

    mongo.init_replset(conn, "10.0.0.1:27017")

    reconfigs = conn.reconfigs()
    assert len(reconfigs) == 4
    assert all(cfg["version"] == 2 for cfg, _ in reconfigs)
    assert sleeps == [0.5, 0.5, 0.5]


def test_init_replset_gives_up_after_twenty_attempts(monkeypatch):
    sleeps = []
    monkeypatch.setattr(time, "sleep", sleeps.append)
    conn = FakeConnection(reconfig_failures=100)

    with pytest.raises(OperationFailure):
        mongo.init_replset(conn, "10.0.0.1:27017")

    assert len(conn.reconfigs()) == 20
    assert sleeps == [0.5] * 19


def test_is_in_replset():
    store = FakeStore({"a:1": FakeConnection(config={"_id": "rs0", "version": 1, "members": []}),
                       "b:1": FakeConnection()})
    assert mongo.is_in_replset(store, "a:1") is True
    assert mongo.is_in_replset(store, "b:1") is False
    assert store.connections["a:1"].closed and store.connections["b:1"].closed


def test_is_in_replset_connect_failure():
    store = FakeStore(errors={"a:1": ServerSelectionTimeoutError("timeout")})
    assert mongo.is_in_replset(store, "a:1") is False


def test_probe_membership_keeps_order():
    store = FakeStore({"b:1": FakeConnection(config={"_id": "rs0", "version": 1, "members": []})},
                      errors={"c:1": ServerSelectionTimeoutError("timeout")})
    assert mongo.probe_membership(store, ["a:1", "b:1", "c:1"]) == [False, True, False]
    assert mongo.probe_membership(store, []) == []


def test_split_address():
    assert mongo.split_address("10.0.0.1:27018", 27017) == ("10.0.0.1", 27018)
    assert mongo.split_address("mongo-0.mongo", 27017) == ("mongo-0.mongo", 27017)
