"""
피어 탐색 모듈 테스트
"""

import pytest

from cvm_mesh_agent.discovery import PeerDiscovery
from cvm_mesh_agent.models import MeshPeerRecord, NodeRecord, Role
from cvm_mesh_agent.registry import InMemoryRegistry


def node(registry, hostname, role, slot=None):
    record = NodeRecord(hostname, role, "192.168.0.1", "192.168.0.1",
                        slot_name=f"SLOT-{slot}" if slot else None)
    registry.write(f"cluster-nodes/{hostname}", record.to_fields())


def peer(hostname, slot, role=Role.WORKER):
    return MeshPeerRecord(hostname, f"key-{hostname}", f"10.0.0.{slot}/24", f"192.168.0.{slot}",
                          role=role, updated_at="2024-01-01T00:00:00Z", slot=slot)


@pytest.fixture
def mesh_registry():
    registry = InMemoryRegistry()
    discovery = PeerDiscovery(registry)
    for hostname, role, slot in (("m1", Role.MASTER, 1), ("w2", Role.WORKER, 3), ("w1", Role.WORKER, 2)):
        node(registry, hostname, role, slot)
        discovery.publish(peer(hostname, slot, role))
    return registry


def test_publish_writes_both_shapes(registry):
    """슬롯 키와 과거 형식 양쪽 게시 테스트"""
    PeerDiscovery(registry).publish(peer("w1", 2))

    assert registry.read("cluster-mesh/SLOT-2")["mesh_address"] == "10.0.0.2/24"
    legacy = registry.read("cluster-nodes/w1-mesh")
    assert legacy["wireguard_ip"] == "10.0.0.2/24"
    assert legacy["node_ip"] == "192.168.0.2"
    assert legacy["slot_name"] == "SLOT-2"


def test_list_peers_excludes_self_and_sorts(mesh_registry):
    """자신을 제외하고 슬롯 순으로 정렬"""
    peers = PeerDiscovery(mesh_registry).list_peers("m1")

    assert [(p.hostname, p.slot) for p in peers] == [("w1", 2), ("w2", 3)]


def test_list_peers_from_worker_includes_master(mesh_registry):
    """워커 기준 목록에 마스터 포함"""
    peers = PeerDiscovery(mesh_registry).list_peers("w2")
    assert [p.hostname for p in peers] == ["m1", "w1"]
    assert peers[0].role == Role.MASTER


def test_incomplete_records_are_skipped(mesh_registry):
    """불완전한 레코드는 건너뛰고 탐색 계속"""
    mesh_registry.write("cluster-mesh/SLOT-4", {"hostname": "w3", "public_key": "k3",
                                                 "mesh_address": "10.0.0.4/24", "endpoint_address": "null"})
    mesh_registry.write("cluster-mesh/SLOT-5", {"hostname": "w4", "mesh_address": "10.0.0.5/24",
                                                 "endpoint_address": "192.168.0.5"})
    mesh_registry.write("cluster-mesh/garbage", {"hostname": "x"})

    peers = PeerDiscovery(mesh_registry).list_peers("m1")

    assert [p.hostname for p in peers] == ["w1", "w2"]
    for p in peers:
        assert p.public_key and p.mesh_address and p.endpoint_address


def test_legacy_only_records_are_merged(mesh_registry):
    """슬롯 키 레코드가 없는 과거 노드 병합"""
    mesh_registry.write("cluster-nodes/old-b-mesh", {"public_key": "kb", "wireguard_ip": "10.0.0.20/24",
                                                     "node_ip": "192.168.0.20"})
    mesh_registry.write("cluster-nodes/old-a-mesh", {"public_key": "ka", "wireguard_ip": "10.0.0.21/24",
                                                     "node_ip": "192.168.0.21"})
    mesh_registry.write("cluster-nodes/old-c-mesh", {"public_key": "kc", "wireguard_ip": "null",
                                                     "node_ip": "192.168.0.22"})

    peers = PeerDiscovery(mesh_registry).list_peers("m1")

    assert [p.hostname for p in peers] == ["w1", "w2", "old-a", "old-b"]
    assert peers[-1].slot is None


def test_legacy_record_does_not_duplicate_slot_record(mesh_registry):
    """슬롯 키 레코드가 있는 노드의 과거 형식 레코드는 무시"""
    peers = PeerDiscovery(mesh_registry).list_peers("m1")
    assert len({p.hostname for p in peers}) == len(peers)


def test_list_peers_is_recomputed(mesh_registry):
    """호출마다 레지스트리를 다시 읽음"""
    discovery = PeerDiscovery(mesh_registry)
    assert len(discovery.list_peers("m1")) == 2

    node(mesh_registry, "w3", Role.WORKER, 4)
    discovery.publish(peer("w3", 4))
    assert [p.hostname for p in discovery.list_peers("m1")] == ["w1", "w2", "w3"]


def test_legacy_record_loses_to_slot_record_of_other_host():
    """마스터 교체 후 남은 이전 마스터의 과거 형식 레코드는 무시"""
    registry = InMemoryRegistry()
    discovery = PeerDiscovery(registry)
    node(registry, "w1", Role.WORKER, 2)
    discovery.publish(peer("w1", 2))
    node(registry, "m-old", Role.MASTER, 1)
    discovery.publish(peer("m-old", 1, Role.MASTER))
    node(registry, "m-new", Role.MASTER, 1)
    discovery.publish(peer("m-new", 1, Role.MASTER))

    peers = PeerDiscovery(registry).list_peers("w1")

    assert [(p.hostname, p.slot) for p in peers] == [("m-new", 1)]
    assert [p.mesh_address for p in peers].count("10.0.0.1/24") == 1


def test_out_of_range_slot_records_are_skipped(mesh_registry):
    """1-254 범위를 벗어난 슬롯 레코드는 건너뜀"""
    mesh_registry.write("cluster-mesh/SLOT-0", {"hostname": "bad0", "public_key": "k0",
                                                "mesh_address": "10.0.0.0/24", "endpoint_address": "192.168.0.9"})
    mesh_registry.write("cluster-mesh/SLOT-300", {"hostname": "bad1", "public_key": "k1",
                                                  "mesh_address": "10.0.0.44/24", "endpoint_address": "192.168.0.9"})

    peers = PeerDiscovery(mesh_registry).list_peers("m1")

    assert [p.hostname for p in peers] == ["w1", "w2"]
