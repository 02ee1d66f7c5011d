"""
슬롯 할당 모듈 테스트
"""

import pytest

from cvm_mesh_agent.errors import SlotAllocatorError, SlotExhaustedError
from cvm_mesh_agent.models import NodeRecord, Role
from cvm_mesh_agent.registrar import Registrar
from cvm_mesh_agent.registry import InMemoryRegistry
from cvm_mesh_agent.slots import SlotAllocator
from conftest import FakeClock, make_proof, stub_ca_factory


def register(registry, hostname, role):
    Registrar(registry, ca_factory=stub_ca_factory).register(
        hostname, role, f"192.168.0.{len(registry.paths()) % 250 + 1}", "", make_proof(hostname)
    )


def test_master_gets_slot_one(registry):
    """마스터는 항상 슬롯 1"""
    register(registry, "m1", Role.MASTER)
    allocator = SlotAllocator(registry, now=FakeClock())

    assert allocator.get_or_assign_slot("m1", Role.MASTER) == 1
    assert allocator.get_or_assign_slot("m1", "master") == 1
    assert NodeRecord.from_fields("cluster-nodes/m1", registry.read("cluster-nodes/m1")).slot_name == "SLOT-1"


def test_sequential_workers_get_distinct_slots(registry):
    """순차 등록된 워커는 서로 다른 연속 슬롯"""
    allocator = SlotAllocator(registry, now=FakeClock())
    register(registry, "m1", Role.MASTER)
    allocator.get_or_assign_slot("m1", Role.MASTER)

    slots = []
    for hostname in ("w1", "w2", "w3"):
        register(registry, hostname, Role.WORKER)
        slots.append(allocator.get_or_assign_slot(hostname, Role.WORKER))

    assert slots == [2, 3, 4]
    assert registry.read("cluster-slots/SLOT-3")["hostname"] == "w2"


def test_worker_slot_stable_across_reruns(registry):
    """재실행해도 같은 슬롯 유지"""
    allocator = SlotAllocator(registry, now=FakeClock())
    register(registry, "m1", Role.MASTER)
    register(registry, "w1", Role.WORKER)
    first = allocator.get_or_assign_slot("w1", Role.WORKER)

    register(registry, "w1", Role.WORKER)
    assert allocator.get_or_assign_slot("w1", Role.WORKER) == first


def test_master_registered_after_workers_still_gets_slot_one(registry):
    """워커가 먼저 슬롯을 받아도 마스터는 슬롯 1"""
    register(registry, "m1", Role.MASTER)
    register(registry, "w1", Role.WORKER)
    allocator = SlotAllocator(registry, now=FakeClock())
    assert allocator.get_or_assign_slot("w1", Role.WORKER) == 2

    assert allocator.get_or_assign_slot("m1", Role.MASTER) == 1
    assert allocator.get_or_assign_slot("m1", Role.MASTER) == 1


def test_claimed_slot_is_skipped(registry):
    """다른 노드가 먼저 예약한 슬롯은 건너뜀"""
    register(registry, "m1", Role.MASTER)
    register(registry, "w1", Role.WORKER)
    registry.write("cluster-slots/SLOT-2", {"hostname": "w-racing", "claimed_at": "2024-01-01T00:00:00Z"})

    allocator = SlotAllocator(registry, now=FakeClock())
    assert allocator.get_or_assign_slot("w1", Role.WORKER) == 3


def test_lost_claim_race_moves_to_next_slot():
    """예약 경쟁에서 지면 다음 슬롯 시도"""

    class RacingRegistry(InMemoryRegistry):
        """첫 번째 조건부 쓰기 직전에 다른 노드가 같은 슬롯을 예약"""

        raced = False

        def write_if_absent(self, path, fields):
            if path.startswith("cluster-slots/") and not self.raced:
                self.raced = True
                self.write(path, {"hostname": "w-other"})
            return super().write_if_absent(path, fields)

    registry = RacingRegistry()
    register(registry, "m1", Role.MASTER)
    register(registry, "w1", Role.WORKER)

    allocator = SlotAllocator(registry, now=FakeClock())
    assert allocator.get_or_assign_slot("w1", Role.WORKER) == 3
    assert registry.read("cluster-slots/SLOT-2")["hostname"] == "w-other"


def test_slots_exhausted(registry):
    """슬롯 2-254가 모두 사용 중이면 실패"""
    register(registry, "m1", Role.MASTER)
    for slot in range(2, 255):
        registry.write(f"cluster-slots/SLOT-{slot}", {"hostname": f"old-{slot}"})
    register(registry, "w-late", Role.WORKER)

    allocator = SlotAllocator(registry, now=FakeClock())
    with pytest.raises(SlotExhaustedError) as excinfo:
        allocator.get_or_assign_slot("w-late", Role.WORKER)
    assert "KV v1/cubbyhole" in excinfo.value.remediation
    assert "한 대씩" in excinfo.value.remediation


def test_unregistered_node_cannot_get_slot(registry):
    """등록되지 않은 노드는 슬롯을 받을 수 없음"""
    allocator = SlotAllocator(registry, now=FakeClock())
    with pytest.raises(SlotAllocatorError):
        allocator.get_or_assign_slot("ghost", Role.WORKER)
