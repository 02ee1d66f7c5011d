"""
슬롯 할당 모듈
노드마다 고유한 슬롯 번호(1-254)를 부여하고 메시 주소 10.0.0.N/24를 유도한다.
슬롯 1은 마스터 전용이며, 워커 슬롯은 조건부 쓰기(claim)로 예약한 뒤에만 사용한다.
"""

from datetime import datetime
from typing import Callable, Dict, Union

from .errors import RecordDecodeError, SlotAllocatorError, SlotExhaustedError
from .logger import get_logger
from .models import (
    LEGACY_MESH_SUFFIX,
    MASTER_SLOT,
    MAX_SLOT,
    NODES_PREFIX,
    SLOTS_PREFIX,
    NodeRecord,
    Role,
    format_timestamp,
    node_path,
    slot_claim_path,
    slot_name,
    utc_now,
    valid_slot,
)
from .registry import RegistryClient

FIRST_WORKER_SLOT = MASTER_SLOT + 1


class SlotAllocator:
    """슬롯 할당기"""

    def __init__(self, registry: RegistryClient, now: Callable[[], datetime] = utc_now):
        self.registry = registry
        self.now = now
        self.logger = get_logger()

    def assignments(self) -> Dict[int, str]:
        """노드 레코드와 슬롯 예약을 스캔해 슬롯 -> 소유 호스트명 매핑 재구성"""
        owners: Dict[int, str] = {}

        for name in self.registry.list(NODES_PREFIX):
            if name.endswith(LEGACY_MESH_SUFFIX):
                continue
            path = f"{NODES_PREFIX}{name}"
            fields = self.registry.read(path)
            if fields is None:
                continue
            try:
                record = NodeRecord.from_fields(path, fields)
            except RecordDecodeError as e:
                self.logger.debug(f"Ignoring node record during slot scan: {e}")
                continue
            if record.slot is not None:
                owners.setdefault(record.slot, record.hostname)

        for name in self.registry.list(SLOTS_PREFIX):
            slot = valid_slot(name)
            if slot is None:
                continue
            claim = self.registry.read(f"{SLOTS_PREFIX}{name}") or {}
            owners.setdefault(slot, claim.get("hostname", ""))

        return owners

    def _claim(self, slot: int, hostname: str) -> bool:
        """슬롯 예약. 이미 같은 호스트가 예약했으면 성공으로 간주"""
        path = slot_claim_path(slot)
        claim = {"hostname": hostname, "claimed_at": format_timestamp(self.now())}
        if self.registry.write_if_absent(path, claim):
            return True
        current = self.registry.read(path) or {}
        return current.get("hostname") == hostname

    def get_or_assign_slot(self, hostname: str, role: Union[Role, str]) -> int:
        """노드 슬롯 반환 (재부팅 간 동일), 없으면 새로 할당

        Raises:
            SlotExhaustedError: 254를 초과하는 슬롯이 필요함
            SlotAllocatorError: 노드가 아직 등록되지 않음
        """
        role = Role.parse(role) if isinstance(role, str) else role
        path = node_path(hostname)
        fields = self.registry.read(path)
        if fields is None:
            raise SlotAllocatorError(
                f"Node {hostname} is not registered; cannot assign a slot",
                remediation="먼저 노드 등록을 완료하세요.",
            )
        record = NodeRecord.from_fields(path, fields)

        if role == Role.MASTER:
            slot = MASTER_SLOT
            self.registry.write(slot_claim_path(slot), {
                "hostname": hostname, "claimed_at": format_timestamp(self.now()),
            })
            self.logger.info(f"Master node uses {slot_name(slot)}")
        elif record.slot is not None and record.slot != MASTER_SLOT:
            slot = record.slot
            if not self._claim(slot, hostname):
                self.logger.warning(f"{slot_name(slot)} is also claimed by another node; keeping existing assignment")
            self.logger.info(f"Found existing slot assignment: {slot_name(slot)}")
        else:
            slot = self._assign_worker_slot(hostname)

        if slot > MAX_SLOT:
            raise SlotExhaustedError(f"Slot {slot} too high for mesh address assignment (max {MAX_SLOT})")

        if record.slot_name != slot_name(slot):
            record.slot_name = slot_name(slot)
            self.registry.write(path, record.to_fields())
        return slot

    def _assign_worker_slot(self, hostname: str) -> int:
        assignments = self.assignments()
        # 이전 실행에서 예약만 하고 중단된 경우 그 슬롯을 재사용
        own = sorted(slot for slot, owner in assignments.items() if owner == hostname and slot != MASTER_SLOT)
        if own:
            self.logger.info(f"Reusing slot claimed by a previous run: {slot_name(own[0])}")
            return own[0]

        owners = {slot: owner for slot, owner in assignments.items() if owner != hostname}
        self.logger.info(f"No existing slot assignment, used slots: {sorted(owners) or 'none'}")

        candidate = FIRST_WORKER_SLOT
        while True:
            while candidate in owners:
                candidate += 1
            if candidate > MAX_SLOT:
                raise SlotExhaustedError(
                    f"No free slot between {FIRST_WORKER_SLOT} and {MAX_SLOT} ({len(owners)} slots in use)"
                )
            if self._claim(candidate, hostname):
                self.logger.info(f"Assigned worker node: {slot_name(candidate)}")
                return candidate
            # 다른 노드가 먼저 예약함: 다음 번호 시도
            current = self.registry.read(slot_claim_path(candidate)) or {}
            owners[candidate] = current.get("hostname", "")
            self.logger.info(f"{slot_name(candidate)} was claimed concurrently by {owners[candidate] or 'another node'}")
