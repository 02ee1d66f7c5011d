"""
피어 탐색 모듈
슬롯 키 레코드를 우선 사용하고, 슬롯 도입 이전에 조인한 노드는 호스트명 키 레코드로 보완한다.
불완전한 레코드는 로그만 남기고 건너뛰며 나머지 탐색은 계속한다.
"""

from typing import Dict, List, Optional, Set

from .errors import RecordDecodeError
from .logger import get_logger
from .models import (
    LEGACY_MESH_SUFFIX,
    MESH_PREFIX,
    NODES_PREFIX,
    MeshPeerRecord,
    NodeRecord,
    legacy_mesh_path,
    mesh_path,
    node_path,
    valid_slot,
)
from .registry import RegistryClient


class PeerDiscovery:
    """레지스트리에서 현재 피어 집합을 구성 (호출마다 새로 계산)"""

    def __init__(self, registry: RegistryClient):
        self.registry = registry
        self.logger = get_logger()

    def publish(self, peer: MeshPeerRecord):
        """자신의 메시 레코드를 슬롯 키와 과거 형식 양쪽에 게시"""
        if peer.slot is None:
            raise ValueError("cannot publish a mesh record without a slot")
        self.registry.write(mesh_path(peer.slot), peer.to_fields())
        self.registry.write(legacy_mesh_path(peer.hostname), peer.to_legacy_fields())
        self.logger.info(f"Published mesh record for {peer.hostname} ({peer.mesh_address})")

    def _own_slot(self, hostname: str) -> Optional[int]:
        path = node_path(hostname)
        fields = self.registry.read(path)
        if fields is None:
            return None
        try:
            return NodeRecord.from_fields(path, fields).slot
        except RecordDecodeError:
            return None

    def list_peers(self, self_hostname: str) -> List[MeshPeerRecord]:
        """자신을 제외한 사용 가능한 피어 목록 (슬롯 오름차순, 슬롯 없는 레코드는 호스트명 순으로 마지막)"""
        own_slot = self._own_slot(self_hostname)
        peers: Dict[str, MeshPeerRecord] = {}
        slotted: Set[int] = set()

        for name in self.registry.list(MESH_PREFIX):
            slot = valid_slot(name)
            if slot is None:
                self.logger.info(f"Skipping {name} - not a valid slot name")
                continue
            if slot == own_slot:
                continue

            path = f"{MESH_PREFIX}{name}"
            peer = self._decode(path, slot=slot)
            if peer is None or peer.hostname == self_hostname:
                continue
            slotted.add(slot)

            known = peers.get(peer.hostname)
            if known is not None:
                self.logger.warning(
                    f"{peer.hostname} is published under SLOT-{known.slot} and SLOT-{slot}; using the lower slot"
                )
                if known.slot <= slot:
                    continue
            peers[peer.hostname] = peer

        self.logger.debug("Checking for legacy hostname-based mesh records...")
        for name in self.registry.list(NODES_PREFIX):
            if not name.endswith(LEGACY_MESH_SUFFIX):
                continue
            hostname = name[:-len(LEGACY_MESH_SUFFIX)]
            if not hostname or hostname == self_hostname or hostname in peers:
                continue

            peer = self._decode(f"{NODES_PREFIX}{name}", hostname=hostname)
            if peer is None or (peer.slot is not None and peer.slot == own_slot):
                continue
            if peer.slot in slotted:
                self.logger.warning(
                    f"Ignoring legacy record of {hostname}: SLOT-{peer.slot} is published by another node"
                )
                continue
            peers[hostname] = peer

        result = sorted(peers.values(), key=MeshPeerRecord.sort_key)
        self.logger.info(f"Discovered {len(result)} peer(s)")
        return result

    def _decode(self, path: str, slot: Optional[int] = None,
                hostname: Optional[str] = None) -> Optional[MeshPeerRecord]:
        fields = self.registry.read(path)
        if fields is None:
            self.logger.info(f"Skipping {path} - no data found")
            return None

        if slot is None:
            slot = valid_slot(fields.get("slot_name"))

        try:
            peer = MeshPeerRecord.from_fields(path, fields, slot=slot, hostname=hostname)
        except RecordDecodeError as e:
            self.logger.info(f"Skipping {path} - {e}")
            return None

        if hostname is not None:
            peer.hostname = hostname
        return peer
