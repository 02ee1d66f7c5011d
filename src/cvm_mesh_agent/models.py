"""
레지스트리 레코드 모델
모든 값은 평평한 문자열 필드로 저장되며, 디코딩 시점에 검증한다
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Mapping, Optional

from .errors import IncompletePeerRecord, RecordDecodeError

NODES_PREFIX = "cluster-nodes/"
MESH_PREFIX = "cluster-mesh/"
SLOTS_PREFIX = "cluster-slots/"
SECRETS_PREFIX = "cvm-cluster/"
CLUSTER_INFO_PATH = "cluster-info/master"
LEGACY_MESH_SUFFIX = "-mesh"

MIN_SLOT = 1
MAX_SLOT = 254
MASTER_SLOT = 1

_SLOT_NUMBER = re.compile(r"(\d+)$")
_NULL_VALUES = (None, "", "null")


class Role(str, Enum):
    MASTER = "master"
    WORKER = "worker"

    @classmethod
    def parse(cls, value: str) -> "Role":
        """역할 문자열 파싱 (server/agent 별칭 허용)"""
        value = (value or "").strip().lower()
        if value in ("master", "server"):
            return cls.MASTER
        if value in ("worker", "agent"):
            return cls.WORKER
        raise ValueError(f"Unknown node role: {value!r}")


class NodeStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def slot_name(slot: int) -> str:
    return f"SLOT-{slot}"


def parse_slot(name: str) -> int:
    """'SLOT-N' (또는 과거 형식 'POS-N')에서 슬롯 번호 추출"""
    match = _SLOT_NUMBER.search(name or "")
    if not match:
        raise ValueError(f"Not a slot name: {name!r}")
    return int(match.group(1))


def valid_slot(name: Optional[str]) -> Optional[int]:
    """슬롯 번호. 형식이 틀리거나 1-254 범위를 벗어나면 None"""
    try:
        slot = parse_slot(name)
    except ValueError:
        return None
    return slot if MIN_SLOT <= slot <= MAX_SLOT else None


def mesh_address(slot: int, subnet_prefix: str = "10.0.0") -> str:
    return f"{subnet_prefix}.{slot}/24"


def node_path(hostname: str) -> str:
    return f"{NODES_PREFIX}{hostname}"


def legacy_mesh_path(hostname: str) -> str:
    return f"{NODES_PREFIX}{hostname}{LEGACY_MESH_SUFFIX}"


def mesh_path(slot: int) -> str:
    return f"{MESH_PREFIX}{slot_name(slot)}"


def slot_claim_path(slot: int) -> str:
    return f"{SLOTS_PREFIX}{slot_name(slot)}"


def _value(fields: Mapping[str, str], *names: str) -> Optional[str]:
    for name in names:
        value = fields.get(name)
        if value not in _NULL_VALUES:
            return str(value)
    return None


@dataclass
class NodeRecord:
    """노드 식별 레코드 (키: 호스트명)"""
    hostname: str
    role: Role
    internal_address: str
    external_address: str
    attestation_proof: str = ""
    status: NodeStatus = NodeStatus.PENDING
    slot_name: Optional[str] = None
    join_time: str = ""

    @property
    def slot(self) -> Optional[int]:
        return valid_slot(self.slot_name)

    def to_fields(self) -> Dict[str, str]:
        fields = {
            "hostname": self.hostname,
            "role": self.role.value,
            "internal_ip": self.internal_address,
            "external_ip": self.external_address,
            "attestation": self.attestation_proof,
            "status": self.status.value,
            "join_time": self.join_time,
        }
        if self.slot_name:
            fields["slot_name"] = self.slot_name
        return fields

    @classmethod
    def from_fields(cls, path: str, fields: Mapping[str, str]) -> "NodeRecord":
        hostname = _value(fields, "hostname") or path.rsplit("/", 1)[-1]
        role = _value(fields, "role")
        internal = _value(fields, "internal_ip")
        missing = [name for name, value in (("role", role), ("internal_ip", internal)) if value is None]
        if missing:
            raise RecordDecodeError(path, missing)

        try:
            parsed_role = Role.parse(role)
            status = NodeStatus(_value(fields, "status") or NodeStatus.PENDING.value)
        except ValueError as e:
            raise RecordDecodeError(path, reason=str(e))

        return cls(
            hostname=hostname,
            role=parsed_role,
            internal_address=internal,
            external_address=_value(fields, "external_ip") or internal,
            attestation_proof=_value(fields, "attestation") or "",
            status=status,
            slot_name=_value(fields, "slot_name", "pos_name"),
            join_time=_value(fields, "join_time") or "",
        )


@dataclass
class ClusterInfoRecord:
    """마스터가 게시하는 클러스터 싱글톤 레코드"""
    master_hostname: str
    master_internal_address: str
    master_external_address: str
    join_token: str
    ca_key_material: str = ""
    ca_cert_material: str = ""
    created_at: str = ""

    def to_fields(self) -> Dict[str, str]:
        return {
            "master_hostname": self.master_hostname,
            "master_internal_ip": self.master_internal_address,
            "master_external_ip": self.master_external_address,
            "k8s_join_token": self.join_token,
            "cluster_ca_key": self.ca_key_material,
            "cluster_ca_cert": self.ca_cert_material,
            "cluster_created": self.created_at,
        }

    @classmethod
    def from_fields(cls, path: str, fields: Mapping[str, str]) -> "ClusterInfoRecord":
        hostname = _value(fields, "master_hostname")
        internal = _value(fields, "master_internal_ip")
        missing = [name for name, value in (("master_hostname", hostname),
                                            ("master_internal_ip", internal)) if value is None]
        if missing:
            raise RecordDecodeError(path, missing)

        return cls(
            master_hostname=hostname,
            master_internal_address=internal,
            master_external_address=_value(fields, "master_external_ip") or internal,
            join_token=_value(fields, "k8s_join_token") or "",
            ca_key_material=_value(fields, "cluster_ca_key") or "",
            ca_cert_material=_value(fields, "cluster_ca_cert") or "",
            created_at=_value(fields, "cluster_created") or "",
        )


@dataclass
class MeshPeerRecord:
    """메시 피어 레코드 (슬롯 키 또는 과거 형식의 호스트명 키)"""
    hostname: str
    public_key: str
    mesh_address: str
    endpoint_address: str
    role: Optional[Role] = None
    updated_at: str = ""
    slot: Optional[int] = None

    @property
    def mesh_ip(self) -> str:
        return self.mesh_address.split("/", 1)[0]

    def sort_key(self):
        # 슬롯이 없는 과거 형식 레코드는 호스트명 순으로 맨 뒤에 정렬
        if self.slot is None:
            return (1, 0, self.hostname)
        return (0, self.slot, self.hostname)

    def to_fields(self) -> Dict[str, str]:
        fields = {
            "hostname": self.hostname,
            "public_key": self.public_key,
            "mesh_address": self.mesh_address,
            "endpoint_address": self.endpoint_address,
            "updated": self.updated_at,
        }
        if self.role is not None:
            fields["role"] = self.role.value
        return fields

    def to_legacy_fields(self) -> Dict[str, str]:
        fields = {
            "public_key": self.public_key,
            "wireguard_ip": self.mesh_address,
            "node_ip": self.endpoint_address,
            "updated": self.updated_at,
        }
        if self.slot is not None:
            fields["slot_name"] = slot_name(self.slot)
        return fields

    @classmethod
    def from_fields(cls, path: str, fields: Mapping[str, str],
                    slot: Optional[int] = None,
                    hostname: Optional[str] = None) -> "MeshPeerRecord":
        """두 가지 레코드 형식을 모두 디코딩 (wireguard_ip/node_ip 별칭 허용)"""
        public_key = _value(fields, "public_key")
        address = _value(fields, "mesh_address", "wireguard_ip")
        endpoint = _value(fields, "endpoint_address", "node_ip")
        missing = [name for name, value in (("public_key", public_key),
                                            ("mesh_address", address),
                                            ("endpoint_address", endpoint)) if value is None]
        if missing:
            raise IncompletePeerRecord(path, missing)

        peer_hostname = _value(fields, "hostname") or hostname
        if peer_hostname is None:
            raise RecordDecodeError(path, ["hostname"])

        role = _value(fields, "role")
        try:
            parsed_role = Role.parse(role) if role else None
        except ValueError as e:
            raise RecordDecodeError(path, reason=str(e))

        return cls(
            hostname=peer_hostname,
            public_key=public_key,
            mesh_address=address,
            endpoint_address=endpoint,
            role=parsed_role,
            updated_at=_value(fields, "updated_at", "updated") or "",
            slot=slot,
        )
