"""
노드 등록 모듈
노드 레코드와 (마스터의 경우) 클러스터 정보 싱글톤을 레지스트리에 기록
"""

from datetime import datetime
from typing import Callable, Optional, Union

from .config import ClusterConfig
from .crypto import generate_cluster_ca, generate_private_key, generate_token
from .errors import MasterNotFoundError, RecordDecodeError, RegistrarError
from .logger import get_logger
from .models import (
    CLUSTER_INFO_PATH,
    SECRETS_PREFIX,
    ClusterInfoRecord,
    NodeRecord,
    NodeStatus,
    Role,
    format_timestamp,
    node_path,
    utc_now,
)
from .registry import RegistryClient


def secret_path(hostname: str, kind: str) -> str:
    return f"{SECRETS_PREFIX}{hostname}-{kind}"


class Registrar:
    """노드 등록 (부팅마다 호출해도 안전)"""

    def __init__(self, registry: RegistryClient, cluster: Optional[ClusterConfig] = None,
                 now: Callable[[], datetime] = utc_now,
                 ca_factory: Callable = generate_cluster_ca):
        self.registry = registry
        self.cluster = cluster or ClusterConfig()
        self.now = now
        self.ca_factory = ca_factory
        self.logger = get_logger()

    def read_node(self, hostname: str) -> Optional[NodeRecord]:
        path = node_path(hostname)
        fields = self.registry.read(path)
        if fields is None:
            return None
        return NodeRecord.from_fields(path, fields)

    def read_cluster_info(self) -> Optional[ClusterInfoRecord]:
        fields = self.registry.read(CLUSTER_INFO_PATH)
        if fields is None:
            return None
        return ClusterInfoRecord.from_fields(CLUSTER_INFO_PATH, fields)

    def register(self, hostname: str, role: Union[Role, str], internal_address: str,
                 external_address: str, proof) -> NodeRecord:
        """노드 레코드 기록

        Raises:
            MasterNotFoundError: 워커인데 클러스터 정보가 없음 (아무것도 기록하지 않음)
        """
        role = Role.parse(role) if isinstance(role, str) else role
        proof_text = proof.to_json() if hasattr(proof, "to_json") else str(proof)

        # 쓰기 전에 전제 조건 확인
        cluster_info = None
        if role == Role.WORKER:
            cluster_info = self.read_cluster_info()
            if cluster_info is None:
                raise MasterNotFoundError(
                    f"No master registered in the cluster ({CLUSTER_INFO_PATH} is absent); "
                    f"worker {hostname} was not registered"
                )
            self.logger.info(f"Found master {cluster_info.master_hostname} at {cluster_info.master_internal_address}")

        try:
            existing = self.read_node(hostname)
        except RecordDecodeError as e:
            self.logger.warning(f"Overwriting unreadable node record: {e}")
            existing = None

        record = NodeRecord(
            hostname=hostname,
            role=role,
            internal_address=internal_address,
            external_address=external_address,
            attestation_proof=proof_text,
            status=NodeStatus.VERIFIED,
            slot_name=existing.slot_name if existing else None,
            join_time=format_timestamp(self.now()),
        )
        self.registry.write(node_path(hostname), record.to_fields())
        self.logger.info(f"Registered {role.value} node {hostname}")

        if role == Role.MASTER:
            cluster_info = self._publish_cluster_info(hostname, internal_address, external_address)

        self._ensure_node_secrets(hostname, role, cluster_info)
        return record

    def _publish_cluster_info(self, hostname: str, internal_address: str,
                              external_address: str) -> ClusterInfoRecord:
        try:
            existing = self.read_cluster_info()
        except RecordDecodeError as e:
            self.logger.warning(f"Replacing unreadable cluster info: {e}")
            existing = None

        if existing is not None and existing.master_hostname != hostname:
            self.logger.warning(
                f"Taking over cluster info from previous master {existing.master_hostname}"
            )

        if existing is not None and not self.cluster.rotate_join_token and existing.join_token:
            self.logger.info("Preserving existing cluster join token (rotate_join_token=false)")
            token = existing.join_token
            ca_key, ca_cert = existing.ca_key_material, existing.ca_cert_material
            created_at = existing.created_at
            if not ca_key or not ca_cert:
                ca_key, ca_cert = self._new_ca()
        else:
            if existing is not None and existing.join_token:
                # 아직 조인하지 않은 워커는 새 토큰을 다시 읽어야 한다
                self.logger.warning("Rotating cluster join token and CA material (rotate_join_token=true)")
            token = generate_token()
            ca_key, ca_cert = self._new_ca()
            created_at = format_timestamp(self.now())

        info = ClusterInfoRecord(
            master_hostname=hostname,
            master_internal_address=internal_address,
            master_external_address=external_address,
            join_token=token,
            ca_key_material=ca_key,
            ca_cert_material=ca_cert,
            created_at=created_at,
        )
        self.registry.write(CLUSTER_INFO_PATH, info.to_fields())
        self.logger.info("Cluster info published")
        return info

    def _new_ca(self):
        return self.ca_factory(self.cluster.ca_subject, key_size=self.cluster.ca_key_size,
                               days=self.cluster.ca_days)

    def _ensure_node_secrets(self, hostname: str, role: Role,
                             cluster_info: Optional[ClusterInfoRecord]):
        """노드별 비밀 레코드 생성 (디스크 키와 메시 키는 기존 값 유지)"""
        created = self.registry.write_if_absent(secret_path(hostname, "luks"), {
            "key": generate_token(),
            "purpose": "disk_encryption",
            "node_role": role.value,
        })
        if created:
            self.logger.info("Disk encryption key created")

        created = self.registry.write_if_absent(secret_path(hostname, "wireguard"), {
            "private_key": generate_private_key(),
            "purpose": "vpn_encryption",
            "node_role": role.value,
        })
        if created:
            self.logger.info("Mesh private key created")

        kubernetes = {
            "token": cluster_info.join_token if cluster_info else "",
            "purpose": "k8s_master_token" if role == Role.MASTER else "k8s_worker_token",
            "node_role": role.value,
        }
        if role == Role.WORKER and cluster_info is not None:
            kubernetes["master_ip"] = cluster_info.master_internal_address
        self.registry.write(secret_path(hostname, "kubernetes"), kubernetes)

    def update_join_token(self, hostname: str, token: str) -> ClusterInfoRecord:
        """컨트롤 플레인이 발급한 실제 조인 토큰을 클러스터 정보에 반영 (마스터 전용)"""
        info = self.read_cluster_info()
        if info is None or info.master_hostname != hostname:
            raise RegistrarError(
                f"{hostname} is not the registered master; refusing to update the join token",
                remediation="이 노드를 master 역할로 다시 등록한 뒤 재실행하세요.",
            )
        info.join_token = token
        self.registry.write(CLUSTER_INFO_PATH, info.to_fields())
        self.registry.write(secret_path(hostname, "kubernetes"), {
            "token": token,
            "purpose": "k8s_master_real_token",
            "node_role": Role.MASTER.value,
            "updated": format_timestamp(self.now()),
        })
        self.logger.info("Cluster join token updated from control plane")
        return info
