"""
설정 관리 모듈
YAML/JSON 기반 설정 파일 관리 및 기본값 제공
"""

import os
import yaml
import json
from typing import Dict, Any, Optional
from dataclasses import dataclass, asdict, fields


@dataclass
class RegistryConfig:
    """레지스트리(Vault) 설정"""
    address: str = "https://vhsm.enclaive.cloud/"
    namespace: str = ""
    mount: str = "secret"
    kv_version: int = 2
    token: str = ""
    token_file: str = "~/.vault-token"
    timeout: int = 10
    verify_tls: bool = True


@dataclass
class MeshConfig:
    """메시(WireGuard) 설정"""
    interface: str = "wg0"
    listen_port: int = 51820
    subnet_prefix: str = "10.0.0"
    config_dir: str = "/etc/wireguard"
    egress_interface: str = "eth0"
    keepalive: int = 25
    endpoint_address: str = ""  # 비워두면 내부 주소


@dataclass
class NodeConfig:
    """노드 식별 정보 (비워두면 자동 감지)"""
    hostname: str = ""
    internal_address: str = ""
    external_address: str = ""
    external_ip_url: str = "https://ipinfo.io/ip"


@dataclass
class PathsConfig:
    """외부 구성요소 경로"""
    secrets_dir: str = "/run/cvm-secrets"
    storage_mountpoint: str = "/var/lib/rancher"


@dataclass
class ClusterConfig:
    """클러스터 비밀 정보 설정"""
    rotate_join_token: bool = True
    ca_key_size: int = 4096
    ca_subject: str = "/C=DE/ST=SH/O=ZeroTrust/CN=cluster-ca"
    ca_days: int = 3650


@dataclass
class ControlPlaneConfig:
    """컨트롤 플레인(RKE2) 설정"""
    config_dir: str = "/etc/rancher/rke2"
    kubeconfig: str = "/etc/rancher/rke2/rke2.yaml"
    node_token_file: str = "/var/lib/rancher/rke2/server/node-token"
    server_port: int = 9345
    cni: str = "calico"


@dataclass
class PollingConfig:
    """준비 상태 대기 설정 (고정 간격, 최대 시도 횟수)"""
    interval: float = 5.0
    master_attempts: int = 12
    secrets_attempts: int = 24
    storage_attempts: int = 24
    mesh_attempts: int = 12
    control_plane_attempts: int = 60
    deadline: Optional[float] = None


@dataclass
class AgentConfig:
    """에이전트 설정"""
    log_dir: str = "/var/log/cvm-mesh-agent"
    log_level: str = "INFO"


class Config:
    """전체 설정 관리 클래스"""

    DEFAULT_CONFIG_PATHS = [
        "/etc/cvm-mesh-agent/config.yaml",
        "~/.cvm-mesh-agent/config.yaml",
        "./config.yaml",
    ]

    SECTIONS = ("registry", "mesh", "node", "paths", "cluster", "control_plane", "polling", "agent")

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path
        self.registry = RegistryConfig()
        self.mesh = MeshConfig()
        self.node = NodeConfig()
        self.paths = PathsConfig()
        self.cluster = ClusterConfig()
        self.control_plane = ControlPlaneConfig()
        self.polling = PollingConfig()
        self.agent = AgentConfig()

        if config_path:
            self.load(config_path)
        else:
            self._load_from_default_paths()

    def _load_from_default_paths(self):
        """기본 경로에서 설정 파일 로드"""
        for path in self.DEFAULT_CONFIG_PATHS:
            expanded_path = os.path.expanduser(path)
            if os.path.exists(expanded_path):
                self.load(expanded_path)
                return

    def load(self, path: str):
        """설정 파일 로드"""
        path = os.path.expanduser(path)
        if not os.path.exists(path):
            return

        with open(path, 'r', encoding='utf-8') as f:
            if path.endswith('.json'):
                data = json.load(f)
            else:
                data = yaml.safe_load(f) or {}

        self._update_from_dict(data)
        self.config_path = path

    def _update_from_dict(self, data: Dict[str, Any]):
        """딕셔너리에서 설정 업데이트 (알 수 없는 키는 무시)"""
        for section in self.SECTIONS:
            values = data.get(section)
            if not isinstance(values, dict):
                continue
            target = getattr(self, section)
            known = {f.name for f in fields(target)}
            for key, value in values.items():
                if key in known:
                    setattr(target, key, value)

    def save(self, path: Optional[str] = None):
        """설정 파일 저장"""
        save_path = path or self.config_path or self.DEFAULT_CONFIG_PATHS[0]
        save_path = os.path.expanduser(save_path)

        directory = os.path.dirname(save_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        data = self.to_dict()
        with open(save_path, 'w', encoding='utf-8') as f:
            if save_path.endswith('.json'):
                json.dump(data, f, indent=2)
            else:
                yaml.dump(data, f, default_flow_style=False, allow_unicode=True)

    def to_dict(self) -> Dict[str, Any]:
        """딕셔너리로 변환"""
        return {section: asdict(getattr(self, section)) for section in self.SECTIONS}

    def create_sample(self, output_path: str):
        """샘플 설정 파일 생성"""
        template = """# CVM Mesh Agent Configuration File
# 이 파일을 복사하여 config.yaml로 사용하세요

# 공유 레지스트리 (Vault KV)
registry:
  address: "https://vhsm.enclaive.cloud/"
  namespace: ""  # Vault Enterprise 네임스페이스 (예: team-msc)
  mount: "secret"
  kv_version: 2  # 2: check-and-set 지원, 1: cubbyhole/KV v1 (동시 조인 보호 불완전)
  token: ""  # 비워두면 VAULT_TOKEN 환경변수 또는 token_file 사용
  token_file: "~/.vault-token"
  timeout: 10
  verify_tls: true

# 메시 네트워크 (WireGuard)
mesh:
  interface: "wg0"
  listen_port: 51820
  subnet_prefix: "10.0.0"  # 슬롯 N -> 10.0.0.N/24
  config_dir: "/etc/wireguard"
  egress_interface: "eth0"
  keepalive: 25
  endpoint_address: ""  # 다른 노드가 접속할 주소 (비워두면 내부 주소)

# 노드 정보 (비워두면 자동 감지)
node:
  hostname: ""
  internal_address: ""
  external_address: ""
  external_ip_url: "https://ipinfo.io/ip"

# 외부 구성요소 경로
paths:
  secrets_dir: "/run/cvm-secrets"
  storage_mountpoint: "/var/lib/rancher"

# 클러스터 비밀 정보
cluster:
  rotate_join_token: true  # 마스터 재실행 시 조인 토큰 교체 여부
  ca_key_size: 4096
  ca_subject: "/C=DE/ST=SH/O=ZeroTrust/CN=cluster-ca"
  ca_days: 3650

# 컨트롤 플레인 (RKE2)
control_plane:
  config_dir: "/etc/rancher/rke2"
  kubeconfig: "/etc/rancher/rke2/rke2.yaml"
  node_token_file: "/var/lib/rancher/rke2/server/node-token"
  server_port: 9345
  cni: "calico"

# 준비 상태 대기
polling:
  interval: 5
  master_attempts: 12
  secrets_attempts: 24
  storage_attempts: 24
  mesh_attempts: 12
  control_plane_attempts: 60
  deadline: null  # 대기 단계별 최대 시간(초), null이면 시도 횟수만 적용

# 에이전트 설정
agent:
  log_dir: "/var/log/cvm-mesh-agent"
  log_level: "INFO"  # DEBUG, INFO, WARN, ERROR
"""

        directory = os.path.dirname(output_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(output_path, 'w', encoding='utf-8') as f:
            f.write(template)
