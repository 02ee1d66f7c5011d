"""
컨트롤 플레인(RKE2) 연동 모듈
설정 파일 작성, 서비스 시작, 준비 상태 확인, 서버 조인 토큰 읽기까지만 담당
"""

import os
import subprocess
from typing import Callable, Dict, List, Optional, Tuple, Union

import yaml
from rich.console import Console

from .config import ControlPlaneConfig
from .logger import get_logger
from .models import Role

console = Console()

SERVER_UNIT = "rke2-server"
AGENT_UNIT = "rke2-agent"


class ControlPlaneManager:
    """RKE2 서버/에이전트 관리 클래스"""

    def __init__(self, config: ControlPlaneConfig,
                 runner: Callable[..., subprocess.CompletedProcess] = subprocess.run):
        self.config = config
        self.runner = runner
        self.logger = get_logger()

    @property
    def config_path(self) -> str:
        return os.path.join(self.config.config_dir, "config.yaml")

    @staticmethod
    def unit_for(role: Union[Role, str]) -> str:
        role = Role.parse(role) if isinstance(role, str) else role
        return SERVER_UNIT if role == Role.MASTER else AGENT_UNIT

    def server_settings(self, hostname: str, mesh_ip: str, internal_address: str,
                        external_address: str) -> Dict:
        tls_san: List[str] = []
        for name in (mesh_ip, internal_address, external_address, "localhost", "127.0.0.1", hostname):
            if name and name not in tls_san:
                tls_san.append(name)
        return {
            "node-name": hostname,
            "node-ip": mesh_ip,
            "advertise-address": mesh_ip,
            "tls-san": tls_san,
            "cni": self.config.cni,
        }

    def agent_settings(self, hostname: str, mesh_ip: str, master_mesh_ip: str, token: str) -> Dict:
        return {
            "node-name": hostname,
            "server": f"https://{master_mesh_ip}:{self.config.server_port}",
            "token": token,
            "node-ip": mesh_ip,
            "cni": self.config.cni,
        }

    def write_config(self, settings: Dict) -> str:
        """config.yaml 기록 (조인 토큰이 포함될 수 있으므로 0600)"""
        os.makedirs(self.config.config_dir, exist_ok=True)
        fd = os.open(self.config_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            yaml.safe_dump(settings, f, default_flow_style=False, sort_keys=False)
        os.chmod(self.config_path, 0o600)
        self.logger.info(f"Control plane configuration written to {self.config_path}")
        return self.config_path

    def start(self, role: Union[Role, str]) -> Tuple[bool, str]:
        """서비스 활성화 및 시작"""
        unit = self.unit_for(role)
        console.print(f"[cyan]{unit} 시작 중...[/cyan]")
        self.logger.info(f"Enabling and starting {unit}...")

        for action in ("enable", "start"):
            try:
                result = self.runner(["systemctl", action, f"{unit}.service"],
                                     capture_output=True, text=True, timeout=120)
            except (OSError, subprocess.TimeoutExpired) as e:
                error_msg = f"{unit} {action} 실패: {e}"
                self.logger.error(error_msg)
                return False, error_msg
            if result.returncode != 0:
                error_msg = f"{unit} {action} 실패: {(result.stderr or result.stdout).strip()}"
                self.logger.error(error_msg)
                return False, error_msg

        return True, "시작 요청 완료"

    def is_ready(self, role: Union[Role, str]) -> bool:
        """마스터: kubeconfig 생성 여부, 워커: 에이전트 유닛 실행 여부"""
        role = Role.parse(role) if isinstance(role, str) else role
        if role == Role.MASTER:
            return os.path.exists(self.config.kubeconfig)

        try:
            result = self.runner(["systemctl", "is-active", AGENT_UNIT],
                                 capture_output=True, text=True, timeout=30)
        except (OSError, subprocess.TimeoutExpired) as e:
            self.logger.debug(f"Cannot query {AGENT_UNIT}: {e}")
            return False
        return result.stdout.strip() == "active"

    def read_node_token(self) -> Optional[str]:
        """서버가 발급한 조인 토큰 (아직 없으면 None)"""
        try:
            with open(self.config.node_token_file, "r", encoding="utf-8") as f:
                token = f.read().strip()
        except FileNotFoundError:
            return None
        return token or None
