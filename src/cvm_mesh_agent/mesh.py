"""
메시 인터페이스 관리 모듈 (wg-quick systemd 유닛)
설정 파일 기록은 wireguard 모듈이 담당하고, 여기서는 유닛 활성화/재시작/상태 확인만 수행
"""

import os
import subprocess
from typing import Callable, Tuple

from rich.console import Console

from .config import MeshConfig
from .logger import get_logger

console = Console()


class MeshInterfaceManager:
    """메시 인터페이스 관리 클래스"""

    def __init__(self, config: MeshConfig, runner: Callable[..., subprocess.CompletedProcess] = subprocess.run):
        self.config = config
        self.runner = runner
        self.logger = get_logger()

    @property
    def unit(self) -> str:
        return f"wg-quick@{self.config.interface}"

    @property
    def config_path(self) -> str:
        return os.path.join(self.config.config_dir, f"{self.config.interface}.conf")

    def _systemctl(self, *args: str) -> subprocess.CompletedProcess:
        return self.runner(["systemctl", *args], capture_output=True, text=True, timeout=60)

    def is_active(self) -> bool:
        """유닛 실행 상태 확인"""
        try:
            result = self._systemctl("is-active", self.unit)
        except (OSError, subprocess.TimeoutExpired) as e:
            self.logger.debug(f"Cannot query {self.unit}: {e}")
            return False
        active = result.stdout.strip() == "active"
        self.logger.debug(f"{self.unit} active: {active}")
        return active

    def start(self) -> Tuple[bool, str]:
        """부팅 시 자동 시작 설정 후 재시작 (새 설정 반영)"""
        console.print(f"[cyan]메시 인터페이스 시작 중 ({self.unit})...[/cyan]")
        self.logger.info(f"Enabling and restarting {self.unit}...")

        for action in ("enable", "restart"):
            try:
                result = self._systemctl(action, self.unit)
            except (OSError, subprocess.TimeoutExpired) as e:
                error_msg = f"{self.unit} {action} 실패: {e}"
                self.logger.error(error_msg)
                return False, error_msg

            if result.returncode != 0:
                error_msg = f"{self.unit} {action} 실패: {(result.stderr or result.stdout).strip()}"
                self.logger.error(error_msg)
                return False, error_msg

        self.logger.info(f"{self.unit} restarted")
        return True, "시작 요청 완료"
