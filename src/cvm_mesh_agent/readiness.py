"""
외부 구성요소 준비 상태 확인
비밀 정보 파일(cvm-secrets)과 암호화 스토리지 마운트(cvm-storage)
"""

import os
from typing import List, Union

from .config import PathsConfig
from .logger import get_logger
from .models import Role

MASTER_SECRET_FILES = ("node.role", "wg.key", "k8s.token")
WORKER_SECRET_FILES = MASTER_SECRET_FILES + ("master.ip",)


class ReadinessChecker:
    """준비 상태 신호 확인 (폴링은 호출 측에서 수행)"""

    def __init__(self, paths: PathsConfig):
        self.paths = paths
        self.logger = get_logger()

    def required_secrets(self, role: Union[Role, str]) -> List[str]:
        role = Role.parse(role) if isinstance(role, str) else role
        names = MASTER_SECRET_FILES if role == Role.MASTER else WORKER_SECRET_FILES
        return list(names)

    def missing_secrets(self, role: Union[Role, str]) -> List[str]:
        """아직 준비되지 않은(없거나 비어 있는) 비밀 파일 목록"""
        missing = []
        for name in self.required_secrets(role):
            path = os.path.join(self.paths.secrets_dir, name)
            if not os.path.isfile(path) or os.path.getsize(path) == 0:
                missing.append(name)
        return missing

    def secrets_ready(self, role: Union[Role, str]) -> bool:
        missing = self.missing_secrets(role)
        if missing:
            self.logger.debug(f"Secrets not ready in {self.paths.secrets_dir}: missing {', '.join(missing)}")
            return False
        return True

    def read_secret(self, name: str) -> str:
        """비밀 파일 내용 (없으면 빈 문자열)"""
        path = os.path.join(self.paths.secrets_dir, name)
        try:
            with open(path, "r", encoding="utf-8") as f:
                return f.read().strip()
        except FileNotFoundError:
            return ""

    def storage_ready(self) -> bool:
        mounted = os.path.ismount(self.paths.storage_mountpoint)
        if not mounted:
            self.logger.debug(f"{self.paths.storage_mountpoint} is not a mount point yet")
        return mounted
