"""
노드 식별 정보 감지 모듈
호스트명, 내부 주소(hostname -I), 외부 주소(HTTP 조회) 감지. 설정 값이 있으면 우선 사용
"""

import socket
import subprocess
from typing import Callable, Optional

import requests

from .config import NodeConfig
from .logger import get_logger


class NodeIdentity:
    """노드 식별 정보"""

    def __init__(self, config: NodeConfig, session: Optional[requests.Session] = None,
                 runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
                 timeout: int = 5):
        self.config = config
        self.session = session or requests.Session()
        self.runner = runner
        self.timeout = timeout
        self.logger = get_logger()

    def hostname(self) -> str:
        return self.config.hostname or socket.gethostname()

    def internal_address(self) -> str:
        """내부 주소: 설정 값, 없으면 hostname -I의 첫 번째 주소"""
        if self.config.internal_address:
            return self.config.internal_address

        try:
            result = self.runner(["hostname", "-I"], capture_output=True, text=True, timeout=10)
            addresses = result.stdout.split() if result.returncode == 0 else []
        except (OSError, subprocess.TimeoutExpired) as e:
            self.logger.warning(f"hostname -I failed: {e}")
            addresses = []

        if addresses:
            self.logger.debug(f"Internal address: {addresses[0]}")
            return addresses[0]

        self.logger.warning("No internal address found, falling back to 127.0.0.1")
        return "127.0.0.1"

    def external_address(self, internal: Optional[str] = None) -> str:
        """외부 주소: 설정 값, 없으면 HTTP 조회, 실패 시 내부 주소"""
        if self.config.external_address:
            return self.config.external_address

        fallback = internal or self.internal_address()
        if not self.config.external_ip_url:
            return fallback

        try:
            response = self.session.get(self.config.external_ip_url, timeout=self.timeout)
            address = response.text.strip() if response.status_code < 400 else ""
        except requests.exceptions.RequestException as e:
            self.logger.warning(f"External address lookup failed: {e}")
            address = ""

        if not address:
            self.logger.info(f"Using internal address {fallback} as external address")
            return fallback
        self.logger.debug(f"External address: {address}")
        return address
