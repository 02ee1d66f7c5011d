"""
제한된 재시도 폴링 헬퍼
고정 간격, 최대 시도 횟수, 데드라인, 취소 훅 지원. 테스트에서 시계 주입 가능
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional, Type, TypeVar

from .errors import AgentError, ReadinessTimeout
from .logger import get_logger

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """폴링 정책"""
    interval: float = 5.0
    max_attempts: int = 12
    deadline: Optional[float] = None  # 시작 시점부터의 초 단위 상한


class Poller:
    """조건이 참이 될 때까지 블로킹 폴링"""

    def __init__(self, clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self.clock = clock
        self.sleep = sleep
        self.logger = get_logger()

    def wait_until(self, check: Callable[[], T], policy: RetryPolicy, description: str,
                   timeout_error: Type[AgentError] = ReadinessTimeout,
                   cancelled: Optional[Callable[[], bool]] = None) -> T:
        """check()가 참 값을 반환할 때까지 대기하고 그 값을 반환

        Raises:
            timeout_error: 시도 횟수 또는 데드라인 초과, 혹은 취소됨
        """
        attempts = max(1, policy.max_attempts)
        started = self.clock()

        for attempt in range(1, attempts + 1):
            if cancelled is not None and cancelled():
                raise timeout_error(f"Waiting for {description} was cancelled after {attempt - 1} attempts")

            result = check()
            if result:
                self.logger.debug(f"{description} ready after {attempt} attempt(s)")
                return result

            if attempt == attempts:
                break

            if policy.deadline is not None and self.clock() - started + policy.interval > policy.deadline:
                raise timeout_error(
                    f"{description} not ready before deadline ({policy.deadline:g}s, {attempt} attempts)"
                )

            self.logger.debug(f"Waiting for {description} ({attempt}/{attempts})")
            self.sleep(policy.interval)

        raise timeout_error(
            f"{description} not ready after {attempts} attempts "
            f"({policy.interval:g}s interval)"
        )
