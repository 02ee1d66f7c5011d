"""
공통 테스트 픽스처
"""

import subprocess
from datetime import datetime, timedelta, timezone

import pytest

from cvm_mesh_agent.attestation import METHOD_DERIVED, ProofBlob
from cvm_mesh_agent.logger import init_logger
from cvm_mesh_agent.registry import InMemoryRegistry


@pytest.fixture(autouse=True)
def test_logger(tmp_path):
    """로그를 임시 디렉토리에 기록"""
    return init_logger(str(tmp_path / "logs"), "DEBUG", True)


class FakeClock:
    """호출할 때마다 지정한 만큼 진행하는 시계"""

    def __init__(self, start=None, step=timedelta(seconds=1)):
        self.current = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.step = step

    def __call__(self):
        value = self.current
        self.current = self.current + self.step
        return value


class FakeRunner:
    """subprocess.run 대체: 명령어별 응답을 지정하고 호출을 기록"""

    def __init__(self, responses=None, default_stdout="", default_returncode=0):
        self.responses = responses or {}
        self.default_stdout = default_stdout
        self.default_returncode = default_returncode
        self.calls = []

    def __call__(self, cmd, **kwargs):
        self.calls.append(list(cmd))
        key = " ".join(cmd)
        returncode, stdout = self.responses.get(key, (self.default_returncode, self.default_stdout))
        return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr="")


def stub_ca_factory(subject, key_size=4096, days=3650):
    return "Y2Eta2V5", "Y2EtY2VydA=="


def make_proof(hostname="node", ip="192.168.0.10"):
    return ProofBlob(hostname, METHOD_DERIVED, "ab" * 32, "2024-01-01T00:00:00Z", ip, ["cpu_flags"])


@pytest.fixture
def registry():
    return InMemoryRegistry()


@pytest.fixture
def clock():
    return FakeClock()
