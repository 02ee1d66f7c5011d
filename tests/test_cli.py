"""
CLI 테스트 (click CliRunner)
"""

import pytest
import yaml
from click.testing import CliRunner

from cvm_mesh_agent import cli as cli_module
from cvm_mesh_agent import coordinator as coordinator_module
from cvm_mesh_agent.discovery import PeerDiscovery
from cvm_mesh_agent.models import MeshPeerRecord, Role, slot_claim_path
from cvm_mesh_agent.readiness import ReadinessChecker
from cvm_mesh_agent.registrar import Registrar
from cvm_mesh_agent.registry import InMemoryRegistry
from cvm_mesh_agent.slots import SlotAllocator
from conftest import make_proof, stub_ca_factory


class AlwaysReady(ReadinessChecker):
    def secrets_ready(self, role):
        return True

    def storage_ready(self):
        return True


class StaticAttestation:
    def __init__(self, *args, **kwargs):
        pass

    def produce(self, hostname, ip=""):
        return make_proof(hostname, ip)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    data = {
        "node": {"hostname": "m1", "internal_address": "192.168.0.10", "external_address": "192.168.0.10"},
        "paths": {"secrets_dir": str(tmp_path / "secrets")},
        "agent": {"log_dir": str(tmp_path / "logs")},
    }
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return str(path)


@pytest.fixture
def registry(monkeypatch):
    registry = InMemoryRegistry()
    monkeypatch.setattr(cli_module, "create_registry", lambda registry_config: registry)
    return registry


def test_init_creates_sample(tmp_path):
    """샘플 설정 파일 생성 명령 테스트"""
    output = tmp_path / "generated.yaml"
    result = CliRunner().invoke(cli_module.cli, ["init", str(output)])

    assert result.exit_code == 0
    assert output.exists()
    assert "registry:" in output.read_text(encoding="utf-8")


def test_validate_accepts_sample(tmp_path):
    """샘플 설정 파일 유효성 검사 통과"""
    output = str(tmp_path / "sample.yaml")
    CliRunner().invoke(cli_module.cli, ["init", output])

    result = CliRunner().invoke(cli_module.cli, ["validate", "--config", output])
    assert result.exit_code == 0


def test_validate_rejects_bad_kv_version(tmp_path):
    """잘못된 KV 버전 거부"""
    path = tmp_path / "bad.yaml"
    path.write_text("registry:\n  kv_version: 3\n", encoding="utf-8")

    result = CliRunner().invoke(cli_module.cli, ["validate", "--config", str(path)])
    assert result.exit_code == 1


def test_bootstrap_worker_without_master_exits_1(config_file, registry, monkeypatch):
    """마스터 없이 워커 부트스트랩 시 종료 코드 1과 master 안내"""
    monkeypatch.setattr(coordinator_module, "AttestationProvider", StaticAttestation)

    result = CliRunner().invoke(cli_module.cli, ["bootstrap", "worker", "--config", config_file])

    assert result.exit_code == 1
    assert "master" in result.output
    assert registry.paths() == []


def test_bootstrap_slot_exhausted_exits_1(tmp_path, registry, monkeypatch):
    """슬롯이 모두 사용 중이면 종료 코드 1과 조치 방법 출력"""
    monkeypatch.setattr(coordinator_module, "AttestationProvider", StaticAttestation)
    monkeypatch.setattr(coordinator_module, "ReadinessChecker", AlwaysReady)
    Registrar(registry, ca_factory=stub_ca_factory).register(
        "m1", Role.MASTER, "192.168.0.10", "192.168.0.10", make_proof("m1")
    )
    for slot in range(2, 255):
        registry.write(slot_claim_path(slot), {"hostname": f"node-{slot}"})

    path = tmp_path / "worker.yaml"
    data = {
        "node": {"hostname": "w-new", "internal_address": "192.168.0.50", "external_address": "192.168.0.50"},
        "paths": {"secrets_dir": str(tmp_path / "secrets")},
        "agent": {"log_dir": str(tmp_path / "logs")},
    }
    path.write_text(yaml.safe_dump(data), encoding="utf-8")

    result = CliRunner().invoke(cli_module.cli, ["bootstrap", "worker", "--config", str(path), "--target", "mesh"])

    assert result.exit_code == 1
    assert "254" in result.output
    assert "메시 주소 공간" in result.output


def test_bootstrap_malformed_config_exits_1(tmp_path, registry):
    """깨진 YAML 설정 파일은 트레이스백 없이 종료 코드 1"""
    path = tmp_path / "broken.yaml"
    path.write_text("registry: [unclosed\n", encoding="utf-8")

    result = CliRunner().invoke(cli_module.cli, ["bootstrap", "master", "--config", str(path)])

    assert result.exit_code == 1
    assert isinstance(result.exception, SystemExit)
    assert "설정 파일 오류" in result.output
    assert registry.paths() == []


def test_bootstrap_rejects_unknown_role(config_file, registry):
    """알 수 없는 역할 거부"""
    result = CliRunner().invoke(cli_module.cli, ["bootstrap", "observer", "--config", config_file])
    assert result.exit_code == 2


def test_peers_lists_discovered_nodes(config_file, registry):
    """피어 목록 명령 테스트"""
    discovery = PeerDiscovery(registry)
    discovery.publish(MeshPeerRecord("w1", "key-w1", "10.0.0.2/24", "192.168.0.11", role=Role.WORKER, slot=2))
    discovery.publish(MeshPeerRecord("m1", "key-m1", "10.0.0.1/24", "192.168.0.10", role=Role.MASTER, slot=1))

    result = CliRunner().invoke(cli_module.cli, ["peers", "--config", config_file])

    assert result.exit_code == 0
    assert "w1" in result.output
    assert "SLOT-2" in result.output
    assert "key-m1" not in result.output


def test_render_hides_private_key(config_file, registry):
    """메시 설정 미리보기는 개인키를 가림"""
    Registrar(registry, ca_factory=stub_ca_factory).register(
        "m1", Role.MASTER, "192.168.0.10", "192.168.0.10", make_proof("m1")
    )
    SlotAllocator(registry).get_or_assign_slot("m1", Role.MASTER)
    private_key = registry.read("cvm-cluster/m1-wireguard")["private_key"]

    result = CliRunner().invoke(cli_module.cli, ["render", "--config", config_file])

    assert result.exit_code == 0
    assert "[Interface]" in result.output
    assert "Address = 10.0.0.1/24" in result.output
    assert "PrivateKey = <hidden>" in result.output
    assert private_key not in result.output


def test_render_requires_registration(config_file, registry):
    """등록되지 않은 노드의 미리보기는 실패"""
    result = CliRunner().invoke(cli_module.cli, ["render", "--config", config_file])
    assert result.exit_code == 1
