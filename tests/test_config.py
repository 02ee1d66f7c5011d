"""
설정 관리 모듈 테스트
"""

import os
import tempfile
import pytest
from cvm_mesh_agent.config import Config


def test_default_config(tmp_path):
    """기본 설정 테스트"""
    config = Config(str(tmp_path / "missing.yaml"))
    assert config.mesh.interface == "wg0"
    assert config.mesh.listen_port == 51820
    assert config.mesh.subnet_prefix == "10.0.0"
    assert config.registry.kv_version == 2
    assert config.cluster.rotate_join_token == True
    assert config.polling.deadline is None


def test_config_load_yaml():
    """YAML 설정 파일 로드 테스트"""
    yaml_content = """
registry:
  address: "https://vault.example.com"
  namespace: "team-msc"
  kv_version: 1

mesh:
  listen_port: 51821

cluster:
  rotate_join_token: false

unknown_section:
  foo: bar
"""

    with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
        f.write(yaml_content)
        temp_path = f.name

    try:
        config = Config(temp_path)
        assert config.registry.address == "https://vault.example.com"
        assert config.registry.namespace == "team-msc"
        assert config.registry.kv_version == 1
        assert config.mesh.listen_port == 51821
        assert config.mesh.interface == "wg0"
        assert config.cluster.rotate_join_token == False
        assert config.config_path == temp_path
    finally:
        os.unlink(temp_path)


def test_config_ignores_unknown_keys(tmp_path):
    """알 수 없는 키 무시 테스트"""
    path = tmp_path / "config.yaml"
    path.write_text("mesh:\n  interface: wg1\n  bogus: 1\n", encoding="utf-8")

    config = Config(str(path))
    assert config.mesh.interface == "wg1"
    assert not hasattr(config.mesh, "bogus")


def test_config_load_json(tmp_path):
    """JSON 설정 파일 로드 테스트"""
    path = tmp_path / "config.json"
    path.write_text('{"paths": {"secrets_dir": "/tmp/secrets"}}', encoding="utf-8")

    config = Config(str(path))
    assert config.paths.secrets_dir == "/tmp/secrets"


def test_config_save(tmp_path):
    """설정 저장 테스트"""
    config = Config(str(tmp_path / "missing.yaml"))
    config.registry.address = "https://vault.internal:8200"
    config.polling.interval = 1.5

    temp_path = str(tmp_path / "saved" / "config.yaml")
    config.save(temp_path)

    # 저장된 파일 다시 로드
    config2 = Config(temp_path)
    assert config2.registry.address == "https://vault.internal:8200"
    assert config2.polling.interval == 1.5


def test_config_to_dict(tmp_path):
    """딕셔너리 변환 테스트"""
    config = Config(str(tmp_path / "missing.yaml"))
    data = config.to_dict()

    for section in Config.SECTIONS:
        assert section in data
    assert data["mesh"]["keepalive"] == 25
    assert data["control_plane"]["server_port"] == 9345


def test_create_sample_is_loadable(tmp_path):
    """샘플 설정 파일 생성 및 로드 테스트"""
    output = str(tmp_path / "sample" / "config.yaml")
    Config(str(tmp_path / "missing.yaml")).create_sample(output)

    config = Config(output)
    assert config.registry.mount == "secret"
    assert config.paths.storage_mountpoint == "/var/lib/rancher"
    assert config.polling.deadline is None
