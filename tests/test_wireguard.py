"""
메시 설정 생성 모듈 테스트
"""

import itertools
import os
import stat

from cvm_mesh_agent.models import MeshPeerRecord
from cvm_mesh_agent.wireguard import synthesize, write_config

EXPECTED = """[Interface]
PrivateKey = PRIVATE
Address = 10.0.0.1/24
ListenPort = 51820
PostUp = iptables -A FORWARD -i wg0 -j ACCEPT; iptables -A FORWARD -o wg0 -j ACCEPT; iptables -t nat -A POSTROUTING -o eth0 -j MASQUERADE
PostDown = iptables -D FORWARD -i wg0 -j ACCEPT; iptables -D FORWARD -o wg0 -j ACCEPT; iptables -t nat -D POSTROUTING -o eth0 -j MASQUERADE

[Peer]
PublicKey = key-w1
AllowedIPs = 10.0.0.2/32
Endpoint = 192.168.0.2:51820
PersistentKeepalive = 25

[Peer]
PublicKey = key-w2
AllowedIPs = 10.0.0.3/32
Endpoint = 192.168.0.3:51820
PersistentKeepalive = 25
"""


def peers():
    return [
        MeshPeerRecord("w2", "key-w2", "10.0.0.3/24", "192.168.0.3", slot=3),
        MeshPeerRecord("w1", "key-w1", "10.0.0.2/24", "192.168.0.2", slot=2),
        MeshPeerRecord("legacy", "key-legacy", "10.0.0.40/24", "192.168.0.40"),
    ]


def test_render_format():
    """설정 텍스트 형식 테스트"""
    config = synthesize("PRIVATE", "10.0.0.1/24", 51820, peers()[:2])
    assert config.render() == EXPECTED


def test_synthesize_is_order_independent():
    """입력 순서와 관계없이 동일한 출력"""
    outputs = {
        synthesize("PRIVATE", "10.0.0.1/24", 51820, list(order)).render()
        for order in itertools.permutations(peers())
    }
    assert len(outputs) == 1

    text = outputs.pop()
    assert text.index("key-w1") < text.index("key-w2") < text.index("key-legacy")


def test_synthesize_without_peers():
    """피어가 없으면 인터페이스 섹션만 생성"""
    text = synthesize("PRIVATE", "10.0.0.1/24", 51820, []).render()
    assert "[Peer]" not in text
    assert text.endswith("MASQUERADE\n")


def test_custom_interface_and_keepalive():
    """인터페이스 이름, 외부 인터페이스, keepalive 설정 반영"""
    config = synthesize("PRIVATE", "10.0.0.5/24", 51999, peers()[:1],
                        interface="wg1", egress_interface="ens3", keepalive=10)
    text = config.render()

    assert "-i wg1" in text and "-o ens3" in text
    assert "Endpoint = 192.168.0.3:51999" in text
    assert "PersistentKeepalive = 10" in text


def test_write_config_owner_only(tmp_path):
    """설정 파일 권한 0600 및 변경 여부 반환"""
    path = str(tmp_path / "wireguard" / "wg0.conf")
    config = synthesize("PRIVATE", "10.0.0.1/24", 51820, peers())

    assert write_config(config, path) is True
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
    with open(path, encoding="utf-8") as f:
        assert f.read() == config.render()

    assert write_config(config, path) is False
    assert not os.path.exists(path + ".tmp")

    changed = synthesize("PRIVATE", "10.0.0.1/24", 51820, peers()[:1])
    assert write_config(changed, path) is True
