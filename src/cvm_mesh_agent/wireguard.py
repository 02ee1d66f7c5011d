"""
메시 인터페이스 설정 생성 모듈
같은 피어 집합이면 입력 순서와 관계없이 바이트 단위로 동일한 설정을 생성한다
"""

import os
from dataclasses import dataclass
from typing import Iterable, Tuple

from .models import MeshPeerRecord

DEFAULT_KEEPALIVE = 25


@dataclass(frozen=True)
class InterfaceSection:
    private_key: str
    address: str
    listen_port: int
    post_up: str
    post_down: str

    def render(self) -> str:
        return "\n".join([
            "[Interface]",
            f"PrivateKey = {self.private_key}",
            f"Address = {self.address}",
            f"ListenPort = {self.listen_port}",
            f"PostUp = {self.post_up}",
            f"PostDown = {self.post_down}",
        ])


@dataclass(frozen=True)
class PeerSection:
    public_key: str
    allowed_ips: str
    endpoint: str
    persistent_keepalive: int = DEFAULT_KEEPALIVE

    def render(self) -> str:
        return "\n".join([
            "[Peer]",
            f"PublicKey = {self.public_key}",
            f"AllowedIPs = {self.allowed_ips}",
            f"Endpoint = {self.endpoint}",
            f"PersistentKeepalive = {self.persistent_keepalive}",
        ])


@dataclass(frozen=True)
class InterfaceConfig:
    interface: InterfaceSection
    peers: Tuple[PeerSection, ...]

    @property
    def address(self) -> str:
        return self.interface.address

    def render(self) -> str:
        sections = [self.interface.render()] + [peer.render() for peer in self.peers]
        return "\n\n".join(sections) + "\n"


def forwarding_rules(interface: str = "wg0", egress_interface: str = "eth0") -> Tuple[str, str]:
    """PostUp/PostDown 포워딩 및 NAT 규칙"""
    rules = [
        ("FORWARD", f"-i {interface} -j ACCEPT", None),
        ("FORWARD", f"-o {interface} -j ACCEPT", None),
        ("POSTROUTING", f"-o {egress_interface} -j MASQUERADE", "nat"),
    ]

    def build(action: str) -> str:
        commands = []
        for chain, rule, table in rules:
            table_opt = f"-t {table} " if table else ""
            commands.append(f"iptables {table_opt}{action} {chain} {rule}")
        return "; ".join(commands)

    return build("-A"), build("-D")


def synthesize(private_key: str, mesh_address: str, listen_port: int,
               peers: Iterable[MeshPeerRecord], interface: str = "wg0",
               egress_interface: str = "eth0",
               keepalive: int = DEFAULT_KEEPALIVE) -> InterfaceConfig:
    """자신의 키/주소와 피어 집합으로 인터페이스 설정 생성 (순수 함수)"""
    post_up, post_down = forwarding_rules(interface, egress_interface)
    ordered = sorted(peers, key=lambda p: (p.sort_key(), p.public_key, p.endpoint_address))

    return InterfaceConfig(
        interface=InterfaceSection(
            private_key=private_key,
            address=mesh_address,
            listen_port=listen_port,
            post_up=post_up,
            post_down=post_down,
        ),
        peers=tuple(
            PeerSection(
                public_key=peer.public_key,
                allowed_ips=f"{peer.mesh_ip}/32",
                endpoint=f"{peer.endpoint_address}:{listen_port}",
                persistent_keepalive=keepalive,
            )
            for peer in ordered
        ),
    )


def write_config(config: InterfaceConfig, path: str) -> bool:
    """설정 파일 기록 (소유자 전용 0600). 내용이 바뀌었으면 True"""
    text = config.render()
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    if os.path.exists(path):
        with open(path, "r", encoding="utf-8") as f:
            if f.read() == text:
                os.chmod(path, 0o600)
                return False

    tmp_path = f"{path}.tmp"
    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(text)
    os.chmod(tmp_path, 0o600)
    os.replace(tmp_path, path)
    return True
