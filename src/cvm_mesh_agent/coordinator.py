"""
클러스터 부트스트랩 코디네이터
노드 한 대의 부팅 과정을 순차 상태 머신으로 실행한다.

Unregistered -> Attested -> Registered -> [워커: WaitingForMaster -> MasterFound]
  -> SecretsReady -> StorageReady -> MeshConfigured -> MeshUp
  -> ControlPlaneConfigured -> ControlPlaneUp

치명적 오류는 Failed 상태로 끝나며 이미 기록한 레지스트리 값은 되돌리지 않는다.
모든 단계는 재실행해도 안전하다.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional, Tuple, Union

from rich.console import Console
from rich.table import Table

from .attestation import AttestationProvider
from .config import Config
from .control_plane import ControlPlaneManager
from .crypto import generate_cluster_ca, public_key_from_private
from .discovery import PeerDiscovery
from .errors import (
    AgentError,
    ControlPlaneTimeout,
    MasterNotFoundError,
    MeshStartTimeout,
    RecordDecodeError,
    SecretsTimeout,
    StorageNotReadyError,
)
from .logger import get_logger
from .mesh import MeshInterfaceManager
from .models import (
    MASTER_SLOT,
    ClusterInfoRecord,
    MeshPeerRecord,
    Role,
    format_timestamp,
    mesh_address,
    utc_now,
)
from .network import NodeIdentity
from .readiness import ReadinessChecker
from .registrar import Registrar, secret_path
from .registry import RegistryClient
from .retry import Poller, RetryPolicy
from .slots import SlotAllocator
from .wireguard import InterfaceConfig, synthesize, write_config

console = Console()

TARGET_MESH = "mesh"
TARGET_CONTROL_PLANE = "control-plane"
TARGETS = (TARGET_MESH, TARGET_CONTROL_PLANE)


class NodeState(str, Enum):
    UNREGISTERED = "Unregistered"
    ATTESTED = "Attested"
    REGISTERED = "Registered"
    WAITING_FOR_MASTER = "WaitingForMaster"
    MASTER_FOUND = "MasterFound"
    SECRETS_READY = "SecretsReady"
    STORAGE_READY = "StorageReady"
    MESH_CONFIGURED = "MeshConfigured"
    MESH_UP = "MeshUp"
    CONTROL_PLANE_CONFIGURED = "ControlPlaneConfigured"
    CONTROL_PLANE_UP = "ControlPlaneUp"
    FAILED = "Failed"


@dataclass
class BootstrapResult:
    """부트스트랩 실행 결과"""
    role: Role
    target: str
    state: NodeState = NodeState.UNREGISTERED
    error: Optional[AgentError] = None
    hostname: str = ""
    slot: Optional[int] = None
    mesh_address: str = ""
    peers: List[MeshPeerRecord] = field(default_factory=list)
    history: List[NodeState] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        goal = NodeState.MESH_UP if self.target == TARGET_MESH else NodeState.CONTROL_PLANE_UP
        return self.state == goal


class ClusterBootstrapCoordinator:
    """부트스트랩 코디네이터"""

    def __init__(self, config: Config, registry: RegistryClient, role: Union[Role, str],
                 target: str = TARGET_CONTROL_PLANE,
                 attestation: Optional[AttestationProvider] = None,
                 identity: Optional[NodeIdentity] = None,
                 readiness: Optional[ReadinessChecker] = None,
                 mesh: Optional[MeshInterfaceManager] = None,
                 control_plane: Optional[ControlPlaneManager] = None,
                 poller: Optional[Poller] = None,
                 now: Callable[[], datetime] = utc_now,
                 ca_factory: Callable = generate_cluster_ca,
                 cancelled: Optional[Callable[[], bool]] = None):
        if target not in TARGETS:
            raise ValueError(f"Unknown bootstrap target: {target!r}")

        self.config = config
        self.registry = registry
        self.role = Role.parse(role) if isinstance(role, str) else role
        self.target = target
        self.now = now
        self.cancelled = cancelled
        self.logger = get_logger()

        self.attestation = attestation or AttestationProvider(now=now)
        self.identity = identity or NodeIdentity(config.node)
        self.readiness = readiness or ReadinessChecker(config.paths)
        self.mesh = mesh or MeshInterfaceManager(config.mesh)
        self.control_plane = control_plane or ControlPlaneManager(config.control_plane)
        self.poller = poller or Poller()

        self.registrar = Registrar(registry, config.cluster, now=now, ca_factory=ca_factory)
        self.slots = SlotAllocator(registry, now=now)
        self.discovery = PeerDiscovery(registry)

        self.result = BootstrapResult(role=self.role, target=target, history=[NodeState.UNREGISTERED])
        self.execution_log = []
        self._current_step = ""

    @property
    def state(self) -> NodeState:
        return self.result.state

    def log_step(self, step: str, status: str, message: str = ""):
        """실행 단계 로깅"""
        self.execution_log.append({
            "step": step,
            "status": status,
            "message": message
        })

    def _begin(self, step: str):
        self._current_step = step
        self.logger.debug(f"Step: {step}")

    def _enter(self, state: NodeState, message: str = ""):
        self.result.state = state
        self.result.history.append(state)
        if self._current_step:
            self.log_step(self._current_step, "success", message)
            self._current_step = ""
        self.logger.info(f"State -> {state.value}" + (f" ({message})" if message else ""))

    def _fail(self, error: AgentError):
        self.log_step(self._current_step or "부트스트랩", "failed", str(error))
        self.result.error = error
        self.result.state = NodeState.FAILED
        self.result.history.append(NodeState.FAILED)
        self.logger.failure(error)

    def _policy(self, attempts: int) -> RetryPolicy:
        polling = self.config.polling
        return RetryPolicy(interval=polling.interval, max_attempts=attempts, deadline=polling.deadline)

    def _wait(self, check: Callable, attempts: int, description: str, timeout_error):
        return self.poller.wait_until(check, self._policy(attempts), description,
                                      timeout_error=timeout_error, cancelled=self.cancelled)

    def run(self) -> BootstrapResult:
        """부트스트랩 실행 (예외를 던지지 않고 결과 상태로 반환)"""
        self.logger.info(f"=== Bootstrap started (role={self.role.value}, target={self.target}) ===")
        try:
            self._bootstrap()
        except AgentError as e:
            self._fail(e)
        except KeyboardInterrupt:
            self.logger.warning("Execution interrupted by user")
            self._fail(AgentError("Interrupted by user",
                                  remediation="에이전트를 다시 실행하세요. 완료된 단계는 다시 수행해도 안전합니다."))
        except Exception as e:
            self.logger.exception("Unexpected error occurred")
            self._fail(AgentError(f"Unexpected error: {e}"))

        if self.result.succeeded:
            self.logger.info(f"=== Bootstrap completed in state {self.state.value} ===")
        return self.result

    def _bootstrap(self):
        role = self.role
        polling = self.config.polling

        self._begin("레지스트리 인증 확인")
        self.registry.check_auth()
        hostname = self.identity.hostname()
        internal = self.identity.internal_address()
        external = self.identity.external_address(internal)
        self.result.hostname = hostname
        self.log_step(self._current_step, "success", hostname)

        self._begin("노드 증명")
        proof = self.attestation.produce(hostname, internal)
        self._enter(NodeState.ATTESTED, proof.method)

        self._begin("노드 등록")
        self.registrar.register(hostname, role, internal, external, proof)
        self._enter(NodeState.REGISTERED, role.value)

        if role == Role.WORKER:
            self._begin("마스터 확인")
            self.result.state = NodeState.WAITING_FOR_MASTER
            self.result.history.append(NodeState.WAITING_FOR_MASTER)
            info = self._wait(self._master_info, polling.master_attempts, "master cluster info",
                              MasterNotFoundError)
            self._enter(NodeState.MASTER_FOUND, info.master_hostname)

        self._begin("비밀 정보 대기")
        self._wait(lambda: self.readiness.secrets_ready(role), polling.secrets_attempts,
                   f"secrets in {self.config.paths.secrets_dir}", SecretsTimeout)
        self._enter(NodeState.SECRETS_READY)

        self._begin("스토리지 대기")
        self._wait(self.readiness.storage_ready, polling.storage_attempts,
                   f"storage at {self.config.paths.storage_mountpoint}", StorageNotReadyError)
        self._enter(NodeState.STORAGE_READY)

        self._begin("메시 설정")
        slot = self.slots.get_or_assign_slot(hostname, role)
        endpoint = self.config.mesh.endpoint_address or internal
        interface_config, peers = self.build_mesh_config(hostname, slot, endpoint, publish=True)
        changed = write_config(interface_config, self.mesh.config_path)
        self.result.slot = slot
        self.result.mesh_address = interface_config.address
        self.result.peers = peers
        self.logger.info(f"Mesh configuration {'updated' if changed else 'unchanged'}: {self.mesh.config_path}")
        self._enter(NodeState.MESH_CONFIGURED, f"{interface_config.address}, 피어 {len(peers)}개")

        self._begin("메시 시작")
        success, msg = self.mesh.start()
        if not success:
            raise MeshStartTimeout(msg)
        self._wait(self.mesh.is_active, polling.mesh_attempts, self.mesh.unit, MeshStartTimeout)
        self._enter(NodeState.MESH_UP, self.mesh.unit)

        if self.target == TARGET_MESH:
            return

        mesh_ip = interface_config.address.split("/", 1)[0]
        self._begin("컨트롤 플레인 설정")
        if role == Role.MASTER:
            settings = self.control_plane.server_settings(hostname, mesh_ip, internal, external)
        else:
            info = self.registrar.read_cluster_info()
            if info is None or not info.join_token:
                raise ControlPlaneTimeout(
                    "No cluster join token published by the master",
                    remediation="마스터 노드의 컨트롤 플레인이 완전히 시작되었는지 확인한 뒤 워커를 다시 실행하세요.",
                    collaborator="master control plane",
                )
            master_ip = mesh_address(MASTER_SLOT, self.config.mesh.subnet_prefix).split("/", 1)[0]
            settings = self.control_plane.agent_settings(hostname, mesh_ip, master_ip, info.join_token)
        self.control_plane.write_config(settings)
        self._enter(NodeState.CONTROL_PLANE_CONFIGURED, self.control_plane.config_path)

        self._begin("컨트롤 플레인 시작")
        success, msg = self.control_plane.start(role)
        if not success:
            raise ControlPlaneTimeout(msg)
        self._wait(lambda: self.control_plane.is_ready(role), polling.control_plane_attempts,
                   self.control_plane.unit_for(role), ControlPlaneTimeout)

        if role == Role.MASTER:
            token = self._wait(self.control_plane.read_node_token, polling.control_plane_attempts,
                               "control plane node token", ControlPlaneTimeout)
            self.registrar.update_join_token(hostname, token)
        self._enter(NodeState.CONTROL_PLANE_UP, self.control_plane.unit_for(role))

    def _master_info(self) -> Optional[ClusterInfoRecord]:
        try:
            return self.registrar.read_cluster_info()
        except RecordDecodeError as e:
            self.logger.warning(f"Cluster info unreadable: {e}")
            return None

    def mesh_private_key(self, hostname: str) -> str:
        """메시 개인키: 프로비저닝된 wg.key, 없으면 레지스트리 비밀 레코드"""
        key = self.readiness.read_secret("wg.key")
        if not key:
            record = self.registry.read(secret_path(hostname, "wireguard")) or {}
            key = record.get("private_key", "")
        if not key:
            raise AgentError(
                f"No mesh private key available for {hostname}",
                remediation="노드 등록을 다시 실행해 메시 키를 생성하세요.",
            )
        return key

    def build_mesh_config(self, hostname: str, slot: int, endpoint: str,
                          publish: bool = False) -> Tuple[InterfaceConfig, List[MeshPeerRecord]]:
        """자신의 메시 레코드를 (선택적으로) 게시하고 현재 피어 집합으로 설정 생성"""
        mesh = self.config.mesh
        address = mesh_address(slot, mesh.subnet_prefix)
        private_key = self.mesh_private_key(hostname)
        try:
            public_key = public_key_from_private(private_key)
        except ValueError as e:
            raise AgentError(f"Invalid mesh private key for {hostname}: {e}",
                             remediation="레지스트리의 메시 키 레코드를 확인하세요.")

        if publish:
            self.discovery.publish(MeshPeerRecord(
                hostname=hostname,
                public_key=public_key,
                mesh_address=address,
                endpoint_address=endpoint,
                role=self.role,
                updated_at=format_timestamp(self.now()),
                slot=slot,
            ))

        peers = self.discovery.list_peers(hostname)
        interface_config = synthesize(private_key, address, mesh.listen_port, peers,
                                      interface=mesh.interface,
                                      egress_interface=mesh.egress_interface,
                                      keepalive=mesh.keepalive)
        return interface_config, peers

    def show_summary(self):
        """실행 결과 요약 표시"""
        console.print("\n" + "="*60)
        console.print("[bold]실행 결과 요약[/bold]")
        console.print("="*60 + "\n")

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("단계", style="cyan", width=24)
        table.add_column("상태", width=6)
        table.add_column("메시지")

        for log in self.execution_log:
            status_icon = "✓" if log["status"] == "success" else "✗"
            status_color = "green" if log["status"] == "success" else "red"
            table.add_row(
                log["step"],
                f"[{status_color}]{status_icon}[/{status_color}]",
                log["message"] or ""
            )

        console.print(table)
        console.print(f"\n[bold]최종 상태:[/bold] {self.state.value}")
        if self.result.mesh_address:
            console.print(f"[bold]메시 주소:[/bold] {self.result.mesh_address} (SLOT-{self.result.slot})")

        log_files = self.logger.get_log_files()
        if log_files["main_log"]:
            console.print(f"\n[bold]로그 파일:[/bold]")
            console.print(f"  Main: {log_files['main_log']}")
            console.print(f"  Error: {log_files['error_log']}")
