"""
CLI 메인 인터페이스
Click 및 Rich 기반 사용자 친화적 CLI
"""

import sys
import click
import yaml
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .config import Config
from .coordinator import TARGET_CONTROL_PLANE, TARGETS, ClusterBootstrapCoordinator
from .discovery import PeerDiscovery
from .errors import AgentError
from .logger import init_logger, get_logger
from .models import Role
from .network import NodeIdentity
from .registrar import Registrar
from .registry import create_registry

console = Console()

ROLE_CHOICES = ["master", "worker", "server", "agent"]


def _load(config_path, debug: bool = False) -> Config:
    try:
        cfg = Config(config_path)
    except (OSError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]✗ 설정 파일 오류: {str(e)}[/red]")
        console.print("[yellow]조치 방법: 'cvm-mesh-agent validate --config <파일>'로 설정 파일을 확인하세요.[/yellow]")
        sys.exit(1)
    init_logger(cfg.agent.log_dir, cfg.agent.log_level, debug)
    return cfg


def _print_failure(error: AgentError):
    console.print(f"\n[bold red]✗ {error}[/bold red]")
    console.print(f"[yellow]조치 방법: {error.remediation}[/yellow]")


@click.group()
@click.version_option(version=__version__)
def cli():
    """CVM Mesh Agent

    공유 레지스트리(Vault)만으로 노드를 등록하고 메시 네트워크와 클러스터를 구성합니다.
    """
    pass


@cli.command()
@click.argument('role', type=click.Choice(ROLE_CHOICES, case_sensitive=False))
@click.option('--config', '-c', type=click.Path(exists=True), help='설정 파일 경로')
@click.option('--debug', is_flag=True, help='디버그 모드')
@click.option('--target', type=click.Choice(list(TARGETS)), default=TARGET_CONTROL_PLANE,
              show_default=True, help='성공으로 간주할 마지막 단계')
def bootstrap(role, config, debug, target):
    """노드 부트스트랩 (등록, 메시 구성, 컨트롤 플레인 시작)"""
    cfg = _load(config, debug)
    logger = get_logger()
    node_role = Role.parse(role)

    logger.info(f"Starting bootstrap command (role={node_role.value}, target={target}, debug={debug})")
    console.print(Panel.fit(
        f"[bold cyan]CVM Mesh Agent[/bold cyan]\n"
        f"{node_role.value} 노드를 부트스트랩합니다 (목표: {target})",
        border_style="cyan"
    ))

    try:
        registry = create_registry(cfg.registry)
    except AgentError as e:
        logger.failure(e)
        _print_failure(e)
        sys.exit(1)

    coordinator = ClusterBootstrapCoordinator(cfg, registry, node_role, target=target)
    result = coordinator.run()
    coordinator.show_summary()

    if not result.succeeded:
        _print_failure(result.error)
        sys.exit(1)

    console.print("\n" + "="*60)
    console.print(f"[bold green]✓ 부트스트랩 완료: {result.state.value}[/bold green]")
    console.print("="*60)
    sys.exit(0)


@cli.command()
@click.argument('output', type=click.Path(), default='./config.yaml')
def init(output):
    """샘플 설정 파일 생성"""
    cfg = Config()
    cfg.create_sample(output)
    console.print(f"[green]✓ 샘플 설정 파일 생성: {output}[/green]")
    console.print(f"[cyan]설정 파일을 편집한 후 다음 명령어로 실행하세요:[/cyan]")
    console.print(f"[cyan]  cvm-mesh-agent bootstrap master --config {output}[/cyan]")


@cli.command()
@click.option('--config', '-c', type=click.Path(exists=True), help='설정 파일 경로')
def validate(config):
    """설정 파일 유효성 검사"""
    try:
        cfg = Config(config)
    except (OSError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]✗ 설정 파일 오류: {str(e)}[/red]")
        sys.exit(1)

    problems = []
    if not cfg.registry.address:
        problems.append("registry.address가 비어 있습니다")
    if cfg.registry.kv_version not in (1, 2):
        problems.append("registry.kv_version은 1 또는 2여야 합니다")
    if not 1 <= int(cfg.mesh.listen_port) <= 65535:
        problems.append("mesh.listen_port가 올바르지 않습니다")
    if cfg.polling.interval <= 0:
        problems.append("polling.interval은 0보다 커야 합니다")

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("항목", style="cyan")
    table.add_column("값")

    table.add_row("설정 파일", cfg.config_path or "[yellow]기본값[/yellow]")
    table.add_row("레지스트리", cfg.registry.address or "[red]미설정[/red]")
    table.add_row("네임스페이스", cfg.registry.namespace or "-")
    table.add_row("KV 마운트", f"{cfg.registry.mount} (v{cfg.registry.kv_version})")
    table.add_row("메시 인터페이스", f"{cfg.mesh.interface} :{cfg.mesh.listen_port}")
    table.add_row("메시 대역", f"{cfg.mesh.subnet_prefix}.0/24")
    table.add_row("조인 토큰 교체", "예" if cfg.cluster.rotate_join_token else "아니오")

    console.print(table)

    if problems:
        for problem in problems:
            console.print(f"[red]✗ {problem}[/red]")
        sys.exit(1)
    console.print("[green]✓ 설정 파일이 유효합니다.[/green]")


@cli.command()
@click.option('--config', '-c', type=click.Path(exists=True), help='설정 파일 경로')
@click.option('--hostname', help='기준 호스트명 (기본값: 현재 호스트)')
def peers(config, hostname):
    """레지스트리에 게시된 메시 피어 목록 표시"""
    cfg = _load(config)
    hostname = hostname or cfg.node.hostname or None

    try:
        registry = create_registry(cfg.registry)
        registry.check_auth()
        if hostname is None:
            hostname = NodeIdentity(cfg.node).hostname()
        discovered = PeerDiscovery(registry).list_peers(hostname)
    except AgentError as e:
        get_logger().failure(e)
        _print_failure(e)
        sys.exit(1)

    table = Table(title=f"메시 피어 ({hostname} 기준)", show_header=True, header_style="bold magenta")
    table.add_column("슬롯", style="cyan")
    table.add_column("호스트명")
    table.add_column("역할")
    table.add_column("메시 주소")
    table.add_column("엔드포인트")

    for peer in discovered:
        table.add_row(
            f"SLOT-{peer.slot}" if peer.slot is not None else "[yellow]legacy[/yellow]",
            peer.hostname,
            peer.role.value if peer.role else "-",
            peer.mesh_address,
            f"{peer.endpoint_address}:{cfg.mesh.listen_port}",
        )

    console.print(table)
    console.print(f"[bold]피어 수:[/bold] {len(discovered)}")


@cli.command()
@click.option('--config', '-c', type=click.Path(exists=True), help='설정 파일 경로')
@click.option('--show-private-key', is_flag=True, help='개인키를 가리지 않고 출력')
def render(config, show_private_key):
    """현재 레지스트리 기준으로 생성될 메시 설정 출력 (기록/적용하지 않음)"""
    cfg = _load(config)

    try:
        registry = create_registry(cfg.registry)
        registry.check_auth()
        identity = NodeIdentity(cfg.node)
        hostname = identity.hostname()
        record = Registrar(registry, cfg.cluster).read_node(hostname)
        if record is None or record.slot is None:
            raise AgentError(
                f"{hostname} has no slot assignment yet",
                remediation="먼저 'cvm-mesh-agent bootstrap'으로 노드를 등록하세요.",
            )
        coordinator = ClusterBootstrapCoordinator(cfg, registry, record.role, identity=identity)
        interface_config, _ = coordinator.build_mesh_config(hostname, record.slot, endpoint="")
    except AgentError as e:
        get_logger().failure(e)
        _print_failure(e)
        sys.exit(1)

    text = interface_config.render()
    if not show_private_key:
        text = text.replace(interface_config.interface.private_key, "<hidden>", 1)
    click.echo(text, nl=False)


def main():
    """메인 엔트리 포인트"""
    cli()


if __name__ == '__main__':
    main()
