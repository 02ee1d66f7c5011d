"""
에이전트 예외 정의
각 치명적 오류는 운영자가 바로 조치할 수 있는 remediation 메시지를 가진다
"""

from typing import Optional, Sequence


class AgentError(Exception):
    """에이전트 공통 예외"""

    remediation = "로그 파일을 확인하세요."

    def __init__(self, message: str, remediation: Optional[str] = None):
        super().__init__(message)
        if remediation is not None:
            self.remediation = remediation


class RegistryError(AgentError):
    """레지스트리 요청 실패"""

    remediation = "레지스트리(Vault) 주소와 네트워크 연결을 확인하세요."


class RegistryAuthFailure(RegistryError):
    """레지스트리 인증 실패 (토큰 만료 또는 누락)"""

    remediation = (
        "Vault 토큰이 만료되었거나 없습니다. 'vault login'으로 다시 로그인한 뒤 "
        "에이전트를 재실행하세요."
    )


class RecordDecodeError(AgentError):
    """레지스트리 레코드 디코딩 실패"""

    def __init__(self, path: str, missing: Sequence[str] = (), reason: str = ""):
        self.path = path
        self.missing = list(missing)
        detail = reason or f"missing fields: {', '.join(self.missing)}"
        super().__init__(f"Invalid record at {path}: {detail}")


class IncompletePeerRecord(RecordDecodeError):
    """publicKey, meshAddress, endpointAddress 중 하나가 없는 피어 레코드"""


class AttestationDegraded(AgentError):
    """상위 증명 방식 실패 (하위 방식으로 대체됨, 치명적이지 않음)"""


class AttestationError(AgentError):
    """증명 환경에 전혀 접근할 수 없음"""

    remediation = "커널 로그(dmesg)와 /proc/cpuinfo를 읽을 수 있는 권한(root)으로 실행하세요."


class RegistrarError(AgentError):
    """노드 등록 실패"""


class MasterNotFoundError(RegistrarError):
    """워커 등록 시 마스터 클러스터 정보가 없음"""

    remediation = "마스터 노드를 찾을 수 없습니다. 먼저 master 역할로 마스터 노드를 등록하세요."


class SlotAllocatorError(AgentError):
    """슬롯 할당 실패"""


class SlotExhaustedError(SlotAllocatorError):
    """사용 가능한 슬롯(1-254)이 모두 소진됨"""

    remediation = (
        "메시 주소 공간(슬롯 1-254)이 모두 사용 중입니다. "
        "해제된 노드의 레코드를 레지스트리에서 수동으로 정리하세요. "
        "check-and-set을 지원하지 않는 KV v1/cubbyhole 마운트에서는 동시 조인 시 같은 슬롯이 "
        "중복 할당될 수 있으므로 워커를 한 대씩 순서대로 추가하세요."
    )


class ReadinessTimeout(AgentError):
    """외부 구성요소가 제한 시간 내에 준비되지 않음"""

    collaborator = "external collaborator"

    def __init__(self, message: str, remediation: Optional[str] = None,
                 collaborator: Optional[str] = None):
        super().__init__(message, remediation)
        if collaborator is not None:
            self.collaborator = collaborator


class SecretsTimeout(ReadinessTimeout):
    collaborator = "secret provisioning (cvm-secrets)"
    remediation = "비밀 정보가 준비되지 않았습니다. 'systemctl status cvm-secrets-enhanced'를 확인하세요."


class StorageNotReadyError(ReadinessTimeout):
    collaborator = "encrypted storage (cvm-storage)"
    remediation = "암호화 스토리지가 마운트되지 않았습니다. 'systemctl start cvm-storage'를 먼저 실행하세요."


class MeshStartTimeout(ReadinessTimeout):
    collaborator = "mesh interface (wg-quick)"
    remediation = "메시 인터페이스가 시작되지 않았습니다. 'journalctl -u wg-quick@wg0'를 확인하세요."


class ControlPlaneTimeout(ReadinessTimeout):
    collaborator = "control plane (rke2)"
    remediation = "컨트롤 플레인이 준비되지 않았습니다. 'journalctl -u rke2-server' 또는 'rke2-agent'를 확인하세요."
