"""
CVM Mesh Agent
공유 레지스트리(Vault KV)만을 조정 수단으로 사용해 서로 모르는 노드들을
메시 네트워크(WireGuard)와 클러스터(RKE2)로 묶는 노드 에이전트

Features:
- 다단계 대체 경로를 가진 노드 증명
- 조건부 쓰기로 보호되는 슬롯(메시 주소) 할당
- 슬롯 키 및 과거 호스트명 키 레코드를 모두 읽는 피어 탐색
- 입력 순서와 무관한 결정적 메시 설정 생성
- 재실행해도 안전한 순차 부트스트랩
"""

__version__ = "1.0.0"
__author__ = "DevOps Team"
