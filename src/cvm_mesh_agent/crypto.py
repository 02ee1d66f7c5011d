"""
키 생성 유틸리티
메시 키(X25519, WireGuard 호환 base64), 조인 토큰, 클러스터 CA
"""

import base64
import secrets
from datetime import datetime, timedelta
from typing import Optional, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey
from cryptography.x509.oid import NameOID

from .models import utc_now

_SUBJECT_OIDS = {
    "C": NameOID.COUNTRY_NAME,
    "ST": NameOID.STATE_OR_PROVINCE_NAME,
    "L": NameOID.LOCALITY_NAME,
    "O": NameOID.ORGANIZATION_NAME,
    "OU": NameOID.ORGANIZATIONAL_UNIT_NAME,
    "CN": NameOID.COMMON_NAME,
}


def generate_private_key() -> str:
    """새 메시 개인키 (wg genkey와 같은 형식)"""
    raw = X25519PrivateKey.generate().private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return base64.b64encode(raw).decode("ascii")


def public_key_from_private(private_key: str) -> str:
    """개인키에서 공개키 유도 (wg pubkey와 같은 결과)

    Raises:
        ValueError: 32바이트 base64 키가 아님
    """
    raw = base64.b64decode(private_key.strip(), validate=True)
    if len(raw) != 32:
        raise ValueError("mesh private key must be 32 bytes")
    public = X25519PrivateKey.from_private_bytes(raw).public_key()
    return base64.b64encode(public.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )).decode("ascii")


def generate_token(num_bytes: int = 32) -> str:
    return secrets.token_hex(num_bytes)


def parse_subject(subject: str) -> x509.Name:
    """'/C=DE/O=Org/CN=name' 형식의 주체 문자열 파싱"""
    attributes = []
    for part in subject.strip("/").split("/"):
        if not part:
            continue
        key, _, value = part.partition("=")
        oid = _SUBJECT_OIDS.get(key.strip().upper())
        if oid is None or not value:
            raise ValueError(f"Unsupported subject component: {part!r}")
        attributes.append(x509.NameAttribute(oid, value.strip()))
    return x509.Name(attributes)


def generate_cluster_ca(subject: str, key_size: int = 4096, days: int = 3650,
                        now: Optional[datetime] = None) -> Tuple[str, str]:
    """자체 서명 클러스터 CA 생성

    Returns:
        (base64 PEM 개인키, base64 PEM 인증서)
    """
    now = now or utc_now()
    key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    name = parse_subject(subject)

    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + timedelta(days=days))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )

    key_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    cert_pem = cert.public_bytes(serialization.Encoding.PEM)
    return base64.b64encode(key_pem).decode("ascii"), base64.b64encode(cert_pem).decode("ascii")
