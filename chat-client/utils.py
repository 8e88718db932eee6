import ipaddress
import os
from dataclasses import dataclass
from typing import Tuple

from dotenv import load_dotenv

load_dotenv()

RENDEZVOUS_IP = os.getenv("RENDEZVOUS_IP", "45.151.30.139")
MAX_DATAGRAM_SIZE = 2048

# registration frame: 0x00 || name || 0xFF
REGISTER_PREFIX = b"\x00"
REGISTER_SUFFIX = b"\xff"
PUNCH_MARKER = b"\x00"


def _env(name: str, default, cast):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ValueError(f"invalid value for {name}: {raw!r}") from None


@dataclass
class PunchSettings:
    """
    Tunables for registration, resolution and punching.
    Defaults send 3 registrations 200ms apart and a 100 packet punch burst
    every 25ms. registration_backoff > 0 grows the wait linearly per send.
    """
    bind_host: str = "0.0.0.0"
    registration_port: int = 4200
    http_port: int = 8080
    registration_retries: int = 3
    registration_interval: float = 0.2
    registration_backoff: float = 0.0
    wait_timeout: int = 10
    resolver_max_attempts: int = 5
    initial_backoff: float = 0.4
    max_backoff: float = 5.0
    not_found_delay: float = 0.6
    punch_packet_count: int = 100
    punch_interval: float = 0.025

    @classmethod
    def from_env(cls) -> "PunchSettings":
        return cls(
            bind_host=os.getenv("BIND_HOST", cls.bind_host),
            registration_port=_env("REGISTRATION_PORT", cls.registration_port, int),
            http_port=_env("RENDEZVOUS_HTTP_PORT", cls.http_port, int),
            registration_retries=_env("REGISTRATION_RETRIES", cls.registration_retries, int),
            registration_interval=_env("REGISTRATION_INTERVAL", cls.registration_interval, float),
            registration_backoff=_env("REGISTRATION_BACKOFF", cls.registration_backoff, float),
            wait_timeout=_env("WAIT_TIMEOUT", cls.wait_timeout, int),
            resolver_max_attempts=_env("RESOLVER_MAX_ATTEMPTS", cls.resolver_max_attempts, int),
            initial_backoff=_env("RESOLVER_INITIAL_BACKOFF", cls.initial_backoff, float),
            max_backoff=_env("RESOLVER_MAX_BACKOFF", cls.max_backoff, float),
            not_found_delay=_env("NOT_FOUND_DELAY", cls.not_found_delay, float),
            punch_packet_count=_env("PUNCH_PACKET_COUNT", cls.punch_packet_count, int),
            punch_interval=_env("PUNCH_INTERVAL", cls.punch_interval, float),
        )


def encode_registration(name: str) -> bytes:
    return REGISTER_PREFIX + name.encode("utf-8") + REGISTER_SUFFIX


def decode_registration(packet: bytes) -> str:
    if len(packet) < 2 or not packet.startswith(REGISTER_PREFIX) or not packet.endswith(REGISTER_SUFFIX):
        raise ValueError(f"not a registration packet: {packet!r}")
    return packet[1:-1].decode("utf-8")


def parse_address(text: str) -> Tuple[str, int]:
    """Parse an ``ip:port`` (or ``[ipv6]:port``) literal into a sendto() address."""
    host, sep, port = text.strip().rpartition(":")
    if not sep or not host:
        raise ValueError(f"not an address literal: {text!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    ip = ipaddress.ip_address(host)
    if ip.version == 6 and not text.strip().startswith("["):
        raise ValueError(f"IPv6 address must be bracketed: {text!r}")
    if not port.isdigit() or not 0 <= int(port) <= 65535:
        raise ValueError(f"bad port in {text!r}")
    return str(ip), int(port)


def format_address(addr) -> str:
    host, port = addr[0], addr[1]
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def decode_message(data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return f"<{len(data)} bytes of binary data>"
