import socket
import time

from utils import PunchSettings, PUNCH_MARKER, encode_registration, format_address


class RegistrationError(RuntimeError):
    """Local socket could not be bound or the registration could not be sent."""


def register(rendezvous_ip: str, name: str, settings: PunchSettings = None) -> socket.socket:
    """
    Bind a fresh UDP socket and announce `name` to the rendezvous server.

    The returned socket must be used for punching and chatting: the server
    records the NAT mapping of this socket's source port. The packet is
    never acknowledged, so it is repeated registration_retries times.
    """
    settings = settings or PunchSettings()
    if not name:
        raise RegistrationError("endpoint name must not be empty")

    server_addr = (rendezvous_ip, settings.registration_port)
    packet = encode_registration(name)

    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    except OSError as e:
        raise RegistrationError(f"cannot create UDP socket: {e}") from e

    try:
        sock.bind((settings.bind_host, 0))
        for i in range(settings.registration_retries):
            sock.sendto(packet, server_addr)
            time.sleep(settings.registration_interval + i * settings.registration_backoff)
    except OSError as e:
        sock.close()
        raise RegistrationError(f"registration with {format_address(server_addr)} failed: {e}") from e

    print(f"[i] Registered as {name!r} with {format_address(server_addr)} from {format_address(sock.getsockname())}")
    return sock


def punch(sock: socket.socket, peer_addr, settings: PunchSettings = None) -> int:
    """Send a burst of markers at the peer so both NATs map the path. Returns markers sent."""
    settings = settings or PunchSettings()
    sent = 0
    for _ in range(settings.punch_packet_count):
        try:
            sock.sendto(PUNCH_MARKER, peer_addr)
            sent += 1
        except OSError as e:
            print("[!] punch error:", e)
        time.sleep(settings.punch_interval)
    return sent
