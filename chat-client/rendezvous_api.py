import time
from urllib.parse import quote

import requests

from utils import PunchSettings, parse_address


class ResolutionError(RuntimeError):
    """Peer address could not be obtained from the rendezvous server."""


class RendezvousUnreachable(ResolutionError):
    def __init__(self, attempts: int, max_attempts: int):
        super().__init__(
            f"network error while querying rendezvous (attempt {attempts}/{max_attempts})"
        )
        self.attempts = attempts


class PeerNotFound(ResolutionError):
    def __init__(self, peer_name: str):
        super().__init__(f"peer {peer_name!r} not found at rendezvous (404)")
        self.peer_name = peer_name


class ProtocolMismatch(ResolutionError):
    pass


class RendezvousClient:
    def __init__(self, rendezvous_ip: str, settings: PunchSettings = None, sleep=time.sleep):
        self.settings = settings or PunchSettings()
        self.base_url = f"http://{rendezvous_ip}:{self.settings.http_port}"
        self.sleep = sleep

    def wait_url(self, peer_name: str) -> str:
        return f"{self.base_url}/api/wait/{quote(peer_name, safe='')}"

    def wait_for_peer(self, peer_name: str):
        timeout = self.settings.wait_timeout
        return requests.get(
            self.wait_url(peer_name),
            params={"timeout": timeout},
            timeout=timeout + 5,
        )

    def resolve(self, peer_name: str):
        """
        Look up the public (ip, port) of `peer_name`.

        Transport errors back off exponentially (initial_backoff doubling up
        to max_backoff). A 404 only means the peer has not registered yet:
        poll again after not_found_delay and reset the transport backoff.
        A malformed answer or any other status is not retried.
        """
        max_attempts = self.settings.resolver_max_attempts
        backoff = self.settings.initial_backoff

        for attempt in range(1, max_attempts + 1):
            try:
                res = self.wait_for_peer(peer_name)
            except requests.RequestException as e:
                if attempt < max_attempts:
                    print(f"[!] rendezvous unreachable ({e.__class__.__name__}), retrying in {backoff:.1f}s")
                    self.sleep(backoff)
                    backoff = min(backoff * 2, self.settings.max_backoff)
                    continue
                raise RendezvousUnreachable(attempt, max_attempts) from e

            if res.status_code == 200:
                body = res.text.strip()
                try:
                    return parse_address(body)
                except ValueError as e:
                    raise ProtocolMismatch(f"cannot parse peer address from {body!r}") from e

            if res.status_code == 404:
                if attempt < max_attempts:
                    print(f"[i] {peer_name!r} not registered yet (attempt {attempt}/{max_attempts})")
                    self.sleep(self.settings.not_found_delay)
                    backoff = self.settings.initial_backoff
                    continue
                raise PeerNotFound(peer_name)

            raise ProtocolMismatch(f"unexpected HTTP status {res.status_code} from rendezvous")

        # only reachable with resolver_max_attempts < 1
        raise ResolutionError(f"failed to resolve peer after {max_attempts} attempts")
