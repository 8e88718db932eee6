"""
Loopback stand-in for the rendezvous server.

UDP side: decodes registration packets and records the observed source
address per name. HTTP side: Flask app answering /api/wait/<name> with
that address, a 404, or a forced response.
"""

import socket
import threading
import time

import pytest
from flask import Flask
from werkzeug.serving import make_server

from utils import MAX_DATAGRAM_SIZE, PunchSettings, decode_registration


class StubRendezvous:
    def __init__(self):
        self.peers = {}      # name -> (ip, port)
        self.misses = {}     # name -> number of 404s to serve first
        self.override = None # (body, status) served to every request
        self.hits = 0
        self.packets = []
        self.lock = threading.Lock()

        self.udp = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.udp.bind(("127.0.0.1", 0))
        self.udp.settimeout(0.2)
        self.alive = threading.Event()
        self.udp_thread = threading.Thread(target=self._udp_loop, daemon=True)

        self.http = make_server("127.0.0.1", 0, self._make_app(), threaded=True)
        self.http_thread = threading.Thread(target=self.http.serve_forever, daemon=True)

    @property
    def udp_port(self):
        return self.udp.getsockname()[1]

    @property
    def http_port(self):
        return self.http.server_port

    def _make_app(self):
        app = Flask(__name__)

        @app.get("/api/wait/<name>")
        def wait(name):
            with self.lock:
                self.hits += 1
                if self.override is not None:
                    return self.override
                if self.misses.get(name, 0) > 0:
                    self.misses[name] -= 1
                    return "", 404
                addr = self.peers.get(name)
            if addr is None:
                return "", 404
            return f"{addr[0]}:{addr[1]}\n", 200

        return app

    def _udp_loop(self):
        while self.alive.is_set():
            try:
                data, addr = self.udp.recvfrom(MAX_DATAGRAM_SIZE)
            except socket.timeout:
                continue
            except OSError:
                break
            with self.lock:
                self.packets.append((data, addr))
            try:
                name = decode_registration(data)
            except ValueError:
                continue
            with self.lock:
                self.peers[name] = addr

    def wait_registered(self, name, timeout=2.0):
        deadline = time.time() + timeout
        while time.time() < deadline:
            with self.lock:
                if name in self.peers:
                    return self.peers[name]
            time.sleep(0.01)
        raise AssertionError(f"{name!r} never registered")

    def start(self):
        self.alive.set()
        self.udp_thread.start()
        self.http_thread.start()

    def stop(self):
        self.alive.clear()
        self.http.shutdown()
        self.udp_thread.join(timeout=1)
        self.udp.close()


@pytest.fixture
def rendezvous():
    stub = StubRendezvous()
    stub.start()
    yield stub
    stub.stop()


@pytest.fixture
def fast_settings(rendezvous):
    return PunchSettings(
        bind_host="127.0.0.1",
        registration_port=rendezvous.udp_port,
        http_port=rendezvous.http_port,
        registration_retries=2,
        registration_interval=0.01,
        wait_timeout=1,
        initial_backoff=0.01,
        not_found_delay=0.01,
        punch_packet_count=3,
        punch_interval=0.01,
    )


@pytest.fixture
def wait_for_output(capsys):
    """Poll captured stdout until `needle` shows up; returns everything seen."""
    seen = []

    def wait(needle, timeout=3.0):
        deadline = time.time() + timeout
        while True:
            seen.append(capsys.readouterr().out)
            text = "".join(seen)
            if needle in text or time.time() > deadline:
                return text
            time.sleep(0.02)

    return wait
