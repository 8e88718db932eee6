import queue
import socket
import sys
import threading

from utils import MAX_DATAGRAM_SIZE, PUNCH_MARKER, decode_message, format_address


class ChatSession:
    """
    Duplex chat over an already punched UDP socket.

    The listener thread prints inbound datagrams, an input thread turns lines
    into queued messages and the caller's thread drains the queue with
    sendto(). The socket is shared by all three without locking. `alive` is
    the stop flag both loops watch; a None in the outbox means end of input.
    """

    def __init__(self, sock: socket.socket, peer_addr, lines=None, recv_timeout: float = 1.0):
        self.sock = sock
        self.peer_addr = peer_addr
        self.lines = lines if lines is not None else sys.stdin
        self.recv_timeout = recv_timeout

        self.outbox = queue.Queue()
        self.alive = threading.Event()
        self.ready = threading.Event()
        self.listener_thread = threading.Thread(target=self._listen_loop, daemon=True)
        self.input_thread = threading.Thread(target=self._read_input, daemon=True)

    def start(self):
        if self.listener_thread.is_alive():
            return
        self.alive.set()
        self.sock.settimeout(self.recv_timeout)
        self.listener_thread.start()
        self.ready.wait()
        print(f"[i] Listening on {format_address(self.sock.getsockname())}")

    def stop(self):
        self.alive.clear()
        self.outbox.put(None)
        if self.listener_thread.is_alive() and threading.current_thread() is not self.listener_thread:
            self.listener_thread.join(timeout=self.recv_timeout + 1)

    def run(self):
        """Chat until input ends or stop() is called."""
        self.start()
        self.input_thread.start()
        try:
            self._dispatch_loop()
        finally:
            self.stop()

    def send_text(self, text: str) -> bool:
        try:
            self.sock.sendto(text.encode("utf-8"), self.peer_addr)
        except OSError as e:
            print(f"[!] unsent ({e}): {text}")
            return False
        return True

    def _dispatch_loop(self):
        while self.alive.is_set():
            try:
                msg = self.outbox.get(timeout=0.5)
            except queue.Empty:
                continue
            if msg is None:
                break
            self.send_text(msg)

    def _read_input(self):
        for line in self.lines:
            if not self.alive.is_set():
                return
            msg = line.strip()
            if not msg:
                continue
            self.outbox.put(msg)
        self.outbox.put(None)

    def _listen_loop(self):
        self.ready.set()
        while self.alive.is_set():
            try:
                data, addr = self.sock.recvfrom(MAX_DATAGRAM_SIZE)
            except socket.timeout:
                continue
            except OSError as e:
                if not self.alive.is_set() or self.sock.fileno() == -1:
                    break
                # e.g. ICMP port unreachable surfaced on the next recv
                print(f"[!] receive error: {e}")
                continue

            if not data or data == PUNCH_MARKER:
                continue
            print(f"[{format_address(addr)}] {decode_message(data)}")
