#!/usr/bin/env python3
import argparse
import ipaddress
import sys

from holepunch import RegistrationError, punch, register
from rendezvous_api import RendezvousClient, ResolutionError
from session import ChatSession
from utils import RENDEZVOUS_IP, PunchSettings, format_address


def ipv4_literal(value: str) -> str:
    try:
        return str(ipaddress.IPv4Address(value))
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an IPv4 address: {value!r}") from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Peer-to-peer UDP chat through NAT hole punching")
    parser.add_argument("--name", default="one", help="our name at the rendezvous")
    parser.add_argument("--peer", default="other", help="peer name to connect to")
    parser.add_argument("--rendezvous", type=ipv4_literal, default=RENDEZVOUS_IP,
                        help="rendezvous server IP (should be a public IP)")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = PunchSettings.from_env()
    except ValueError as e:
        print(f"[!] {e}", file=sys.stderr)
        return 1

    try:
        sock = register(args.rendezvous, args.name, settings)
    except RegistrationError as e:
        print(f"[!] {e}", file=sys.stderr)
        return 1

    try:
        with sock:
            try:
                peer = RendezvousClient(args.rendezvous, settings).resolve(args.peer)
            except ResolutionError as e:
                print(f"[!] {e}", file=sys.stderr)
                return 1
            print(f"[i] Peer {args.peer!r} is at {format_address(peer)}")

            session = ChatSession(sock, peer)
            session.start()
            if punch(sock, peer, settings) == 0:
                print("[!] no punch packet could be sent, the peer may not reach us")
            print("[i] Session ready, type a message and press enter")
            session.run()
    except KeyboardInterrupt:
        print("\n[i] Exiting.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
