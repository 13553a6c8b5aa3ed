#!/usr/bin/env python3
"""
SocialVPN Command-Line Interface

Commands:
- create-cert: Create the local certificate and private key
- run: Start the engine and its management server
- state: Print the persisted state snapshot
"""

import sys
import argparse
import logging
from pathlib import Path

from socialvpn.config import load_config
from socialvpn.core.certificate import CERT_FILENAME, VERSION, create_certificate, generate_overlay_address
from socialvpn.core.state import read_state
from socialvpn.exceptions import SocialVPNError

logger = logging.getLogger(__name__)


class SocialVPNCLI:
    """CLI for the SocialVPN engine."""

    def __init__(self):
        self.config = None

    def create_cert(self, args) -> int:
        """Create the local certificate."""
        cert_path = Path(self.config.cert_dir) / CERT_FILENAME
        if cert_path.exists() and not args.force:
            print(f"❌ {cert_path} already exists (use --force to replace it)")
            return 1

        cert = create_certificate(
            uid=args.uid,
            name=args.name,
            pcid=args.pcid,
            version=VERSION,
            country=args.country,
            address=args.address or generate_overlay_address(),
            cert_dir=self.config.cert_dir,
            key_path=self.config.key_path
        )
        print(f"✅ Created certificate for {cert.uid}")
        print(f"   Fingerprint: {cert.fingerprint}")
        print(f"   Address: {cert.address}")
        return 0

    def run_server(self, args) -> int:
        """Start the management server (blocks until interrupted)."""
        import uvicorn
        from socialvpn.api_server import create_app

        if args.port:
            self.config.http_port = args.port
        print(f"🚀 Starting SocialVPN on {self.config.http_host}:{self.config.http_port}")
        uvicorn.run(
            create_app(self.config),
            host=self.config.http_host,
            port=self.config.http_port,
            log_level="info"
        )
        return 0

    def show_state(self, args) -> int:
        """Print the persisted state snapshot."""
        state = read_state(self.config.state_path)
        if state is None:
            print(f"❌ No state at {self.config.state_path}")
            return 1

        if args.json:
            print(state.to_json())
            return 0

        user = state.local_user
        print(f"Local user: {user.get('uid')} ({user.get('alias')}, {user.get('ip')})")
        print(f"Status: {state.status}")
        print(f"Friends: {len(state.friends)}")
        for friend in state.friends:
            print(
                f"  {friend.get('access', ''):8} {friend.get('uid', ''):30} "
                f"{friend.get('alias', '')} {friend.get('fingerprint', '')}"
            )
        return 0

    def create_parser(self) -> argparse.ArgumentParser:
        """Create argument parser."""
        parser = argparse.ArgumentParser(
            description="SocialVPN trust and discovery engine",
            formatter_class=argparse.RawDescriptionHelpFormatter
        )
        parser.add_argument("--config", type=Path, default=None, help="JSON configuration file")
        parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

        subparsers = parser.add_subparsers(dest="command", help="Commands")

        # create-cert command
        cert_parser = subparsers.add_parser("create-cert", help="Create local certificate")
        cert_parser.add_argument("--uid", required=True, help="Social-network identifier")
        cert_parser.add_argument("--name", required=True, help="Display name")
        cert_parser.add_argument("--pcid", default="", help="PC identifier")
        cert_parser.add_argument("--country", default="US", help="Two-letter country code")
        cert_parser.add_argument("--address", default=None, help="Overlay address (random if omitted)")
        cert_parser.add_argument("--force", action="store_true", help="Replace an existing certificate")

        # run command
        run_parser = subparsers.add_parser("run", help="Start engine and management server")
        run_parser.add_argument("--port", type=int, default=None, help="Management server port")

        # state command
        state_parser = subparsers.add_parser("state", help="Print persisted state")
        state_parser.add_argument("--json", action="store_true", help="Raw JSON output")

        return parser

    def run(self, argv=None) -> int:
        """Run CLI (entry point)."""
        parser = self.create_parser()
        args = parser.parse_args(argv)

        if not args.command:
            parser.print_help()
            return 1

        logging.basicConfig(
            level=logging.DEBUG if args.verbose else logging.INFO,
            format="%(asctime)s %(name)s %(levelname)s %(message)s"
        )

        try:
            self.config = load_config(args.config)
            if args.command == "create-cert":
                return self.create_cert(args)
            elif args.command == "run":
                return self.run_server(args)
            elif args.command == "state":
                return self.show_state(args)
        except SocialVPNError as e:
            print(f"❌ {e}")
            return 1

        print("❌ Unknown command. Use --help for usage.")
        return 1


def main():
    """CLI entry point."""
    cli = SocialVPNCLI()
    sys.exit(cli.run())


if __name__ == "__main__":
    main()
