"""
CLI tests.
"""

import json

from socialvpn.cli import SocialVPNCLI
from socialvpn.core.certificate import IdentityCertificate


def write_config(tmp_path):
    path = tmp_path / "social.config.json"
    path.write_text(json.dumps({
        "cert_dir": str(tmp_path / "certificates"),
        "state_path": str(tmp_path / "state.json"),
        "key_path": str(tmp_path / "private_key.pem"),
    }))
    return path


class TestCLI:
    """Test command dispatch."""

    def setup_method(self):
        """Set up test fixtures."""
        self.cli = SocialVPNCLI()

    def test_no_command(self):
        assert self.cli.run([]) == 1

    def test_create_cert(self, tmp_path, capsys):
        config = write_config(tmp_path)
        args = ["--config", str(config), "create-cert", "--uid", "a@x.edu", "--name", "Alice"]

        assert self.cli.run(args) == 0
        cert = IdentityCertificate.from_bytes((tmp_path / "certificates" / "local.cert").read_bytes())
        assert cert.uid == "a@x.edu"
        assert cert.name == "Alice"
        assert (tmp_path / "private_key.pem").exists()
        assert cert.fingerprint in capsys.readouterr().out

        # A second run refuses to overwrite without --force
        assert self.cli.run(args) == 1
        assert self.cli.run(args + ["--force"]) == 0

    def test_state_missing(self, tmp_path):
        config = write_config(tmp_path)
        assert self.cli.run(["--config", str(config), "state"]) == 1

    def test_bad_config(self, tmp_path):
        config = tmp_path / "broken.json"
        config.write_text("[]")
        assert self.cli.run(["--config", str(config), "state"]) == 1
