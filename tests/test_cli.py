#!/usr/bin/env python3
"""Command line tests"""

from keysweep.cli import main
from keysweep.inventory import EXIT_NO_ROOT


def test_full_scan(fake_tools, keys, tmp_path):
    """A full scan writes one record per usable key to the output file."""
    key = keys.write("id_ed25519", keys.openssh(keys.openssh_blob()))
    keys.write("id_rsa", keys.pem(encrypted=True))
    keys.write("notes", b"nothing to see here\n" * 20)
    out = tmp_path / "out.txt"

    status = main(["--mode", "full", "--root", str(keys.directory), "--min-size", "0",
                   "--no-agents", "--no-authorized-keys", "--ssh-keygen", fake_tools.ssh_keygen,
                   "-o", str(out)])

    assert status == 0
    lines = out.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    assert lines[0].split(";")[8] == str(key)


def test_missing_root(fake_tools, tmp_path):
    """An unreadable scan root exits with its own status."""
    status = main(["--mode", "full", "--root", str(tmp_path / "missing"), "--no-agents",
                   "--no-authorized-keys", "--ssh-keygen", fake_tools.ssh_keygen,
                   "-o", str(tmp_path / "out.txt")])
    assert status == EXIT_NO_ROOT


def test_nothing_to_do(tmp_path, capsys):
    """With every source disabled, nothing is written."""
    status = main(["--no-private-keys", "--no-agents", "--no-authorized-keys"])
    assert status == 0
    assert capsys.readouterr().out == ""
