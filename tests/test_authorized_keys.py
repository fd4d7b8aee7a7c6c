#!/usr/bin/env python3
"""authorized_keys resolution and reporting tests"""

from keysweep.authorized_keys import (resolve_authorized_keys_files, expand_tokens,
                                      authorized_keys, DEFAULT_AUTHORIZED_KEYS_FILES)
from keysweep.report import format_record


def test_expand_tokens():
    """%h, %u, %U and %% are expanded; relative paths are under home."""
    assert expand_tokens(".ssh/authorized_keys", "alice", 1000, "/home/alice") \
        == "/home/alice/.ssh/authorized_keys"
    assert expand_tokens("/etc/ssh/keys/%u", "alice", 1000, "/home/alice") == "/etc/ssh/keys/alice"
    assert expand_tokens("%h/.ssh/keys.%U", "alice", 1000, "/home/alice") == "/home/alice/.ssh/keys.1000"
    assert expand_tokens("/srv/100%%/%u", "bob", 1001, "/home/bob") == "/srv/100%/bob"


def test_resolve_from_config(fake_tools, tmp_path):
    """sshd_config is read when sshd -T is unavailable."""
    config = tmp_path / "sshd_config"
    config.write_text("# comment\nPort 22\nAuthorizedKeysFile  .ssh/authorized_keys /etc/ssh/keys/%u\n"
                      "Match User git\n  AuthorizedKeysFile /srv/git/keys\n", encoding="utf-8")
    templates = resolve_authorized_keys_files(fake_tools.keygen(), sshd=str(tmp_path / "no-sshd"),
                                              config=config)
    assert templates == [".ssh/authorized_keys", "/etc/ssh/keys/%u"]


def test_resolve_default(fake_tools, tmp_path):
    """Without sshd or a config file the OpenSSH default applies."""
    templates = resolve_authorized_keys_files(fake_tools.keygen(), sshd=str(tmp_path / "no-sshd"),
                                              config=tmp_path / "missing")
    assert templates == DEFAULT_AUTHORIZED_KEYS_FILES


def test_resolve_none(fake_tools, tmp_path):
    """AuthorizedKeysFile none disables authorized keys files."""
    config = tmp_path / "sshd_config"
    config.write_text("AuthorizedKeysFile none\n", encoding="utf-8")
    assert resolve_authorized_keys_files(fake_tools.keygen(), sshd=str(tmp_path / "no-sshd"),
                                         config=config) == []


def test_authorized_keys(fake_tools, tmp_path, workdir):
    """Every key line is reported with its options intact."""
    home = tmp_path / "home" / "alice"
    (home / ".ssh").mkdir(parents=True)
    key1 = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIFIRST alice@laptop"
    key2 = 'from="10.0.0.0/8",no-pty ssh-rsa AAAAB3NzaC1yc2EAAAADAQABSECOND deploy'
    (home / ".ssh" / "authorized_keys").write_text(
        f"# keys\n\n{key1}\ngarbage line\n{key2}\n", encoding="utf-8")

    records = list(authorized_keys(DEFAULT_AUTHORIZED_KEYS_FILES, [("alice", 1000, str(home))],
                                   fake_tools.keygen(), workdir))

    assert [r.public_key.line for r in records] == [key1, key2]
    assert [r.public_key.key_type for r in records] == ["ED25519", "RSA"]
    fields = format_record(records[1]).split(";")
    assert fields[7] == "0"
    assert fields[8] == str(home / ".ssh" / "authorized_keys")
    assert fields[9] == key2


def test_shared_file_reported_once(fake_tools, tmp_path, workdir):
    """A file shared by several users is reported once."""
    shared = tmp_path / "shared_keys"
    shared.write_text("ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAISHARED ops\n", encoding="utf-8")
    users = [("a", 1, str(tmp_path / "a")), ("b", 2, str(tmp_path / "b"))]
    records = list(authorized_keys([str(shared)], users, fake_tools.keygen(), workdir))
    assert len(records) == 1
