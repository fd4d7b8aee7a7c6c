#!/usr/bin/env python3
# Copyright 2023 Cisco Systems, Inc. and its affiliates
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# SPDX-License-Identifier: Apache-2.0
"""Wrappers around ssh-keygen(1) and ssh-add(1). Every invocation runs with
stdin bound to /dev/null and in a new session without a controlling terminal,
so an encrypted key can never cause a passphrase prompt to block the scan."""

import os
import re
import logging
import threading
import subprocess
from typing import Dict, List, NamedTuple, Optional, Set

from .types import StrPath

__all__ = ["Keygen", "KeygenError", "Fingerprint", "parse_fingerprint",
           "key_type_from_line", "strip_key_options", "KEY_TYPES"]

DEFAULT_TIMEOUT = 10.0

# Leading identifier of a public key blob -> reported key type
KEY_TYPES: Dict[str, str] = {
    "ssh-rsa": "RSA",
    "ssh-rsa-cert-v01@openssh.com": "RSA",
    "ssh-dss": "DSA",
    "ssh-dss-cert-v01@openssh.com": "DSA",
    "ecdsa-sha2-nistp256": "ECDSA",
    "ecdsa-sha2-nistp384": "ECDSA",
    "ecdsa-sha2-nistp521": "ECDSA",
    "ecdsa-sha2-nistp256-cert-v01@openssh.com": "ECDSA",
    "ecdsa-sha2-nistp384-cert-v01@openssh.com": "ECDSA",
    "ecdsa-sha2-nistp521-cert-v01@openssh.com": "ECDSA",
    "sk-ecdsa-sha2-nistp256@openssh.com": "ECDSA-SK",
    "ssh-ed25519": "ED25519",
    "ssh-ed25519-cert-v01@openssh.com": "ED25519",
    "sk-ssh-ed25519@openssh.com": "ED25519-SK",
}

MD5_FINGERPRINT_PATTERN = re.compile(r"^(?:MD5:)?((?:[0-9a-f]{2}:){15}[0-9a-f]{2})$")

# SSH1 public keys are "<bits> <exponent> <modulus> [comment]"
RSA1_PUBLIC_KEY_PATTERN = re.compile(r"^\d+\s+\d+\s+\d+")


class KeygenError(Exception):
    """An external key tool failed, timed out, or produced output that could
    not be parsed."""


class Fingerprint(NamedTuple):
    """Parsed line of `ssh-keygen -l` or `ssh-add -l` output"""
    bits: int
    fingerprint: str
    comment: str
    key_type: Optional[str]


def strip_key_options(line: str) -> str:
    """Remove any authorized_keys style options preceding the key type."""

    tokens = line.strip().split()
    for index, token in enumerate(tokens):
        if token in KEY_TYPES or RSA1_PUBLIC_KEY_PATTERN.match(" ".join(tokens[index:index + 3])):
            return " ".join(tokens[index:])

    # Quoted option values may contain whitespace; fall back to the raw line
    return line.strip()


def key_type_from_line(line: str) -> Optional[str]:
    """Returns the key type for a public key line based on its leading
    identifier, or None if it isn't recognized."""

    key = strip_key_options(line)
    if RSA1_PUBLIC_KEY_PATTERN.match(key):
        return "RSA1"
    identifier = key.split(" ", 1)[0]
    return KEY_TYPES.get(identifier)


def parse_fingerprint(line: str) -> Fingerprint:
    """Parse "2048 MD5:aa:bb:... comment (RSA)". Older tools omit the MD5:
    prefix, and SSH1 keys may omit the trailing type."""

    tokens = line.strip().split(" ")
    if len(tokens) < 2 or not tokens[0].isdigit():
        raise KeygenError(f"Unexpected fingerprint line: {line!r}")

    match = MD5_FINGERPRINT_PATTERN.match(tokens[1])
    if not match:
        raise KeygenError(f"Not an MD5 fingerprint: {tokens[1]!r}")

    rest = tokens[2:]
    key_type = None
    if rest and rest[-1].startswith("(") and rest[-1].endswith(")"):
        key_type = rest[-1].strip("()") or None
        rest = rest[:-1]

    comment = " ".join(rest)
    if comment == "no comment":
        comment = ""

    return Fingerprint(int(tokens[0]), match.group(1), comment, key_type)


def _no_identities(process: subprocess.CompletedProcess) -> bool:
    """True if ssh-add reported an empty agent."""
    return "has no identities" in (process.stdout + process.stderr).lower()


class Keygen():
    """Runs the OpenSSH key tools with a timeout. Child processes still
    running when cancel() is called are killed."""

    def __init__(self, ssh_keygen: str = "ssh-keygen", ssh_add: str = "ssh-add",
                 timeout: float = DEFAULT_TIMEOUT):
        self.ssh_keygen = ssh_keygen
        self.ssh_add = ssh_add
        self.timeout = timeout
        self._lock = threading.Lock()
        self._running: Set[subprocess.Popen] = set()
        self._cancelled = threading.Event()

    def run(self, args: List[str], env: Optional[Dict[str, str]] = None) -> subprocess.CompletedProcess:
        """Run args without a terminal. Raises KeygenError if the process
        can't be started, times out, or the run was cancelled. The return code
        is left to the caller."""

        if self._cancelled.is_set():
            raise KeygenError("Cancelled")

        child_env = dict(os.environ if env is None else env)
        # Keep ssh-askpass from popping up on a display
        child_env.pop("DISPLAY", None)
        child_env["SSH_ASKPASS_REQUIRE"] = "never"

        try:
            # pylint: disable-next=consider-using-with
            process = subprocess.Popen(args, stdin=subprocess.DEVNULL, stdout=subprocess.PIPE,
                                       stderr=subprocess.PIPE, text=True, errors="replace",
                                       env=child_env, start_new_session=True)
        except OSError as err:
            raise KeygenError(f"Unable to run {args[0]}: {err}") from err

        with self._lock:
            self._running.add(process)

        try:
            stdout, stderr = process.communicate(timeout=self.timeout)
        except subprocess.TimeoutExpired as err:
            process.kill()
            process.communicate()
            raise KeygenError(f"{args[0]} timed out after {self.timeout}s") from err
        finally:
            with self._lock:
                self._running.discard(process)

        if self._cancelled.is_set():
            raise KeygenError("Cancelled")

        return subprocess.CompletedProcess(args, process.returncode, stdout, stderr)

    def cancel(self) -> None:
        """Kill any running children and refuse to start new ones."""
        self._cancelled.set()
        with self._lock:
            for process in self._running:
                process.kill()

    def derive_public_key(self, path: StrPath) -> str:
        """Returns the public key line for an unencrypted private key file."""

        # -P "" makes ssh-keygen fail instead of asking for a passphrase
        keygen_process = self.run([self.ssh_keygen, "-y", "-P", "", "-f", str(path)])
        public_key = keygen_process.stdout.strip()

        if keygen_process.returncode != 0 or not public_key:
            raise KeygenError(f"Unable to derive a public key from {path}: {keygen_process.stderr.strip()}")

        return public_key

    def fingerprint(self, path: StrPath) -> Fingerprint:
        """Returns the MD5 fingerprint of the first key in the file at path.
        Works on public keys, and on SSH1 private keys without decrypting
        them."""

        keygen_process = self.run([self.ssh_keygen, "-l", "-E", "md5", "-f", str(path)])

        # ssh-keygen older than 6.8 has no -E and only prints MD5
        if keygen_process.returncode != 0:
            logging.debug("Retrying fingerprint of %s without -E", path)
            keygen_process = self.run([self.ssh_keygen, "-l", "-f", str(path)])

        if keygen_process.returncode != 0 or not keygen_process.stdout.strip():
            raise KeygenError(f"Unable to fingerprint {path}: {keygen_process.stderr.strip()}")

        return parse_fingerprint(keygen_process.stdout.strip().splitlines()[0])

    def list_identities(self, socket_path: StrPath) -> List[Fingerprint]:
        """Returns the identities held by the agent listening on socket_path.
        An agent with no identities returns an empty list."""

        env = dict(os.environ, SSH_AUTH_SOCK=str(socket_path))
        add_process = self.run([self.ssh_add, "-l", "-E", "md5"], env=env)

        # ssh-add exits 1 both for an empty agent and for an unknown -E
        if add_process.returncode == 1 and _no_identities(add_process):
            return []

        if add_process.returncode != 0:
            add_process = self.run([self.ssh_add, "-l"], env=env)
            if add_process.returncode == 1 and _no_identities(add_process):
                return []

        if add_process.returncode != 0:
            raise KeygenError(f"Unable to query agent at {socket_path}: {add_process.stderr.strip()}")

        identities = []
        for line in add_process.stdout.splitlines():
            if not line.strip():
                continue
            try:
                identities.append(parse_fingerprint(line))
            except KeygenError as err:
                logging.debug("Skipping identity from %s: %s", socket_path, err)
        return identities
