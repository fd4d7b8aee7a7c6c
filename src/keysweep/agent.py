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
"""Finds ssh agent sockets and lists the identities loaded into them"""

import os
import glob
import stat
import logging
from pathlib import Path
from typing import Iterable, List, Mapping, Optional

from .keygen import Keygen, KeygenError
from .report import candidate_from_path
from .types import AgentIdentity, StrPath

__all__ = ["is_socket", "list_identities", "discover_sockets", "SOCKET_GLOBS"]

SOCKET_GLOBS = (
    "/tmp/ssh-*/agent.*",
    "/run/user/*/keyring/ssh",
    "/run/user/*/gnupg/S.gpg-agent.ssh",
)


def is_socket(path: StrPath) -> bool:
    """True if path exists and is a unix domain socket."""
    try:
        return stat.S_ISSOCK(os.stat(path).st_mode)
    except OSError:
        return False


def list_identities(socket_path: StrPath, keygen: Keygen) -> List[AgentIdentity]:
    """Returns the identities held by the agent at socket_path. Anything that
    prevents querying the agent results in an empty list."""

    if not is_socket(socket_path):
        logging.debug("%s is not a socket", socket_path)
        return []

    try:
        meta = candidate_from_path(socket_path)
        identities = keygen.list_identities(socket_path)
    except (OSError, KeygenError) as err:
        logging.debug("Unable to query agent %s: %s", socket_path, err)
        return []

    if identities:
        logging.info("Found %d identities in agent %s", len(identities), socket_path)

    # The comment of a forwarded identity is the key's path on the client
    return [AgentIdentity(socket=meta, key_type=fp.key_type or "NA", bits=fp.bits,
                          fingerprint=fp.fingerprint, remote_path=fp.comment or None)
            for fp in identities]


def _environ_sockets(proc_root: StrPath) -> Iterable[str]:
    """SSH_AUTH_SOCK values from the environment of every readable process."""

    try:
        pids = [entry for entry in os.listdir(proc_root) if entry.isdigit()]
    except OSError:
        return

    for pid in pids:
        try:
            environ = Path(proc_root, pid, "environ").read_bytes()
        except OSError:
            continue
        for variable in environ.split(b"\x00"):
            if variable.startswith(b"SSH_AUTH_SOCK="):
                yield os.fsdecode(variable.split(b"=", 1)[1])


def discover_sockets(proc_root: StrPath = "/proc", globs: Iterable[str] = SOCKET_GLOBS,
                     environ: Optional[Mapping[str, str]] = None) -> List[str]:
    """Returns a sorted list of candidate agent socket paths. Candidates are
    not checked for being sockets here."""

    if environ is None:
        environ = os.environ

    sockets = set(_environ_sockets(proc_root))
    if environ.get("SSH_AUTH_SOCK"):
        sockets.add(environ["SSH_AUTH_SOCK"])
    for pattern in globs:
        sockets.update(glob.glob(pattern))

    sockets.discard("")
    return sorted(sockets)
