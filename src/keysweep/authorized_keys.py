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
"""Reports the public keys sshd will accept for each local user"""

import os
import re
import logging
from typing import Iterable, Iterator, List, Tuple

from .keygen import Keygen, KeygenError, key_type_from_line, strip_key_options
from .reconcile import fingerprint_line
from .report import candidate_from_path
from .types import AuthorizedKey, StrPath

__all__ = ["resolve_authorized_keys_files", "expand_tokens", "authorized_keys",
           "DEFAULT_AUTHORIZED_KEYS_FILES"]

DEFAULT_AUTHORIZED_KEYS_FILES = [".ssh/authorized_keys", ".ssh/authorized_keys2"]

SSHD_CONFIG = "/etc/ssh/sshd_config"

AUTHORIZED_KEYS_FILE_PATTERN = re.compile(r"^\s*authorizedkeysfile\s+(.+?)\s*$", re.IGNORECASE)

# authorized_keys files larger than this are skipped
AUTHORIZED_KEYS_WINDOW = 1048576


def _parse_setting(lines: Iterable[str]) -> List[str]:
    """Returns the AuthorizedKeysFile values from sshd_config or sshd -T
    lines. Settings inside Match blocks are ignored."""

    for line in lines:
        if re.match(r"^\s*match\s", line, re.IGNORECASE):
            break
        match = AUTHORIZED_KEYS_FILE_PATTERN.match(line)
        if match:
            values = match.group(1).split()
            return [] if values == ["none"] else values
    return list(DEFAULT_AUTHORIZED_KEYS_FILES)


def resolve_authorized_keys_files(keygen: Keygen, sshd: str = "sshd",
                                  config: StrPath = SSHD_CONFIG) -> List[str]:
    """Returns the AuthorizedKeysFile templates in effect. Asks sshd for its
    effective configuration, then falls back to reading the config file, and
    then to the OpenSSH default."""

    try:
        sshd_process = keygen.run([sshd, "-T"])
        if sshd_process.returncode == 0:
            return _parse_setting(sshd_process.stdout.splitlines())
        logging.debug("sshd -T failed: %s", sshd_process.stderr.strip())
    except KeygenError as err:
        logging.debug("Unable to run sshd -T: %s", err)

    try:
        with open(config, "r", encoding="utf-8", errors="replace") as inf:
            return _parse_setting(inf.read().splitlines())
    except OSError:
        return list(DEFAULT_AUTHORIZED_KEYS_FILES)


def expand_tokens(template: str, user: str, uid: int, home: str) -> str:
    """Expand %h, %u, %U and %% as sshd does. Relative results are taken
    relative to home."""

    tokens = {"h": home, "u": user, "U": str(uid), "%": "%"}

    def replace(match: "re.Match[str]") -> str:
        return tokens.get(match.group(1), match.group(0))

    path = re.sub(r"%(.)", replace, template)
    return os.path.normpath(os.path.join(home, path))


def authorized_keys(templates: Iterable[str], users: Iterable[Tuple[str, int, str]],
                    keygen: Keygen, workdir: StrPath) -> Iterator[AuthorizedKey]:
    """Yields a record for every key line that can be fingerprinted in each
    user's authorized keys files."""

    seen = set()
    templates = list(templates)
    for user, uid, home in users:
        for template in templates:
            path = expand_tokens(template, user, uid, home)
            if path in seen or not os.path.isfile(path):
                continue
            seen.add(path)

            try:
                meta = candidate_from_path(path)
                with open(path, "r", encoding="utf-8", errors="replace") as inf:
                    content = inf.read(AUTHORIZED_KEYS_WINDOW)
            except OSError as err:
                logging.warning("IO error reading %s: %s", path, err)
                continue

            for line in content.splitlines():
                line = line.strip()
                if not line or line.startswith("#"):
                    continue
                try:
                    record = fingerprint_line(strip_key_options(line), keygen, workdir)
                except KeygenError as err:
                    logging.debug("Skipping line in %s: %s", path, err)
                    continue
                if record.key_type == "NA":
                    record = record._replace(key_type=key_type_from_line(line) or "NA")
                yield AuthorizedKey(source=meta, public_key=record._replace(line=line))
