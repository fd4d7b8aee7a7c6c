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
"""Derives public keys from private key files and correlates them with the
companion .pub file next to the private key."""

import logging
import tempfile
from pathlib import Path
from typing import Optional, Tuple

from .keygen import Keygen, KeygenError
from .types import PublicKeyRecord, StrPath

__all__ = ["derive_public_key", "reconcile", "fallback", "companion_path", "read_public_key_line"]

# Public key files larger than this are not public key files
PUBLIC_KEY_WINDOW = 65536


def companion_path(path: StrPath) -> Path:
    """Returns the conventional location of the public half of path."""
    return Path(f"{path}.pub")


def read_public_key_line(path: StrPath) -> Optional[str]:
    """Returns the first key line of a public key file, or None if there
    isn't one or it can't be read."""

    try:
        with open(path, "r", encoding="utf-8", errors="replace") as inf:
            content = inf.read(PUBLIC_KEY_WINDOW)
    except OSError as err:
        logging.debug("Unable to read %s: %s", path, err)
        return None

    for line in content.splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            return line
    return None


def _companion_line(path: StrPath) -> Tuple[Path, Optional[str]]:
    """Returns the companion path of path and its key line, or None for the
    line if there is no readable regular file there."""

    companion = companion_path(path)
    try:
        # Opening a FIFO here would block
        if not companion.is_file():
            return companion, None
    except OSError as err:
        logging.debug("No companion for %s: %s", path, err)
        return companion, None
    return companion, read_public_key_line(companion)


def fingerprint_line(line: str, keygen: Keygen, workdir: StrPath) -> PublicKeyRecord:
    """Fingerprint a public key line by writing it to the working directory.
    Raises KeygenError."""

    with tempfile.NamedTemporaryFile(mode="w", dir=workdir, suffix=".pub", encoding="utf-8") as key_file:
        key_file.write(line + "\n")
        key_file.flush()
        fp = keygen.fingerprint(key_file.name)

    return PublicKeyRecord(key_type=fp.key_type or "NA", bits=fp.bits,
                           fingerprint=fp.fingerprint, line=line)


def derive_public_key(path: StrPath, keygen: Keygen, workdir: StrPath) -> Optional[PublicKeyRecord]:
    """Returns the public key record for an unencrypted private key, or None
    if either the derivation or the fingerprint fails."""

    try:
        line = keygen.derive_public_key(path)
        return fingerprint_line(line, keygen, workdir)
    except KeygenError as err:
        logging.debug("No usable public key for %s: %s", path, err)
        return None


def reconcile(derived: PublicKeyRecord, path: StrPath, keygen: Keygen) -> PublicKeyRecord:
    """Prefer the companion .pub line, which keeps options and comments, when
    its fingerprint matches the derived key. Otherwise keep the derived key."""

    companion, line = _companion_line(path)
    if line is None:
        return derived

    try:
        companion_fp = keygen.fingerprint(companion)
    except KeygenError as err:
        logging.debug("Unable to fingerprint companion %s: %s", companion, err)
        return derived

    if companion_fp.fingerprint != derived.fingerprint:
        logging.info("Ignoring %s: fingerprint %s does not match %s",
                     companion, companion_fp.fingerprint, derived.fingerprint)
        return derived

    return derived._replace(line=line)


def fallback(path: StrPath, keygen: Keygen, probe: Optional[PublicKeyRecord] = None) -> Optional[PublicKeyRecord]:
    """Adopt the companion .pub file without checking that it belongs to the
    private key at path. If there is no companion, returns probe, which holds
    whatever could be read from the private key without decrypting it."""

    companion, line = _companion_line(path)
    if line is None:
        return probe

    try:
        fp = keygen.fingerprint(companion)
        record = PublicKeyRecord(key_type=fp.key_type or "NA", bits=fp.bits,
                                 fingerprint=fp.fingerprint, line=line, verified=False)
    except KeygenError as err:
        logging.debug("Unable to fingerprint companion %s: %s", companion, err)
        record = PublicKeyRecord(line=line, verified=False)
        if probe is not None:
            record = record._replace(fingerprint=probe.fingerprint, bits=probe.bits,
                                     key_type=probe.key_type)

    logging.info("Adopted unverified companion %s for %s", companion, path)
    return record
