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
"""Inventory class for Keysweep"""

import os
import sys
import logging
import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor, FIRST_COMPLETED, wait

from .agent import list_identities
from .authorized_keys import authorized_keys
from .classifier import classify
from .decoders import encryption_verdict
from .keygen import Keygen, KeygenError, DEFAULT_TIMEOUT
from .reconcile import derive_public_key, reconcile, fallback
from .report import assemble, candidate_from_path, format_record
from .types import EncryptionVerdict, FormatVerdict, PublicKeyRecord

__all__ = ["Inventory", "InventoryAbort", "inspect_file", "check_root",
           "EXIT_NO_WORKDIR", "EXIT_NO_ROOT"]

EXIT_NO_WORKDIR = 3
EXIT_NO_ROOT = 4

# No private key file comes anywhere near this size
MAX_KEY_SIZE = 1048576


class InventoryAbort(Exception):
    """A condition that ends the whole run. status is the process exit
    status to use."""

    def __init__(self, message, status):
        super().__init__(message)
        self.status = status


def check_root(path):
    """Raise InventoryAbort unless path is a readable directory."""
    if not os.path.isdir(path) or not os.access(path, os.R_OK | os.X_OK):
        raise InventoryAbort(f"Unable to read scan root {path}", EXIT_NO_ROOT)


def inspect_file(path, keygen, workdir):
    """Classify, decode and derive the public key for one file. Returns a
    KeyReport, or None if the file isn't a usable private key."""

    try:
        meta = candidate_from_path(path)
        with open(path, "rb") as inf:
            fmt = classify(inf)
            if fmt is FormatVerdict.UNRECOGNIZED:
                return None
            inf.seek(0)
            data = inf.read(MAX_KEY_SIZE)
    except OSError as err:
        logging.warning("IO error reading %s: %s", path, err)
        return None

    encryption = encryption_verdict(fmt, data)
    public_key = None
    probe = None

    if encryption is EncryptionVerdict.UNENCRYPTED:
        derived = derive_public_key(path, keygen, workdir)
        if derived is not None:
            public_key = reconcile(derived, path, keygen)

    elif fmt is FormatVerdict.SSH1 and encryption is EncryptionVerdict.ENCRYPTED:
        # SSH1 keeps the public half in the clear
        try:
            probe = PublicKeyRecord(fingerprint=keygen.fingerprint(path).fingerprint)
        except KeygenError as err:
            logging.debug("No fingerprint for encrypted SSH1 key %s: %s", path, err)

    if public_key is None:
        public_key = fallback(path, keygen, probe)

    if encryption is EncryptionVerdict.ENCRYPTED:
        logging.info("Found encrypted %s key in %s", fmt.value, path)
    elif encryption is EncryptionVerdict.UNKNOWN:
        logging.info("Found malformed %s key in %s", fmt.value, path)
    else:
        logging.info("Found %s key in %s", fmt.value, path)

    report = assemble(meta, fmt, encryption, public_key)
    if report is None:
        logging.info("No public key available for %s, skipping", path)
    return report


class Inventory():
    """Runs the key inspections on a pool of worker threads and writes one
    line per record to output. Use as a context manager: the working
    directory lives exactly as long as the with block."""

    def __init__(self, output=None, keygen=None, workers=None, timeout=DEFAULT_TIMEOUT):
        self.output = output if output is not None else sys.stdout
        self.keygen = keygen if keygen is not None else Keygen(timeout=timeout)
        self.workers = workers or min(32, (os.cpu_count() or 1) + 4)
        self.reports = 0
        self.workdir = None
        self._tempdir = None
        self._lock = threading.Lock()
        self._cancelled = threading.Event()

    def __enter__(self):
        try:
            self._tempdir = tempfile.TemporaryDirectory(prefix="keysweep-")
        except OSError as err:
            raise InventoryAbort(f"Unable to create working directory: {err}", EXIT_NO_WORKDIR) from err
        self.workdir = self._tempdir.name
        return self

    def __exit__(self, exception_type, exception_value, traceback):
        if exception_type is not None:
            self.cancel()
        self._tempdir.cleanup()
        self._tempdir = None
        self.workdir = None

    @property
    def cancelled(self):
        """True once cancel() has been called."""
        return self._cancelled.is_set()

    def cancel(self):
        """Stop emitting records and kill running key tools."""
        self._cancelled.set()
        self.keygen.cancel()

    def write(self, record):
        """Write one complete record line. Dropped after cancellation."""
        line = format_record(record) + "\n"
        with self._lock:
            if self.cancelled:
                return
            self.output.write(line)
            self.output.flush()
            self.reports += 1

    def _inspect(self, path):
        try:
            report = inspect_file(path, self.keygen, self.workdir)
        except (OSError, KeygenError) as err:
            logging.warning("Skipping %s: %s", path, err)
            return
        if report is not None and not self.cancelled:
            self.write(report)

    def _list_agents(self, sockets):
        for socket_path in sockets:
            if self.cancelled:
                return
            for identity in list_identities(socket_path, self.keygen):
                self.write(identity)

    def _list_authorized_keys(self, templates, users):
        for key in authorized_keys(templates, users, self.keygen, self.workdir):
            if self.cancelled:
                return
            self.write(key)

    def run(self, candidates=(), sockets=(), templates=(), users=()):
        """Inspect every candidate file, agent socket and authorized keys
        file. Returns the number of records written."""

        if self.workdir is None:
            raise RuntimeError("Inventory must be used as a context manager")

        window = self.workers * 4
        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            pending = set()
            # Agents and authorized keys don't depend on the file scan
            if sockets:
                pending.add(executor.submit(self._list_agents, list(sockets)))
            if templates and users:
                pending.add(executor.submit(self._list_authorized_keys, list(templates), list(users)))

            try:
                for path in candidates:
                    if self.cancelled:
                        break
                    pending.add(executor.submit(self._inspect, path))
                    if len(pending) >= window:
                        done, pending = wait(pending, return_when=FIRST_COMPLETED)
                        for future in done:
                            future.result()

                for future in pending:
                    future.result()
            except BaseException:
                self.cancel()
                for future in pending:
                    future.cancel()
                raise

        return self.reports
