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
"""Produces the candidate private key files to inspect"""

import os
import pwd
import logging
from pathlib import Path
from typing import Iterable, Iterator, List, Tuple

from .types import StrPath

__all__ = ["walk", "home_directories", "users", "home_candidates", "full_candidates",
           "DEFAULT_MIN_SIZE", "DEFAULT_MAX_SIZE"]

DEFAULT_MIN_SIZE = 200
DEFAULT_MAX_SIZE = 14000

PSEUDO_FILESYSTEMS = ("/proc", "/sys", "/dev")

HOST_KEY_DIRECTORIES = ("/etc/ssh",)


def _log_walk_error(err: OSError) -> None:
    logging.debug("Skipping %s: %s", err.filename, err.strerror)


def walk(path: StrPath, skip: Iterable[StrPath] = ()) -> Iterator[Path]:
    """Yields each regular file under the provided path. Symlinks are not
    followed, and directories in skip are not descended into."""

    skip = {os.path.normpath(p) for p in skip}

    if Path(path).is_file() and not Path(path).is_symlink():
        yield Path(path)
        return

    for dirpath, dirnames, filenames in os.walk(path, onerror=_log_walk_error):
        dirnames[:] = [d for d in dirnames if os.path.normpath(os.path.join(dirpath, d)) not in skip]
        for fname in filenames:
            file_path = Path(dirpath, fname)
            if file_path.is_symlink() or not file_path.is_file():
                continue
            yield file_path


def users() -> List[Tuple[str, int, str]]:
    """Returns (name, uid, home) for each passwd entry with an existing home
    directory. The first entry wins when several share a home."""

    seen = set()
    entries = []
    for entry in pwd.getpwall():
        home = os.path.normpath(entry.pw_dir) if entry.pw_dir else ""
        if not home or home in seen or not os.path.isdir(home):
            continue
        seen.add(home)
        entries.append((entry.pw_name, entry.pw_uid, home))
    return entries


def home_directories() -> List[str]:
    """Returns the distinct, existing home directories from passwd."""
    return [home for _, _, home in users()]


def home_candidates(homes: Iterable[StrPath], extra: Iterable[StrPath] = HOST_KEY_DIRECTORIES) -> Iterator[str]:
    """Yields every non-.pub file under each home's .ssh directory and under
    the extra directories."""

    directories = [Path(home, ".ssh") for home in homes] + [Path(d) for d in extra]
    for directory in directories:
        if not directory.is_dir():
            continue
        for file_path in walk(directory):
            if file_path.name.endswith(".pub"):
                continue
            yield str(file_path)


def full_candidates(root: StrPath = "/", min_size: int = DEFAULT_MIN_SIZE,
                    max_size: int = DEFAULT_MAX_SIZE,
                    skip: Iterable[StrPath] = PSEUDO_FILESYSTEMS) -> Iterator[str]:
    """Yields every non-.pub regular file under root whose size is within
    [min_size, max_size]."""

    for file_path in walk(root, skip=skip):
        if file_path.name.endswith(".pub"):
            continue
        try:
            size = file_path.stat().st_size
        except OSError:
            continue
        if min_size <= size <= max_size:
            yield str(file_path)
