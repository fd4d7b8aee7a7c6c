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
"""Builds report records and renders them as semicolon delimited lines:

owner;group;mode;mtime;fingerprint;bit_length;key_type;encrypted;file_path;public_key

A literal ";" or "%" inside any field is written as "%3B" or "%25".
"""

import os
import pwd
import grp
import stat
from functools import cache
from typing import Iterable, Optional, Union

from .keygen import key_type_from_line
from .types import (AgentIdentity, AuthorizedKey, CandidateFile, EncryptionVerdict,
                    FormatVerdict, KeyReport, PublicKeyRecord, StrPath)

__all__ = ["candidate_from_path", "assemble", "format_record", "DELIMITER"]

DELIMITER = ";"


@cache
def _user_name(uid: int) -> str:
    try:
        return pwd.getpwuid(uid).pw_name
    except KeyError:
        return str(uid)


@cache
def _group_name(gid: int) -> str:
    try:
        return grp.getgrgid(gid).gr_name
    except KeyError:
        return str(gid)


def candidate_from_path(path: StrPath) -> CandidateFile:
    """Stat path and capture the metadata reported alongside it. Raises
    OSError."""

    st = os.stat(path)
    return CandidateFile(path=str(path), owner=_user_name(st.st_uid), group=_group_name(st.st_gid),
                         mode=format(stat.S_IMODE(st.st_mode), "o"), mtime=int(st.st_mtime))


def assemble(candidate: CandidateFile, fmt: FormatVerdict, encryption: EncryptionVerdict,
             public_key: Optional[PublicKeyRecord]) -> Optional[KeyReport]:
    """Merge the verdicts and public key into a report. Returns None when
    there is no public key, since such a file has nothing worth reporting."""

    if public_key is None:
        return None

    # Older ssh-keygen does not print the key type for every key class
    if public_key.key_type in ("", "NA"):
        key_type = key_type_from_line(public_key.line)
        if key_type is None and fmt is FormatVerdict.SSH1:
            key_type = "RSA1"
        public_key = public_key._replace(key_type=key_type or "NA")

    return KeyReport(candidate=candidate, format=fmt, encryption=encryption, public_key=public_key)


def _clean(value: object) -> str:
    """One line, with the delimiter percent-encoded so the field count is
    fixed. urllib.parse.unquote reverses it."""
    text = " ".join(str(value).splitlines())
    return text.replace("%", "%25").replace(DELIMITER, "%3B")


def _join(fields: Iterable[object]) -> str:
    return DELIMITER.join(_clean(field) for field in fields)


def format_record(record: Union[KeyReport, AgentIdentity, AuthorizedKey]) -> str:
    """Render any report record as one output line."""

    if isinstance(record, KeyReport):
        meta, key = record.candidate, record.public_key
        encrypted = 1 if record.encryption is EncryptionVerdict.ENCRYPTED else 0
        return _join((meta.owner, meta.group, meta.mode, meta.mtime, key.fingerprint,
                      key.bits, key.key_type or "NA", encrypted, meta.path, key.line))

    if isinstance(record, AgentIdentity):
        meta = record.socket
        hint = f"remote_path={record.remote_path}" if record.remote_path else ""
        return _join((meta.owner, meta.group, meta.mode, meta.mtime, record.fingerprint,
                      record.bits, record.key_type or "NA", 0, meta.path, hint))

    meta, key = record.source, record.public_key
    return _join((meta.owner, meta.group, meta.mode, meta.mtime, key.fingerprint,
                  key.bits, key.key_type or "NA", 0, meta.path, key.line))
