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
"""Passphrase detection for the supported private key containers. Every
function here works on the raw file content and never runs ssh-keygen, so
none of them can end up waiting on a passphrase prompt."""

import re
import struct
import binascii
import base64

from .types import FormatVerdict, EncryptionVerdict

__all__ = ["ssh1_encryption", "pem_encryption", "openssh_encryption", "encryption_verdict"]

# "SSH PRIVATE KEY FILE FORMAT 1.1\n" followed by a NUL
SSH1_MAGIC = b"SSH PRIVATE KEY FILE FORMAT 1.1\n\x00"
SSH1_CIPHER_OFFSET = len(SSH1_MAGIC)
SSH1_CIPHER_NONE = 0

OPENSSH_MAGIC = b"openssh-key-v1\x00"

PEM_BLOCK_PATTERN = re.compile(
    rb"-{5}BEGIN ((?:RSA|DSA|EC) PRIVATE KEY)-{5}"
    rb"(.*?)"
    rb"-{5}END \1-{5}",
    re.DOTALL
)

OPENSSH_BLOCK_PATTERN = re.compile(
    rb"-{5}BEGIN OPENSSH PRIVATE KEY-{5}"
    rb"(.*?)"
    rb"-{5}END OPENSSH PRIVATE KEY-{5}",
    re.DOTALL
)

PROC_TYPE_PATTERN = re.compile(rb"^\s*proc-type:(.*)$", re.IGNORECASE | re.MULTILINE)


def ssh1_encryption(data: bytes) -> EncryptionVerdict:
    """Read the cipher type byte that follows the SSH1 magic string."""

    if not data.startswith(SSH1_MAGIC) or len(data) <= SSH1_CIPHER_OFFSET:
        return EncryptionVerdict.UNKNOWN

    if data[SSH1_CIPHER_OFFSET] == SSH1_CIPHER_NONE:
        return EncryptionVerdict.UNENCRYPTED
    return EncryptionVerdict.ENCRYPTED


def pem_encryption(data: bytes) -> EncryptionVerdict:
    """Look for an RFC 1421 "Proc-Type: 4,ENCRYPTED" header. A PEM block
    without a Proc-Type header is taken to be unencrypted; a block without its
    END marker is truncated and yields UNKNOWN."""

    block = PEM_BLOCK_PATTERN.search(data)
    if not block or not block.group(2).strip():
        return EncryptionVerdict.UNKNOWN

    proc_type = PROC_TYPE_PATTERN.search(block.group(2))
    if proc_type:
        fields = proc_type.group(1).split(b",")
        # The field value itself is case sensitive
        if len(fields) > 1 and fields[1].strip() == b"ENCRYPTED":
            return EncryptionVerdict.ENCRYPTED

    return EncryptionVerdict.UNENCRYPTED


def openssh_encryption(data: bytes) -> EncryptionVerdict:
    """Decode the base64 body of an openssh-key-v1 container and read the
    cipher name that follows the magic string."""

    block = OPENSSH_BLOCK_PATTERN.search(data)
    if not block:
        return EncryptionVerdict.UNKNOWN

    body = re.sub(rb"\s", b"", block.group(1))
    try:
        decoded = base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError):
        return EncryptionVerdict.UNKNOWN

    if not decoded.startswith(OPENSSH_MAGIC):
        return EncryptionVerdict.UNKNOWN

    offset = len(OPENSSH_MAGIC)
    try:
        (name_len,) = struct.unpack_from(">I", decoded, offset)
    except struct.error:
        return EncryptionVerdict.UNKNOWN

    offset += 4
    # The kdf name length follows the cipher name, so an unencrypted key
    # always reads "none\0"
    window = decoded[offset:offset + name_len + 1]
    if len(window) < name_len + 1 or name_len == 0:
        return EncryptionVerdict.UNKNOWN

    if window == b"none\x00":
        return EncryptionVerdict.UNENCRYPTED
    return EncryptionVerdict.ENCRYPTED


def encryption_verdict(fmt: FormatVerdict, data: bytes) -> EncryptionVerdict:
    """Dispatch to the decoder for fmt."""

    if fmt is FormatVerdict.SSH1:
        return ssh1_encryption(data)
    if fmt is FormatVerdict.PEM_GENERIC:
        return pem_encryption(data)
    if fmt is FormatVerdict.OPENSSH_V1:
        return openssh_encryption(data)
    return EncryptionVerdict.UNKNOWN
