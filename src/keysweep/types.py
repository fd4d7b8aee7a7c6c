"""Types for Keysweep"""

import enum
import os
from typing import Union, NamedTuple, Optional

StrPath = Union[str, os.PathLike[str]]


class FormatVerdict(enum.Enum):
    """On-disk container of a candidate private key file."""
    SSH1 = "SSH1"
    PEM_GENERIC = "PEM_GENERIC"
    OPENSSH_V1 = "OPENSSH_V1"
    UNRECOGNIZED = "UNRECOGNIZED"


class EncryptionVerdict(enum.Enum):
    """Whether a private key is protected by a passphrase. UNKNOWN means the
    container could not be decoded far enough to tell."""
    ENCRYPTED = "ENCRYPTED"
    UNENCRYPTED = "UNENCRYPTED"
    UNKNOWN = "UNKNOWN"


class CandidateFile(NamedTuple):
    """Filesystem metadata for a file believed to hold a private key"""
    path: str
    owner: str
    group: str
    mode: str
    mtime: int


class PublicKeyRecord(NamedTuple):
    """Derived or reconciled public key material"""
    key_type: str = "NA"
    bits: int = 0
    fingerprint: str = ""
    line: str = ""
    # False when the line was adopted from a companion .pub file without
    # comparing fingerprints
    verified: bool = True


class KeyReport(NamedTuple):
    """One output record for a private key file"""
    candidate: CandidateFile
    format: FormatVerdict
    encryption: EncryptionVerdict
    public_key: PublicKeyRecord


class AgentIdentity(NamedTuple):
    """One identity held by a running ssh agent"""
    socket: CandidateFile
    key_type: str
    bits: int
    fingerprint: str
    remote_path: Optional[str] = None


class AuthorizedKey(NamedTuple):
    """One key line from an authorized_keys file"""
    source: CandidateFile
    public_key: PublicKeyRecord
