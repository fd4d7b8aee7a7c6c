"""
Inventories the ssh credentials on a host: private key files and whether they
are encrypted, the keys sshd accepts through authorized_keys files, and the
identities loaded into running ssh agents.
"""
from .inventory import Inventory, inspect_file

__all__ = ["Inventory", "inspect_file"]
