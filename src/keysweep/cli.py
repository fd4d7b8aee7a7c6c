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
"""Inventories ssh keys on this host"""

import sys
import signal
import argparse
import logging
from keysweep.agent import discover_sockets
from keysweep.authorized_keys import resolve_authorized_keys_files
from keysweep.inventory import Inventory, InventoryAbort, check_root
from keysweep.keygen import Keygen, DEFAULT_TIMEOUT
from keysweep.scanner import (users, home_directories, home_candidates, full_candidates,
                              DEFAULT_MIN_SIZE, DEFAULT_MAX_SIZE)

EXIT_INTERRUPTED = 130


def parse_args(argv=None):
    """Parse command line arguments."""

    parser = argparse.ArgumentParser(description="""Reports private keys found
    on disk, the keys sshd accepts through authorized_keys files, and the
    identities loaded into running ssh agents. Writes one semicolon delimited
    record per key: owner;group;mode;mtime;fingerprint;bits;type;encrypted;path;public_key""")

    parser.add_argument("--mode", choices=["home", "full"], default="home",
                        help="""Search only the .ssh directories of local users
                        and /etc/ssh (home, the default), or every file on the
                        filesystem within the size limits (full).""")

    parser.add_argument("--root", metavar="path", default="/",
                        help="""Where a full scan starts. Defaults to /.""")

    parser.add_argument("--min-size", metavar="bytes", type=int, default=DEFAULT_MIN_SIZE,
                        help=f"""Smallest file considered by a full scan
                        (default {DEFAULT_MIN_SIZE}).""")

    parser.add_argument("--max-size", metavar="bytes", type=int, default=DEFAULT_MAX_SIZE,
                        help=f"""Largest file considered by a full scan
                        (default {DEFAULT_MAX_SIZE}).""")

    parser.add_argument("--workers", metavar="n", type=int, default=None,
                        help="""Number of files inspected concurrently.""")

    parser.add_argument("--timeout", metavar="seconds", type=float, default=DEFAULT_TIMEOUT,
                        help=f"""Kill ssh-keygen, ssh-add and sshd after this
                        long (default {DEFAULT_TIMEOUT}).""")

    parser.add_argument("--no-private-keys", action="store_true",
                        help="""Don't search for private key files.""")

    parser.add_argument("--no-agents", action="store_true",
                        help="""Don't list identities in ssh agents.""")

    parser.add_argument("--no-authorized-keys", action="store_true",
                        help="""Don't report authorized_keys entries.""")

    parser.add_argument("--ssh-keygen", metavar="path", default="ssh-keygen",
                        help="""ssh-keygen executable to use.""")

    parser.add_argument("--ssh-add", metavar="path", default="ssh-add",
                        help="""ssh-add executable to use.""")

    parser.add_argument("--sshd", metavar="path", default="sshd",
                        help="""sshd executable used to read the effective
                        AuthorizedKeysFile setting.""")

    parser.add_argument("-o", "--output", metavar="file", default="",
                        help="""Write records to this file instead of stdout.""")

    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="""Log progress to stderr. Repeat for debug output.""")

    return parser.parse_args(argv)


def _raise_interrupt(signum, frame):
    raise KeyboardInterrupt


def main(argv=None):
    """Inventory ssh keys on this host."""

    args = parse_args(argv)

    level = {0: logging.WARNING, 1: logging.INFO}.get(args.verbose, logging.DEBUG)
    logging.basicConfig(level=level, format="%(asctime)s - %(levelname)s  - %(message)s")

    # Treat SIGTERM like ^C so in-flight tools are killed and nothing partial is written
    signal.signal(signal.SIGTERM, _raise_interrupt)

    keygen = Keygen(ssh_keygen=args.ssh_keygen, ssh_add=args.ssh_add, timeout=args.timeout)

    if args.mode == "full":
        candidates = full_candidates(args.root, args.min_size, args.max_size)
    else:
        candidates = home_candidates(home_directories())

    output = None
    try:
        if args.mode == "full" and not args.no_private_keys:
            check_root(args.root)

        if args.output:
            output = open(args.output, "w", encoding="utf-8")  # pylint: disable=consider-using-with

        sockets = [] if args.no_agents else discover_sockets()
        templates = [] if args.no_authorized_keys else resolve_authorized_keys_files(keygen, sshd=args.sshd)

        with Inventory(output=output, keygen=keygen, workers=args.workers) as inventory:
            count = inventory.run(candidates=() if args.no_private_keys else candidates,
                                  sockets=sockets, templates=templates, users=users())
        logging.info("Wrote %d records", count)

    except InventoryAbort as err:
        logging.error("%s", err)
        return err.status

    except OSError as err:
        logging.error("Unable to write output: %s", err)
        return 1

    except KeyboardInterrupt:
        logging.warning("Interrupted")
        return EXIT_INTERRUPTED

    finally:
        if output is not None:
            output.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
