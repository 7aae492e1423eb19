#!/usr/bin/env python
#
# Copyright (c) 2024-2025, Ryan Galloway (ryan@rsgalloway.com)
#
# Redistribution and use in source and binary forms, with or without
# modification, are permitted provided that the following conditions are met:
#
#  - Redistributions of source code must retain the above copyright notice,
#    this list of conditions and the following disclaimer.
#
#  - Redistributions in binary form must reproduce the above copyright notice,
#    this list of conditions and the following disclaimer in the documentation
#    and/or other materials provided with the distribution.
#
#  - Neither the name of the software nor the names of its contributors
#    may be used to endorse or promote products derived from this software
#    without specific prior written permission.
#
# THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS"
# AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO, THE
# IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE
# ARE DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR CONTRIBUTORS BE
# LIABLE FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR
# CONSEQUENTIAL DAMAGES (INCLUDING, BUT NOT LIMITED TO, PROCUREMENT OF
# SUBSTITUTE GOODS OR SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS
# INTERRUPTION) HOWEVER CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN
# CONTRACT, STRICT LIABILITY, OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE)
# ARISING IN ANY WAY OUT OF THE USE OF THIS SOFTWARE, EVEN IF ADVISED OF THE
# POSSIBILITY OF SUCH DAMAGE.
#

__doc__ = """
Command line interface for s3mirror: one-way sync from S3 to a local dir.

Usage:

    $ s3mirror pull s3://bucket/prefix /local/dir [OPTIONS]
"""

import argparse
import signal
import sys
import threading
import time
from typing import List, Optional, Sequence

from s3mirror import config
from s3mirror.logger import get_logger, setup_logging
from s3mirror.remote import ConfigError
from s3mirror.server import Metrics, start_server, stop_server
from s3mirror.sync import SyncError, Syncer, SyncSpec

log = get_logger("cmd")


def build_parser(prog: str = "s3mirror") -> argparse.ArgumentParser:
    """Builds the argument parser."""
    from s3mirror import __version__

    parser = argparse.ArgumentParser(
        prog=prog,
        description=__doc__,
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"s3mirror {__version__}",
    )
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    pull = subparsers.add_parser("pull", help="synchronize data from S3 to localhost")
    pull.add_argument("remote_uri", metavar="S3_URI", help="s3://bucket/prefix")
    pull.add_argument("local_dir", metavar="LOCAL_DIR", help="local directory")
    pull.add_argument(
        "--run-once",
        action="store_true",
        help="pull one time and exit",
    )
    pull.add_argument(
        "-i",
        "--interval",
        type=float,
        default=config.INTERVAL,
        help="seconds between pulls (default: %(default)s)",
    )
    pull.add_argument(
        "-p",
        "--metrics-port",
        type=int,
        default=config.METRICS_PORT,
        help="port the metrics server binds on (default: %(default)s)",
    )
    pull.add_argument(
        "--no-metrics",
        action="store_true",
        help="do not start the metrics server",
    )
    pull.add_argument(
        "-e",
        "--s3-endpoint",
        default=config.S3_ENDPOINT,
        help="custom S3 endpoint URL",
    )
    pull.add_argument(
        "--disable-ssl",
        action="store_true",
        help="disable SSL in S3 connection",
    )
    pull.add_argument(
        "--temp-dir",
        default=config.TEMP_DIR,
        help="work directory to store temporary files (default: %(default)s)",
    )
    pull.add_argument(
        "-w",
        "--workers",
        type=int,
        default=config.WORKERS,
        help="download threads (default: %(default)s)",
    )
    pull.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="verbose output",
    )

    subparsers.add_parser("version", help="show version info")
    return parser


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = build_parser()
    return parser.parse_args(list(argv) if argv is not None else None)


def run_once(syncer: Syncer) -> int:
    """Runs one pull.

    :param syncer: syncer to run.
    :return: 0 on success, 1 if the pull failed or any download failed.
    """
    log.info("running once...")
    try:
        outcome = syncer.pull()
    except SyncError as e:
        log.error("pull failed: %s", e)
        return 1
    if outcome.error is not None:
        log.error(
            "pull finished with %d errors, first: %s",
            len(outcome.errors),
            outcome.error,
        )
        return 1
    return 0


def run_interval(syncer: Syncer, interval: float, stop_event: threading.Event) -> int:
    """Pulls immediately, then every interval seconds until stop_event is
    set. Failed pulls are logged and retried on the next tick.

    :param syncer: syncer to run.
    :param interval: seconds between the start of two pulls.
    :param stop_event: event that ends the loop.
    :return: 0.
    """
    while not stop_event.is_set():
        start = time.time()
        log.info("pull from S3 started")
        try:
            outcome = syncer.pull()
        except SyncError as e:
            log.error("pull failed: %s", e)
        else:
            if outcome.error is not None:
                log.error(
                    "pull finished with %d errors, first: %s",
                    len(outcome.errors),
                    outcome.error,
                )
        elapsed = time.time() - start
        stop_event.wait(max(0.0, interval - elapsed))
    return 0


def pull(args: argparse.Namespace) -> int:
    """Runs the pull command."""
    metrics = None if args.run_once or args.no_metrics else Metrics()

    try:
        spec = SyncSpec.from_uri(
            args.remote_uri,
            args.local_dir,
            temp_dir=args.temp_dir,
            endpoint_url=args.s3_endpoint,
            disable_ssl=args.disable_ssl,
            workers=args.workers,
        )
        syncer = Syncer(spec, metrics=metrics, logger=get_logger("syncer"))
    except ConfigError as e:
        log.error("can't create syncer: %s", e)
        return 1

    syncer.init_hash_index()

    if args.run_once:
        return run_once(syncer)

    stop_event = threading.Event()

    def _on_signal(signum, frame):
        log.info("received signal %s", signal.Signals(signum).name)
        stop_event.set()
        syncer.stop()

    signal.signal(signal.SIGTERM, _on_signal)
    signal.signal(signal.SIGINT, _on_signal)

    server = None
    if metrics is not None:
        try:
            server = start_server(metrics, port=args.metrics_port)
        except OSError as e:
            log.error("can't start metrics server: %s", e)
            return 1

    try:
        run_interval(syncer, args.interval, stop_event)
    finally:
        if server is not None:
            stop_server(server)

    # the loop only ends once a signal set the stop event
    log.info("interrupted, exiting")
    return 130


def version() -> int:
    """Prints version info."""
    from s3mirror import __version__

    print(f"S3 mirror v{__version__}")
    print(f"Build time {config.BUILD_TIME}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    if args.command == "version":
        return version()

    setup_logging(verbose=args.verbose)

    try:
        return pull(args)
    except KeyboardInterrupt:
        log.error("canceled")
        return 130


if __name__ == "__main__":
    sys.exit(main())
