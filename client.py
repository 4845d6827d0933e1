import argparse
import logging
import sys
from dataclasses import dataclass, field
from typing import BinaryIO, Optional, TextIO

from connection import (POLL_INTERVAL, PROXY_HOST, RECV_BUFFER_LEN, Connection,
                        ReceiveMode, connect, receive, send)
from errors import ClientError, CloseError, UsageError
from http_request import (DEFAULT_USER_AGENT, MINIMAL_REQUEST, Endpoint,
                          RequestOptions, build_request, parse_endpoint)
from logger import configure_logging
from timing import OperationTimer

USAGE = "Expected usage: client.py <url> <proxy_port>"

logger = logging.getLogger(__name__)


@dataclass
class ClientConfig:
    proxy_host: str = PROXY_HOST
    mode: ReceiveMode = ReceiveMode.IMMEDIATE
    buffer_size: int = RECV_BUFFER_LEN
    poll_interval: float = POLL_INTERVAL
    request: RequestOptions = field(default_factory=RequestOptions)
    metrics: bool = True
    timings_to_stderr: bool = False


class ArgumentParser(argparse.ArgumentParser):

    def error(self, message):
        self.exit(1, f"{USAGE}\n{self.prog}: {message}\n")


def build_arg_parser() -> ArgumentParser:
    parser = ArgumentParser(prog="client.py", description="Send one GET through a local proxy and dump the raw response")
    parser.add_argument("url", help="http://<host>[<path>]")
    parser.add_argument("proxy_port", help="port the proxy listens on at 127.0.0.1")
    parser.add_argument("--buffered", action="store_true", help="accumulate reads and print whole buffers")
    parser.add_argument("--buffer-size", type=int, default=RECV_BUFFER_LEN, help=f"receive buffer capacity (default: {RECV_BUFFER_LEN})")
    parser.add_argument("--poll-interval", type=float, default=POLL_INTERVAL, help=f"seconds between reads (default: {POLL_INTERVAL})")
    parser.add_argument("--minimal", action="store_true", help="omit the User-Agent and Accept headers")
    parser.add_argument("--user-agent", default=DEFAULT_USER_AGENT, help=f"User-Agent token (default: {DEFAULT_USER_AGENT})")
    parser.add_argument("--no-metrics", action="store_true", help="skip the connected/total duration lines")
    parser.add_argument("--timings-to-stderr", action="store_true", help="print timing lines to stderr instead of stdout")
    parser.add_argument("--log-file", help="append log records to this file (or a dated file in this directory)")
    parser.add_argument("--verbose", action="store_true", help="log every read, write and state change")
    return parser


def config_from_args(args: argparse.Namespace) -> ClientConfig:
    if args.buffer_size < 2:
        raise UsageError(message=f"buffer size must be at least 2, got {args.buffer_size}")
    if args.poll_interval < 0:
        raise UsageError(message=f"poll interval must not be negative, got {args.poll_interval}")

    return ClientConfig(
        mode=ReceiveMode.ACCUMULATING if args.buffered else ReceiveMode.IMMEDIATE,
        buffer_size=args.buffer_size,
        poll_interval=args.poll_interval,
        request=MINIMAL_REQUEST if args.minimal else RequestOptions(user_agent=args.user_agent),
        metrics=not args.no_metrics,
        timings_to_stderr=args.timings_to_stderr,
    )


def exchange(conn: Connection, request: bytes, config: ClientConfig,
             out: BinaryIO, timer: OperationTimer):
    conn.set_non_blocking()

    outcome = send(conn, request)
    logger.debug(f"Request of {outcome.bytes_sent} bytes sent in {len(outcome.writes)} writes")
    conn.half_close_send()
    timer.mark('sent')

    received = 0
    for chunk in receive(conn, config.mode, config.buffer_size, config.poll_interval):
        out.write(chunk)
        out.flush()
        received += len(chunk)
    logger.debug(f"Response complete, {received} bytes")

    conn.shutdown()


def run(endpoint: Endpoint, config: ClientConfig,
        out: Optional[BinaryIO] = None, timings: Optional[TextIO] = None) -> int:
    """Drive one request through the proxy; returns the process exit status."""
    if out is None:
        out = sys.stdout.buffer
    if timings is None:
        timings = sys.stderr if config.timings_to_stderr else sys.stdout

    timer = OperationTimer(timings, metrics=config.metrics)
    request = build_request(endpoint, config.request)
    failed = False

    timer.mark('start')
    try:
        conn = connect(endpoint, config.proxy_host)
    except ClientError as err:
        logger.error(err.describe())
        failed = True
    else:
        timer.mark('connected')
        try:
            with conn:
                try:
                    exchange(conn, request, config, out, timer)
                except ClientError as err:
                    logger.error(err.describe())
                    failed = True
        except CloseError as err:
            logger.error(err.describe())
            failed = True

    timer.mark('end')
    timer.report()
    return 1 if failed else 0


def main(argv=None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)

    try:
        endpoint = parse_endpoint(args.url, args.proxy_port)
        config = config_from_args(args)
    except UsageError as err:
        print(USAGE, file=sys.stderr)
        print(err.describe(), file=sys.stderr)
        return 1

    try:
        configure_logging(args.log_file, args.verbose)
    except OSError as err:
        print(USAGE, file=sys.stderr)
        print(f"Cannot open log file {args.log_file}: {err.strerror}", file=sys.stderr)
        return 1

    return run(endpoint, config)


if __name__ == '__main__':
    sys.exit(main())
