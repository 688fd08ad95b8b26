"""
Process entry point for the ack chat.

Responsibilities:
- Parse mode (srv | cli), host and port
- Start the reactor thread
- Server mode: listen, hand accepted connections to SessionGateway
- Client mode: dial once, run one ConnectionPipeline
- Run the interactive input loop on the main thread

Usage:
    python -m server.main srv [port]
    python -m server.main cli host [port]
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from dataclasses import replace
from typing import Protocol, Sequence

from config import AppConfig
from console.line_source import LineFramer, LineSource, StdinLineSource
from console.sink import ConsoleSink, StdoutConsoleSink
from observability import logger
from observability.logger import log_event
from observability.metrics import now_ms
from protocol.frames import Frame
from server.net import Dialer, Listener
from server.reactor import EventLoopThread
from session.gateway import SessionGateway
from session.pipeline import ConnectionPipeline


class FrameSender(Protocol):
    def send(self, frame: Frame) -> bool:
        ...


# ------------------------------------------------------------------
# Argument parsing
# ------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ackchat",
        description="Framed two-peer chat with delivery acknowledgements.",
    )
    modes = parser.add_subparsers(dest="mode", required=True)

    srv = modes.add_parser("srv", help="accept incoming connections")
    srv.add_argument("port", nargs="?", type=int, default=None,
                     help="TCP port to listen on (default 5401)")

    cli = modes.add_parser("cli", help="connect to a host")
    cli.add_argument("host", help="IP address or host name to connect to")
    cli.add_argument("port", nargs="?", type=int, default=None,
                     help="TCP port to connect to (default 5401)")

    return parser


def config_from_args(args: argparse.Namespace, base: AppConfig) -> AppConfig:
    return replace(
        base,
        mode=args.mode,
        host=getattr(args, "host", None),
        port=args.port if args.port is not None else base.port,
    )


# ------------------------------------------------------------------
# Input loop (main thread)
# ------------------------------------------------------------------

def run_input_loop(source: LineSource, framer: LineFramer, target: FrameSender) -> int:
    """
    Read lines until end of input and send one DATA frame per line.

    Returns the number of frames handed to target.
    """
    handed = 0
    while True:
        line = source.next_line()
        if line is None:
            return handed
        frame = framer.frame_for(line)
        if frame is None:
            continue
        target.send(frame)
        handed += 1


# ------------------------------------------------------------------
# Wiring
# ------------------------------------------------------------------

async def _open_client_pipeline(
    config: AppConfig,
    sink: ConsoleSink,
) -> ConnectionPipeline:
    if config.host is None:
        raise ValueError("client mode requires a host")
    reader, writer = await Dialer(config.connect_timeout_s).connect(config.host, config.port)
    pipeline = ConnectionPipeline(
        reader=reader,
        writer=writer,
        sink=sink,
        peer=f"{config.host}:{config.port}",
        inbound=False,
    )
    pipeline.start()
    return pipeline


def run(config: AppConfig, source: LineSource, sink: StdoutConsoleSink) -> int:
    reactor = EventLoopThread()
    reactor.start()

    listener: Listener | None = None
    target: SessionGateway | ConnectionPipeline
    try:
        if config.is_server_mode:
            gateway = SessionGateway(sink=sink)
            listener = Listener(config.listen_host, config.port, gateway.on_connection)
            try:
                reactor.submit(listener.start()).result()
            except OSError as exc:
                sink.write_line(f"Unable to listen on port {config.port}: {exc}")
                return 1
            sink.write_line("Ready to accept incoming connections")
            target = gateway
        else:
            sink.write_line("Connecting ... ")
            try:
                target = reactor.submit(_open_client_pipeline(config, sink)).result()
            except (OSError, asyncio.TimeoutError) as exc:
                sink.write_line(f"Unable to connect to host: {exc}")
                return 1

        framer = LineFramer(on_truncated=sink.write_line)
        handed = run_input_loop(source, framer, target)
        log_event({
            "ts_ms": now_ms(),
            "event_type": "INPUT_EXHAUSTED",
            "frames_handed": handed,
        })
        target.close()
        return 0
    finally:
        if listener is not None:
            reactor.submit(listener.stop()).result()
        reactor.stop()


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = config_from_args(args, AppConfig.load_from_env())
    logger.configure(enabled=config.enable_json_logs)

    return run(config, StdinLineSource(), StdoutConsoleSink())


if __name__ == "__main__":
    sys.exit(main())
