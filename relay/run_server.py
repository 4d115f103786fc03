import argparse
import asyncio
import logging
import os
import signal
from urllib.parse import urlparse

from .channels import ChannelStore
from .database import PersistenceSync, RelayDB
from .fanout import FanoutEngine
from .http_api import ApiRouter, ApiServer
from .identity import IdentityStore
from .server import RelayServer
from .service import RelayService
from .sessions import SessionRegistry


def _parse_bind(bind_uri: str) -> tuple[str, int]:
    # Accept ws://host:port, host:port or a bare port
    if bind_uri.startswith("ws://") or bind_uri.startswith("wss://") or bind_uri.startswith("http://"):
        p = urlparse(bind_uri)
        return p.hostname or "127.0.0.1", int(p.port or 8765)
    if ":" in bind_uri:
        host, port = bind_uri.rsplit(":", 1)
        return host or "0.0.0.0", int(port)
    return "0.0.0.0", int(bind_uri)


def build_service(db: RelayDB) -> tuple[RelayService, PersistenceSync]:
    state = db.load()
    identity = IdentityStore(state.users)
    channels = ChannelStore(state.rooms, state.threads)
    sessions = SessionRegistry()
    engine = FanoutEngine(identity, channels, sessions)
    persistence = PersistenceSync(db, version=state.version)
    return RelayService(identity, channels, engine, persistence), persistence


async def _status_loop(service: RelayService, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        sessions = service.engine.sessions
        logging.info("Connections: %d", len(sessions))
        logging.info("Online users: %s", sorted(sessions.connected_user_ids()))


async def _run(args) -> None:
    service, persistence = build_service(RelayDB(args.db))
    persistence.start()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows may not support SIGTERM
            pass

    api = None
    if args.http and args.http.lower() != "off":
        http_host, http_port = _parse_bind(args.http)
        api = ApiServer(ApiRouter(service), http_host, http_port)
        api.start(loop)

    status_task = asyncio.create_task(_status_loop(service, args.status_interval))
    host, port = _parse_bind(args.bind)
    try:
        await RelayServer(service).serve(host, port, stop)
    finally:
        status_task.cancel()
        if api:
            api.stop()
        await persistence.stop()
        logging.info("Relay shutdown complete (snapshot v%s)", persistence.written_version)


def main():
    parser = argparse.ArgumentParser(description="Realtime chat relay server")
    parser.add_argument(
        "--bind",
        default=os.getenv("BIND", "ws://127.0.0.1:8765"),
        help="WebSocket bind address ws://host:port",
    )
    parser.add_argument(
        "--http",
        default=os.getenv("HTTP_BIND", "127.0.0.1:8080"),
        help="Bind address for the HTTP API (host:port), or 'off' to disable",
    )
    parser.add_argument(
        "--db",
        default=os.getenv("RELAY_DB", "relay.db"),
        help="SQLite file holding the durable snapshot",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (DEBUG, INFO, WARNING, ...)",
    )
    parser.add_argument(
        "--status-interval",
        type=float,
        default=float(os.getenv("STATUS_INTERVAL", "20")),
        help="Seconds between status log lines",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )
    try:
        asyncio.run(_run(args))
    except KeyboardInterrupt:
        logging.info("Shutting down")


if __name__ == "__main__":
    main()
