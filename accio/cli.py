import argparse
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import List, Optional

from werkzeug.serving import make_server

from . import __version__
from .app import create_app
from .config import ServerConfig, load_config
from .errors import StartupConfigurationError
from .hostinfo import local_network_addresses
from .log import configure_logging

logger = logging.getLogger("accio.config")

SHUTDOWN_POLL_SECONDS = 0.5


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="accio",
        description="Share a directory over HTTP for browsing, downloading and uploading.",
    )
    parser.add_argument("path", nargs="?", help="Directory to share (defaults to the current directory)")
    parser.add_argument("-u", "--uploads", dest="uploads_dir", help="Directory that receives uploads")
    parser.add_argument("--host", help="Address to bind (default 0.0.0.0)")
    parser.add_argument("-P", "--port", type=int, help="Port to listen on (default 8080)")
    parser.add_argument("--no-uploads", action="store_true", help="Disable POST /upload")
    parser.add_argument(
        "--password",
        nargs="?",
        const="",
        default=None,
        help="Require a password; without a value a random one is generated",
    )
    parser.add_argument("--allow-ext", action="append", default=[], help="Only show files with this extension")
    parser.add_argument("--deny-ext", action="append", default=[], help="Hide files with this extension")
    parser.add_argument("--allow-path", action="append", default=[], help="Only show this file or directory")
    parser.add_argument("--deny-path", action="append", default=[], help="Hide this file or directory")
    parser.add_argument("--max-upload-mb", type=int, help="Reject request bodies above this size")
    parser.add_argument("--log-dir", help="Also write logs to a rotating file in this directory")
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def _split_values(values: List[str]) -> Optional[List[str]]:
    items = [entry.strip() for value in values for entry in value.split(",") if entry.strip()]
    return items or None


def config_from_args(args: argparse.Namespace) -> ServerConfig:
    password_enabled = None if args.password is None else True
    return load_config(
        base_dir=args.path,
        uploads_dir=args.uploads_dir,
        host=args.host,
        port=args.port,
        uploads_enabled=False if args.no_uploads else None,
        password_enabled=password_enabled,
        password=args.password or None,
        allowed_extensions=_split_values(args.allow_ext),
        denied_extensions=_split_values(args.deny_ext),
        allowed_paths=args.allow_path or None,
        denied_paths=args.deny_path or None,
        max_upload_mb=args.max_upload_mb,
        log_dir=Path(args.log_dir) if args.log_dir else None,
    )


def log_startup_info(config: ServerConfig) -> None:
    logger.info("Serving directory: %s", config.base_dir)
    if config.uploads_enabled:
        logger.info("Uploads directory: %s", config.uploads_dir)
    else:
        logger.info("Uploads: disabled")

    if config.host in {"0.0.0.0", "::"}:
        hosts = ["localhost"] + local_network_addresses()
    else:
        hosts = [config.host]
    for host in hosts:
        display = f"[{host}]" if ":" in host else host
        logger.info("Listening on http://%s:%d/", display, config.port)

    if config.password_enabled:
        if config.password_generated:
            logger.warning("Password protection enabled; generated password: %s", config.password)
        else:
            logger.info("Password protection enabled")


def serve(config: ServerConfig, stop_event: Optional[threading.Event] = None) -> None:
    """Run the threaded server until *stop_event* is set.

    SIGINT and SIGTERM only set the event; the stop sequence runs here, on the
    main thread, and waits for in-flight requests to finish.
    """

    app = create_app(config)
    stop_event = stop_event or threading.Event()
    try:
        server = make_server(config.host, config.port, app, threaded=True)
    except OSError as error:
        raise StartupConfigurationError(f"failed to bind {config.host}:{config.port}: {error}")
    server.daemon_threads = False
    server.block_on_close = True

    def request_stop(signum, frame):
        stop_event.set()

    if threading.current_thread() is threading.main_thread():
        signal.signal(signal.SIGINT, request_stop)
        signal.signal(signal.SIGTERM, request_stop)

    worker = threading.Thread(target=server.serve_forever, name="accio-server")
    worker.start()
    log_startup_info(config)
    try:
        while not stop_event.wait(SHUTDOWN_POLL_SECONDS):
            if not worker.is_alive():
                break
    finally:
        logger.info("Shutting down")
        server.shutdown()
        worker.join()
        server.server_close()
        logger.info("Server stopped")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()
    try:
        config = config_from_args(args)
        serve(config)
    except StartupConfigurationError as error:
        logger.critical("startup_failed error=%s", error)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
