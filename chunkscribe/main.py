"""Command line entry point for chunkscribe."""

import sys
import time
import argparse
import logging
from pathlib import Path

from aiohttp import web
from rich.console import Console
from rich.panel import Panel

from .client import CaptureController, CaptureState, HttpSessionApi, LocalSessionApi, SessionEventPublisher
from .config import ChunkscribeConfig
from .server import TranscriptionSessionService
from .server.web import create_app

logger = logging.getLogger(__name__)

console = Console()


def setup_logging(config, level: str = "INFO") -> None:
    """Set up logging configuration from YAML config."""
    log_file_path = config.get('logging.file_path', 'data/logs/chunkscribe.log')
    console_output = config.get('logging.console_output', True)

    log_dir = Path(log_file_path).parent
    log_dir.mkdir(parents=True, exist_ok=True)

    handlers = []

    # File handler - always write to file
    file_handler = logging.FileHandler(log_file_path)
    file_handler.setLevel(logging.DEBUG)
    file_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(threadName)s - %(funcName)s:%(lineno)d - %(message)s'
    )
    file_handler.setFormatter(file_formatter)
    handlers.append(file_handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.WARNING)  # Only show warnings and above on console
        console_formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        console_handler.setFormatter(console_formatter)
        handlers.append(console_handler)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    logger.info("=" * 50)
    logger.info("chunkscribe starting up")
    logger.info(f"Log file: {log_file_path}")
    logger.info(f"Log level set to: {level}")
    logger.info("=" * 50)


def serve(config: ChunkscribeConfig, host: str = None, port: int = None) -> None:
    service = TranscriptionSessionService.from_config(config)
    app = create_app(service, owner_header=config.get('server.owner_header', 'X-Owner-Id'))
    host = host or config.get('server.host', '127.0.0.1')
    port = port or int(config.get('server.port', 8080))
    logger.info(f"Serving session API on http://{host}:{port}")
    console.print(f"[bold green]chunkscribe[/] listening on http://{host}:{port}")
    web.run_app(app, host=host, port=port, print=None)


def _capture_factory(config):
    from .audio.capture import AudioCapture

    def factory(callback):
        return AudioCapture(
            callback=callback,
            sample_rate=int(config.get('audio.sample_rate', 16000)),
            frames_per_buffer=int(config.get('audio.frames_per_buffer', 1024)),
            channels=int(config.get('audio.channels', 1)),
        )
    return factory


def record(config: ChunkscribeConfig, duration: float = None, local: bool = False) -> int:
    service = None
    if local:
        service = TranscriptionSessionService.from_config(config)
        api = LocalSessionApi(service, config.get('client.owner_id', 'local'))
    else:
        api = HttpSessionApi.from_config(config)

    publisher = SessionEventPublisher()

    def on_session_event(event):
        if event.event_type == "chunk":
            console.print(f"[dim]chunk {event.metadata.get('sequence_number')} "
                          f"({event.metadata.get('duration_seconds', 0.0):.1f}s) queued[/]")
        else:
            console.print(f"[cyan]{event.event_type}[/] {event.session_id or ''}")

    publisher.subscribe(on_session_event)
    controller = CaptureController.from_config(config, api, _capture_factory(config), publisher)

    try:
        session_id = controller.start()
        console.print(f"[bold red]Recording[/] session {session_id} (Ctrl+C to stop)")
        deadline = time.time() + duration if duration else None
        while controller.state in (CaptureState.RECORDING, CaptureState.PAUSED):
            if deadline and time.time() >= deadline:
                break
            time.sleep(0.2)
    except KeyboardInterrupt:
        console.print("\nStopping...")
    except Exception as e:
        console.print(f"[bold red]Error:[/] {e}")
        logger.error(f"Recording failed: {e}", exc_info=True)
        if service is not None:
            service.shutdown()
        return 1

    try:
        if controller.state in (CaptureState.RECORDING, CaptureState.PAUSED):
            controller.stop()
        else:
            controller.wait_for_auto_stop()
        if controller.state is not CaptureState.COMPLETED or controller.result is None:
            console.print(f"[bold red]Recording ended as {controller.state.value}[/]")
            return 1
        console.print(Panel(controller.result.transcript.strip() or "(no speech detected)",
                            title=f"Transcript {controller.session_id}"))
        if controller.result.failed_parts:
            console.print(f"[yellow]{len(controller.result.failed_parts)} parts could not be transcribed[/]")
        return 0
    except Exception as e:
        console.print(f"[bold red]Finalize failed:[/] {e}")
        logger.error(f"Finalize failed: {e}", exc_info=True)
        return 1
    finally:
        if service is not None:
            service.shutdown()


def main() -> None:
    """Main entry point for chunkscribe."""
    parser = argparse.ArgumentParser(
        description="chunkscribe - long-form recording with chunked upload and ordered transcription"
    )
    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration YAML file (default: built-in defaults)"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (default: logging.level from config)"
    )
    parser.add_argument(
        "--version",
        action="version",
        version="chunkscribe v0.1.0"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the session HTTP server")
    serve_parser.add_argument("--host", type=str, help="Bind address (overrides server.host)")
    serve_parser.add_argument("--port", type=int, help="Port (overrides server.port)")

    record_parser = subparsers.add_parser("record", help="Record from the microphone and print the transcript")
    record_parser.add_argument(
        "--duration",
        type=float,
        help="Stop automatically after this many seconds"
    )
    record_parser.add_argument(
        "--local",
        action="store_true",
        help="Transcribe in-process instead of uploading to client.base_url"
    )

    args = parser.parse_args()

    try:
        config = ChunkscribeConfig(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    setup_logging(config, args.log_level or config.get('logging.level', 'INFO'))

    if args.command == "serve":
        serve(config, args.host, args.port)
    elif args.command == "record":
        sys.exit(record(config, args.duration, args.local))


if __name__ == "__main__":
    main()
