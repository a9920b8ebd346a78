"""
Command-line interface for beatcast.
"""

import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from beatcast import __version__
from beatcast.analysis import AnalysisOrchestrator
from beatcast.cancellation import CancellationToken
from beatcast.config import load_config, resolve_event_filter
from beatcast.emitter import EmitterState, RealtimeEmitter
from beatcast.errors import AnalysisCancelled, BeatcastError
from beatcast.events import Category, event_name, events_in_category, is_transport
from beatcast.export import export_timeline
from beatcast.timeline import TimelineBuilder
from beatcast.transport import MulticastTransport

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="beatcast",
        description=(
            "Analyze an audio file and stream its musical feature events over "
            "UDP multicast in real time"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Stream beats and onsets to the default group 239.255.0.1:5000
  beatcast song.wav

  # Stream the primary event set with a 3 second countdown
  beatcast song.flac --primary --preroll 3

  # Pick events explicitly and also send to the default gateway
  beatcast song.wav --events beat,downbeat,key.change,loudness --unicast gateway

  # Analyze only and write the timeline to CSV
  beatcast song.wav --all --dry-run --export-timeline timeline.csv

  # Show every selectable event name
  beatcast --list-events
        """,
    )

    parser.add_argument("input", nargs="?", type=Path, help="Audio file to analyze and stream")
    parser.add_argument("--config", "-c", type=Path, help="YAML config file")

    events = parser.add_argument_group("event selection")
    events.add_argument(
        "--events", "-e",
        help="Comma-separated event names or a preset name (default: beat,onset)",
    )
    events.add_argument("--all", action="store_true", help="Enable every event type")
    events.add_argument(
        "--primary", "--tier1",
        dest="primary",
        action="store_true",
        help="Rhythm, onset, silence and loudness events",
    )
    events.add_argument(
        "--tier2",
        action="store_true",
        help="Primary events plus tonal, pitch, spectral, band and structure events",
    )
    events.add_argument(
        "--list-events", action="store_true", help="List event names by category and exit"
    )

    network = parser.add_argument_group("network")
    network.add_argument("--group", dest="multicast_group", help="Multicast group (default: 239.255.0.1)")
    network.add_argument("--port", "-p", type=int, help="UDP port (default: 5000)")
    network.add_argument("--ttl", type=int, help="Multicast TTL (default: 1)")
    network.add_argument(
        "--no-loopback", dest="loopback", action="store_false", default=None,
        help="Do not loop multicast datagrams back to this host",
    )
    network.add_argument("--interface", help="Outbound interface address (default: 0.0.0.0)")
    network.add_argument(
        "--unicast",
        dest="unicast_target",
        help="Also send to 'gateway', HOST or HOST:PORT",
    )

    analysis = parser.add_argument_group("analysis")
    analysis.add_argument("--sr", dest="sample_rate", type=int, help="Analysis sample rate (default: 44100)")
    analysis.add_argument("--frame-size", type=int, help="Frame size in samples (default: 2048)")
    analysis.add_argument("--hop", dest="hop_size", type=int, help="Hop size in samples (default: 1024)")
    analysis.add_argument(
        "--interval", dest="continuous_interval", type=float,
        help="Minimum seconds between samples of a continuous event (default: 0.1)",
    )
    analysis.add_argument(
        "--position-interval", type=float,
        help="Seconds between track.position heartbeats (default: 1.0)",
    )
    analysis.add_argument("--workers", type=int, help="Analysis passes to run concurrently (default: 1)")

    run = parser.add_argument_group("run")
    run.add_argument("--preroll", dest="preroll_s", type=float, help="Countdown in seconds before playback")
    run.add_argument(
        "--export-timeline", type=Path,
        help="Write the timeline to a .csv, .parquet or .jsonl file",
    )
    run.add_argument("--dry-run", action="store_true", help="Analyze only; do not send anything")
    run.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO)",
    )
    run.add_argument("--version", action="version", version=f"beatcast {__version__}")
    return parser


def _event_selection(args: argparse.Namespace):
    """Filter chosen on the command line, or None to defer to config/defaults."""
    if args.all:
        return resolve_event_filter("all")
    if args.tier2:
        return resolve_event_filter("tier2")
    if args.primary:
        return resolve_event_filter("primary")
    if args.events:
        return resolve_event_filter(args.events)
    return None


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    return {
        "input_file": args.input,
        "enabled_events": _event_selection(args),
        "multicast_group": args.multicast_group,
        "port": args.port,
        "ttl": args.ttl,
        "loopback": args.loopback,
        "interface": args.interface,
        "unicast_target": args.unicast_target,
        "sample_rate": args.sample_rate,
        "frame_size": args.frame_size,
        "hop_size": args.hop_size,
        "continuous_interval": args.continuous_interval,
        "position_interval": args.position_interval,
        "preroll_s": args.preroll_s,
        "workers": args.workers,
    }


def format_event_list() -> List[str]:
    lines = []
    for category in Category:
        names = sorted(event_name(et) for et in events_in_category(category))
        if not names:
            continue
        suffix = " (always on)" if all(is_transport(et) for et in events_in_category(category)) else ""
        lines.append(f"{category.value}{suffix}:")
        lines.extend(f"  {name}" for name in names)
    return lines


def _install_signal_handlers(token: CancellationToken) -> Dict[int, Any]:
    def handler(signum, frame):
        if not token.cancelled:
            logger.warning("Received %s, stopping...", signal.Signals(signum).name)
        token.cancel("user_interrupt")

    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        previous[sig] = signal.signal(sig, handler)
    return previous


def _restore_signal_handlers(previous: Dict[int, Any]) -> None:
    for sig, handler in previous.items():
        signal.signal(sig, handler)


def run(args: argparse.Namespace, token: Optional[CancellationToken] = None) -> int:
    """Analyze, build the timeline and stream it. Returns the exit status."""
    token = token or CancellationToken()
    try:
        cfg = load_config(_overrides(args), config_path=args.config)
    except BeatcastError as e:
        logger.error("Configuration error: %s", e)
        return EXIT_ERROR

    logger.info("beatcast %s", __version__)
    logger.info("Input: %s", cfg.input_file)
    logger.info("Events: %s", ", ".join(sorted(event_name(et) for et in cfg.enabled_events)))

    try:
        results = AnalysisOrchestrator(cfg, token).run()
        timeline = TimelineBuilder(cfg).build(results)
        if args.export_timeline:
            export_timeline(timeline, args.export_timeline)
    except AnalysisCancelled:
        logger.warning("Analysis interrupted")
        return EXIT_INTERRUPTED
    except (BeatcastError, ValueError, OSError) as e:
        logger.error("%s", e)
        return EXIT_ERROR

    if args.dry_run:
        logger.info("Dry run: %d events not sent", len(timeline))
        return EXIT_OK

    try:
        transport = MulticastTransport(cfg)
    except OSError as e:
        logger.error("Cannot open multicast socket: %s", e)
        return EXIT_ERROR

    with transport:
        emitter = RealtimeEmitter(
            transport,
            token,
            preroll_s=cfg.preroll_s,
            source_path=cfg.input_file,
        )
        state = emitter.run(timeline)

    return EXIT_INTERRUPTED if state is EmitterState.ABORTED else EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if args.list_events:
        print("\n".join(format_event_list()))
        return EXIT_OK

    if args.input is None:
        logger.error("no input file specified")
        return EXIT_ERROR

    token = CancellationToken()
    previous = _install_signal_handlers(token)
    try:
        return run(args, token)
    finally:
        _restore_signal_handlers(previous)


if __name__ == "__main__":
    sys.exit(main())
