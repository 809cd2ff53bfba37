"""
main.py - Command Line Entry Point

Road Crack Survey System
========================
Commands:
1. record      - Capture video with GPS sampling, upload and queue it
2. reconstruct - Build the per-second GPS log from a raw fix file
3. process     - Run crack detection on a queued video and write a report
4. list        - Show an owner's recordings
5. delete      - Remove a recording with its stored files

Usage:
    python -m crackscan record --source device --target 0 --seconds 60 --owner user-1
    python -m crackscan reconstruct fixes.csv --duration 120 --output gps_by_second.csv
    python -m crackscan process 6f1c...
    python -m crackscan list --owner user-1 --status Queued
"""

import argparse
import logging
import sys
from pathlib import Path

from .capture_session import CaptureSession, VideoRecorder, SOURCE_TYPES, create_video_source
from .config_loader import config_problems, load_config, reload_config
from .database_manager import DatabaseManager, VideoStatus
from .detector import CrackDetector
from .exceptions import ConfigurationError, CrackScanError
from .gps_manager import LocationSampler, ReplayLocationProvider, load_fix_file
from .logger import setup_logging_from_config
from .storage import LocalBlobStore
from .track_reconstructor import generate_gps_log, reconstruct_track
from .upload_pipeline import UploadPipeline
from .video_processor import VideoProcessor, detections_to_dataframe, generate_csv_report

logger = logging.getLogger(__name__)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def print_banner():
    """Print application banner."""
    banner = """
╔══════════════════════════════════════════════════════════════════╗
║       ROAD CRACK SURVEY SYSTEM                                   ║
║       Capture, Geolocation and Detection Pipeline v1.0           ║
╚══════════════════════════════════════════════════════════════════╝
    """
    print(banner)


def print_config(config: dict):
    """Print the effective storage and detection configuration."""
    print("\n" + "=" * 60)
    print("CONFIGURATION")
    print("=" * 60)
    print(f"  Storage Root: {config['paths']['storage_root']}")
    print(f"  Database:     {config['paths']['db_path']}")
    print(f"  Endpoint:     {config['detection']['endpoint']}")
    print(f"  Extract FPS:  {config['extraction']['fps']}")
    print(f"  GPS Window:   ±{config['matching']['tolerance_seconds']}s")
    print("=" * 60)


def open_stores(config: dict):
    """Create the blob store and record store from config paths."""
    paths = config['paths']
    return LocalBlobStore(paths['storage_root']), DatabaseManager(paths['db_path'])


# =============================================================================
# COMMANDS
# =============================================================================

def cmd_record(args, config) -> int:
    blob_store, db = open_stores(config)

    provider = ReplayLocationProvider.from_file(args.gps_replay) if args.gps_replay else None
    sampler = LocationSampler.from_config(provider, config)

    source = create_video_source(args.source, args.target)
    source.open()
    try:
        session = CaptureSession(source, VideoRecorder.from_config(config), sampler)
        print(f"\n[Record] Source: {source.describe()}")
        if not session.start():
            print(f"  [WARNING] Recording without GPS: {sampler.error_message}")
        if args.seconds is None:
            print("  Press Ctrl-C to stop recording")
        result = session.run(max_seconds=args.seconds)
    finally:
        source.dispose()

    print(f"  [OK] {result.duration_seconds}s recorded, {result.size_bytes} bytes, "
          f"{len(result.fixes)} GPS fixes")

    pipeline = UploadPipeline.from_config(blob_store, db, args.owner, config)
    record = pipeline.upload(result.chunks, result.duration_seconds, result.fixes)

    print("\n" + "=" * 60)
    print("RECORDING QUEUED")
    print("=" * 60)
    print(f"  Video ID: {record.id}")
    print(f"  Video:    {record.video_location}")
    print(f"  GPS Log:  {record.gps_log_location}")
    print(f"  Status:   {record.status.value}")
    return 0


def cmd_reconstruct(args, config) -> int:
    fixes = load_fix_file(args.fixes_file)
    track = reconstruct_track(fixes, args.duration)
    content = generate_gps_log(track)

    if args.output:
        output = Path(args.output)
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(content, encoding='utf-8')
        print(f"[Reconstruct] {len(fixes)} fixes -> {len(track)} seconds written to {output}")
    else:
        sys.stdout.write(content)
    return 0


def cmd_process(args, config) -> int:
    print_config(config)
    blob_store, db = open_stores(config)
    detector = CrackDetector.from_config(config)
    processor = VideoProcessor.from_config(blob_store, db, detector, config)

    print(f"\n[Process] Video {args.video_id}")
    result = processor.process(args.video_id)

    reports_dir = Path(args.output or config['paths']['reports_dir'])
    report_path = reports_dir / f"report_{result.video_id}.csv"
    generate_csv_report(result.detections, report_path)

    df = detections_to_dataframe(result.detections)
    if not df.empty:
        print("\n" + df.to_string(index=False))

    print("\n" + "=" * 60)
    print("PROCESSING COMPLETE")
    print("=" * 60)
    print(f"  Frames:       {result.frames_extracted}")
    print(f"  With GPS:     {result.frames_with_gps}")
    print(f"  Crack Frames: {result.crack_frames}")
    print(f"  Failed:       {result.failed_frames}")
    print(f"  Time:         {result.processing_time_seconds:.1f}s")
    print(f"  Report:       {report_path}")
    return 0


def cmd_list(args, config) -> int:
    _, db = open_stores(config)
    status = VideoStatus(args.status) if args.status else None
    records = db.get_videos(args.owner, status)

    if not records:
        print(f"No videos for owner '{args.owner}'")
        return 0

    for record in records:
        print(f"{record.id}  {record.status.value:<9}  {record.created_at}  {record.video_location}")
    return 0


def cmd_delete(args, config) -> int:
    blob_store, db = open_stores(config)
    record = db.get_video(args.video_id)
    if record is None:
        print(f"[ERROR] Video not found: {args.video_id}")
        return 1

    UploadPipeline.from_config(blob_store, db, record.owner_id, config).delete_video(record)
    print(f"[Delete] Video {record.id} removed")
    return 0


# =============================================================================
# MAIN FUNCTION
# =============================================================================

def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="crackscan",
        description="Road Crack Survey - capture, geolocate and detect",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m crackscan record --source file --target drive.mp4 --owner user-1
  python -m crackscan reconstruct fixes.json --duration 90
  python -m crackscan process <video-id>
  python -m crackscan list --owner user-1
        """
    )
    parser.add_argument(
        '--config', '-c',
        type=Path,
        default=None,
        help="Path to config.yaml (default: project root config.yaml)"
    )

    commands = parser.add_subparsers(dest='command', required=True)

    record = commands.add_parser('record', help="Record, upload and queue a video")
    record.add_argument('--source', choices=sorted(SOURCE_TYPES), default='device')
    record.add_argument('--target', default='0', help="Device index, stream URL or file path")
    record.add_argument('--seconds', type=float, default=None, help="Stop after this many seconds")
    record.add_argument('--owner', required=True, help="Owner id for the uploaded recording")
    record.add_argument('--gps-replay', type=Path, default=None,
                        help="CSV/JSON fix file to replay as the location source")
    record.set_defaults(handler=cmd_record)

    reconstruct = commands.add_parser('reconstruct', help="Build a per-second GPS log")
    reconstruct.add_argument('fixes_file', type=Path)
    reconstruct.add_argument('--duration', type=int, required=True)
    reconstruct.add_argument('--output', '-o', type=Path, default=None)
    reconstruct.set_defaults(handler=cmd_reconstruct)

    process = commands.add_parser('process', help="Run detection on a queued video")
    process.add_argument('video_id')
    process.add_argument('--output', '-o', type=Path, default=None, help="Report directory")
    process.set_defaults(handler=cmd_process)

    list_parser = commands.add_parser('list', help="List an owner's videos")
    list_parser.add_argument('--owner', required=True)
    list_parser.add_argument('--status', choices=[s.value for s in VideoStatus], default=None)
    list_parser.set_defaults(handler=cmd_list)

    delete = commands.add_parser('delete', help="Delete a video and its files")
    delete.add_argument('video_id')
    delete.set_defaults(handler=cmd_delete)

    return parser.parse_args(argv)


def main(argv=None) -> int:
    """
    Main entry point.

    Returns:
        0 on success, 1 on any pipeline error
    """
    args = parse_arguments(argv)
    try:
        config = reload_config(args.config) if args.config else load_config()
    except ConfigurationError as e:
        print(f"\n[FATAL] {e}")
        return 1
    setup_logging_from_config(config)

    if args.command in ('record', 'process'):
        print_banner()

    try:
        problems = config_problems(config)
        if problems:
            raise ConfigurationError("Invalid configuration: " + "; ".join(problems))
        return args.handler(args, config)
    except CrackScanError as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"\n[FATAL] {e}")
        return 1
    except KeyboardInterrupt:
        print("\n\n[INTERRUPTED] Cancelled by user.")
        return 1


# =============================================================================
# ENTRY POINT
# =============================================================================
if __name__ == "__main__":
    sys.exit(main())
