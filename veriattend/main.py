#!/usr/bin/env python3
"""
VeriAttend command line entry point.
Registers members, runs live attendance sessions and reports on history.
"""
import argparse
import json
import signal
import sys
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Optional

from veriattend import __version__
from veriattend.attendance.coordinator import AttendanceCoordinator
from veriattend.attendance.storage import JsonFileStore
from veriattend.utils.config import config, get_config_summary, validate_config
from veriattend.utils.logger import logger


def _build_coordinator(with_vision: bool = False, camera_id: Optional[int] = None) -> AttendanceCoordinator:
    config.create_directories()
    store = JsonFileStore(config.storage.data_dir, config.storage.key_prefix)

    camera = detector = None
    if with_vision:
        # face_recognition is an optional extra; only live capture needs it
        from veriattend.camera.stream_handler import CameraStream
        from veriattend.recognition.face_detector import FaceDetector
        camera = CameraStream(camera_id)
        detector = FaceDetector()

    return AttendanceCoordinator(store=store, camera=camera, detector=detector)


def _print_result(result) -> int:
    prefix = "OK" if result.success else "ERROR"
    print(f"[{prefix}] {result.message}")
    return 0 if result.success else 1


def _format_time(value: Optional[datetime]) -> str:
    return value.strftime('%Y-%m-%d %H:%M:%S') if value else '-'


def cmd_register(args) -> int:
    descriptor = None
    if args.image:
        if not Path(args.image).exists():
            print(f"Error: image does not exist: {args.image}")
            return 1
        from veriattend.recognition.face_detector import FaceDetector
        descriptor = FaceDetector().encode_image(args.image)
        if descriptor is None:
            print(f"Error: no face found in {args.image}")
            return 1

    coordinator = _build_coordinator()
    result = coordinator.register_member(
        name=args.name,
        role=args.role,
        matric_number=args.matric,
        password=args.password,
        avatar_ref=args.avatar or args.image,
        face_descriptor=descriptor,
    )
    if result.success:
        print(f"Member id: {result.data.id}")
    return _print_result(result)


class LiveSessionRunner:
    """Drives one headless live session until interrupted."""

    def __init__(self, coordinator: AttendanceCoordinator, exit_after: Optional[float],
                 duration: Optional[float], report_dir: Optional[str]):
        self.coordinator = coordinator
        self.exit_after = exit_after
        self.duration = duration
        self.report_dir = report_dir
        self.stop_event = threading.Event()
        self._seen = set()

        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame):
        logger.info(f"Received signal {signum}, ending session")
        self.stop_event.set()

    def _print_new_events(self):
        session = self.coordinator.current_session
        if session is None:
            return
        for attendee in reversed(session.attendees):
            key = (attendee.member_id, attendee.exit_time is not None)
            if key in self._seen:
                continue
            self._seen.add(key)
            if attendee.exit_time:
                print(f"  EXIT    {attendee.name:<25} {_format_time(attendee.exit_time)}")
            else:
                print(f"  ARRIVAL {attendee.name:<25} {_format_time(attendee.arrival_time)} "
                      f"({attendee.status.value})")

    def run(self, resume: bool = False) -> int:
        if resume and self.coordinator.current_session is not None:
            result = self.coordinator.resume_detection()
        else:
            result = self.coordinator.start_session()
        if not result.success:
            return _print_result(result)

        print(f"Session {self.coordinator.current_session.id} running. Press Ctrl+C to end.")
        started = time.time()
        exit_scan_started = False

        try:
            while not self.stop_event.wait(1.0):
                self._print_new_events()
                elapsed_minutes = (time.time() - started) / 60.0

                if (self.exit_after is not None and not exit_scan_started
                        and elapsed_minutes >= self.exit_after):
                    exit_scan_started = True
                    _print_result(self.coordinator.start_exit_scan())

                if self.duration is not None and elapsed_minutes >= self.duration:
                    break
        finally:
            self._print_new_events()
            ended = self.coordinator.end_session()

        _print_result(ended)
        if ended.success and self.report_dir:
            filename = f"attendance_{ended.data.start_time.strftime('%Y%m%d_%H%M%S')}.xlsx"
            _print_result(self.coordinator.export_session(
                str(Path(self.report_dir) / filename), ended.data.id
            ))
        return 0 if ended.success else 1


def cmd_run(args) -> int:
    print("=" * 60)
    print("VeriAttend live session")
    print("=" * 60)
    print(f"Camera: {config.camera.device_id if args.camera is None else args.camera}")
    print(f"Face model: {config.face.model} (tolerance {config.face.tolerance})")
    print(f"Late after: {config.session.late_threshold_minutes} minutes")
    print(f"Poll interval: {config.session.poll_interval_seconds}s")
    print(f"Data directory: {config.storage.data_dir}")
    print("=" * 60)

    logger.info(f"Configuration: {get_config_summary()}")
    coordinator = _build_coordinator(with_vision=True, camera_id=args.camera)
    report_dir = None if args.no_report else str(Path(config.logging.output_dir) / "reports")
    runner = LiveSessionRunner(coordinator, args.exit_after, args.duration, report_dir)
    try:
        return runner.run(resume=args.resume)
    finally:
        coordinator.shutdown()


def cmd_history(args) -> int:
    coordinator = _build_coordinator()
    sessions = coordinator.session_history[:args.limit]
    if not sessions:
        print("No sessions recorded yet.")
        return 0

    for session in sessions:
        late = sum(1 for a in session.attendees if a.status.value == "Late")
        print(f"{session.id}  {_format_time(session.start_time)} -> {_format_time(session.end_time)}  "
              f"{len(session.attendees)} attendees ({late} late)")
        if args.attendees:
            for attendee in session.attendees:
                print(f"    {attendee.name:<25} {attendee.matric_number or '-':<15} "
                      f"{_format_time(attendee.arrival_time)}  {attendee.status.value:<8} "
                      f"exit {_format_time(attendee.exit_time)}")
    return 0


def cmd_export(args) -> int:
    coordinator = _build_coordinator()
    output = args.output
    if not output:
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        output = str(Path(config.logging.output_dir) / "reports" / f"attendance_report_{timestamp}.xlsx")
    return _print_result(coordinator.export_session(output, args.session_id))


def cmd_analyze(args) -> int:
    coordinator = _build_coordinator()
    result = coordinator.analyze(args.query, args.session_id)
    if result.success:
        print(result.data)
    return _print_result(result)


def cmd_member_summary(args) -> int:
    coordinator = _build_coordinator()
    member = coordinator.registry.find_by_id(args.member)
    if member is None:
        member = coordinator.registry.find_by_credentials(args.member, args.role)
    if member is None:
        print(f"Error: no member matches {args.member}")
        return 1

    result = coordinator.member_summary(member.id, args.recent)
    if result.success:
        print(json.dumps(result.data.to_dict(), indent=2))
    return _print_result(result)


def main(argv=None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="veriattend",
        description="VeriAttend face recognition attendance",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  veriattend register --name "Ada Obi" --role student --matric CSC/001 --image ada.jpg
  veriattend run --exit-after 45              # Switch to exit scan after 45 minutes
  veriattend history --limit 5 --attendees
  veriattend export --output report.xlsx
  veriattend analyze "Who was late most often?"
  veriattend member-summary CSC/001
        """
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument("--show-config", action="store_true", help="Print the effective configuration")
    subparsers = parser.add_subparsers(dest="command")

    register = subparsers.add_parser("register", help="Register a member")
    register.add_argument("--name", required=True)
    register.add_argument("--role", default="student", choices=["student", "staff", "admin"])
    register.add_argument("--matric", help="Matric number (required for students and staff)")
    register.add_argument("--password", help="Login password")
    register.add_argument("--image", help="Photo used to capture the face descriptor")
    register.add_argument("--avatar", help="Avatar reference stored with the member")
    register.set_defaults(func=cmd_register)

    run = subparsers.add_parser("run", help="Run a live attendance session")
    run.add_argument("--camera", "-c", type=int, help="Camera device ID")
    run.add_argument("--exit-after", type=float, help="Minutes before switching to exit scanning")
    run.add_argument("--duration", type=float, help="Minutes before ending the session")
    run.add_argument("--resume", action="store_true", help="Resume a persisted live session")
    run.add_argument("--no-report", action="store_true", help="Skip the report written on session end")
    run.set_defaults(func=cmd_run)

    history = subparsers.add_parser("history", help="List closed sessions")
    history.add_argument("--limit", type=int, default=10)
    history.add_argument("--attendees", "-a", action="store_true", help="Show attendees")
    history.set_defaults(func=cmd_history)

    export = subparsers.add_parser("export", help="Export a closed session report")
    export.add_argument("--session-id", help="Defaults to the most recent session")
    export.add_argument("--output", "-o", help="Target .xlsx or .csv file")
    export.set_defaults(func=cmd_export)

    analyze = subparsers.add_parser("analyze", help="Ask a question about attendance data")
    analyze.add_argument("query")
    analyze.add_argument("--session-id", help="Defaults to the live or most recent session")
    analyze.set_defaults(func=cmd_analyze)

    summary = subparsers.add_parser("member-summary", help="Attendance summary for one member")
    summary.add_argument("member", help="Member id or matric number")
    summary.add_argument("--role", default="student", choices=["student", "staff"])
    summary.add_argument("--recent", type=int, default=5)
    summary.set_defaults(func=cmd_member_summary)

    args = parser.parse_args(argv)
    if args.show_config:
        print(json.dumps(config.get_effective_config(), indent=2, default=str))
        if not args.command:
            return 0 if validate_config() else 1
    if not args.command:
        parser.print_help()
        return 1

    if args.verbose:
        config.logging.log_level = "DEBUG"
        logger.set_level("DEBUG")

    try:
        return args.func(args)
    except KeyboardInterrupt:
        print("\nInterrupted")
        return 130
    except Exception as e:
        logger.error(f"Command {args.command} failed: {e}")
        return 1
    finally:
        logger.shutdown()


if __name__ == "__main__":
    sys.exit(main())
