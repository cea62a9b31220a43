"""Command line interface for running single lifecycle operations."""
from __future__ import annotations

from argparse import ArgumentParser, Namespace
from pathlib import Path
from typing import Iterable, Tuple
import sys

from core.command_runner import RecordingCommandRunner
from core.config_loader import load_config_files, parse_assignment
from core.errors import ScriptError

from .config import TEXT_OPTIONS, Config, ResourceKind, parse_level
from .lifecycle import LifecycleSequencer, Operation, ResourceState
from .logging_config import configure_logging
from .process import ScriptRunner

# Operations the resource layer only invokes on resources it already tracks.
_ASSUMES_PRESENT = (Operation.UPDATE, Operation.DELETE)


def _parse_arguments(argv: Iterable[str]) -> Namespace:
    parser = ArgumentParser(
        prog="script-provider",
        description="Manage an external resource through user supplied commands",
    )
    parser.add_argument(
        "-c",
        "--config",
        dest="config_files",
        action="append",
        type=Path,
        default=[],
        help="Configuration file (.toml, .json, .yaml); may be repeated, later files win",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Override a single configuration option",
    )
    parser.add_argument(
        "--kind",
        default=None,
        help="Resource variant: script_crd, script_crde, script_crud or script_crude",
    )
    parser.add_argument(
        "--dry-run",
        "-n",
        action="store_true",
        help="Print the commands instead of running them",
    )
    parser.add_argument("--log-level", default=None, help="Override the configured log_level")
    parser.add_argument(
        "--log-format",
        choices=["json", "text"],
        default=None,
        help="Log output format (default: json unless TF_ACC is set)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("create", help="Run the create command")
    subparsers.add_parser("read", help="Run the read command and print the payload")
    subparsers.add_parser("update", help="Run the update sequence")
    subparsers.add_parser("delete", help="Run the delete command")
    subparsers.add_parser("exists", help="Check whether the resource exists")
    render_parser = subparsers.add_parser("render", help="Print the composed script of an operation")
    render_parser.add_argument("operation", choices=[operation.value for operation in Operation])

    return parser.parse_args(list(argv))


def _load_config(args: Namespace) -> Tuple[Config, ResourceKind | None]:
    data = load_config_files(args.config_files)
    for assignment in args.overrides:
        key, value = parse_assignment(assignment, literal_keys=TEXT_OPTIONS)
        data[key] = value
    file_kind = data.pop("kind", None)
    kind_value = args.kind or file_kind
    kind = ResourceKind.parse(str(kind_value)) if kind_value else None
    return Config.from_mapping(data), kind


def main(argv: Iterable[str] | None = None) -> int:
    args = _parse_arguments(sys.argv[1:] if argv is None else argv)

    try:
        config, kind = _load_config(args)
        level = parse_level(args.log_level, field_name="--log-level") if args.log_level else config.log_level
    except ScriptError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    json_format = None if args.log_format is None else args.log_format == "json"
    configure_logging(level, json_format=json_format)

    if args.command == "render":
        try:
            sequencer = LifecycleSequencer(config, kind=kind)
            print(sequencer.render(Operation(args.operation)))
        except ScriptError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 1
        return 0

    recorder = RecordingCommandRunner() if args.dry_run else None
    operation = Operation(args.command)
    try:
        sequencer = LifecycleSequencer(
            config,
            kind=kind,
            runner=ScriptRunner(config, recorder) if recorder else None,
            state=ResourceState.PRESENT if operation in _ASSUMES_PRESENT else ResourceState.ABSENT,
        )
        return _handle_operation(sequencer, operation)
    except ScriptError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Error: interrupted", file=sys.stderr)
        return 130
    finally:
        if recorder is not None:
            for line in recorder.iter_formatted():
                print(line)


def _handle_operation(sequencer: LifecycleSequencer, operation: Operation) -> int:
    if operation is Operation.CREATE:
        sequencer.create()
    elif operation is Operation.READ:
        observation = sequencer.read()
        if observation.present:
            sys.stdout.write(observation.payload)
    elif operation is Operation.UPDATE:
        sequencer.update()
    elif operation is Operation.DELETE:
        sequencer.delete()
    elif operation is Operation.EXISTS:
        print("true" if sequencer.exists() else "false")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
