"""
Command-line interface for fwflash.

This module provides the `fwflash` CLI tool: a terminal front-end for the
build/flash orchestrator.
"""

import argparse
import json
import sys
from dataclasses import dataclass
from typing import Optional

from fwflash import __version__
from fwflash.cli_utils import BannerFormatter, ErrorFormatter, ResultFormatter
from fwflash.config import OrchestratorConfig
from fwflash.log import setup_logging
from fwflash.orchestrator import (
    BuildProfile,
    DuplicateTargetError,
    EnvironmentResolver,
    JobController,
    JobRequest,
    RepositoryDescriptor,
)
from fwflash.orchestrator.environment import PATH_SEPARATORS
from fwflash.orchestrator.ports import list_serial_ports

DEFAULT_REPOSITORY = RepositoryDescriptor(
    clone_url="https://github.com/AlessandroAU/ExpressLRS",
    url="https://github.com/AlessandroAU/ExpressLRS",
    owner="AlessandroAU",
    repository_name="ExpressLRS",
)


@dataclass
class RunArgs:
    """Arguments for the run command."""

    environment: str
    target: Optional[str] = None
    revision: str = "master"
    repository: Optional[str] = None
    flash: bool = False
    port: Optional[str] = None
    project_dir: str = "src"
    json_output: bool = False
    verbose: bool = False


@dataclass
class EnvArgs:
    """Arguments for the env command."""

    platform: Optional[str] = None


def _repository_from_url(url: Optional[str]) -> RepositoryDescriptor:
    if not url:
        return DEFAULT_REPOSITORY
    parts = url.rstrip("/").split("/")
    name = parts[-1][:-4] if parts[-1].endswith(".git") else parts[-1]
    owner = parts[-2] if len(parts) >= 2 else ""
    return RepositoryDescriptor(clone_url=url, url=url, owner=owner, repository_name=name)


def run_command(args: RunArgs, config: Optional[OrchestratorConfig] = None) -> None:
    """Build firmware for a target and optionally flash it.

    Examples:
        fwflash run -e DIY_2400_RX_ESP8285_SX1280                 # Build
        fwflash run -e DIY_2400_RX_ESP8285_SX1280 -r 1.0.0        # Build a tag
        fwflash run -e DIY_2400_RX_ESP8285_SX1280 --flash -p COM3 # Build and flash
    """
    config = config or OrchestratorConfig.from_environment()
    setup_logging(config.logs_dir, console=args.verbose, verbose=args.verbose)

    request = JobRequest(
        target=args.target or args.environment,
        repository=_repository_from_url(args.repository),
        revision=args.revision,
        profile=BuildProfile.platformio(args.environment, args.project_dir),
        flash=args.flash,
        flash_port=args.port,
    )

    if not args.json_output:
        print(f"fwflash v{__version__}")
        print(f"Target: {request.target}  Revision: {request.revision}  Flash: {'yes' if request.flash else 'no'}")
        print()

    controller = JobController(config)
    try:
        handle = controller.submit(request)
    except DuplicateTargetError as e:
        ErrorFormatter.print_error("Target busy", str(e))
        sys.exit(1)

    try:
        try:
            for event in handle.subscribe():
                if args.json_output:
                    print(json.dumps(event.to_dict()), flush=True)
                else:
                    print(ResultFormatter.format_event(event), flush=True)
            result = handle.wait()
        except KeyboardInterrupt:
            handle.cancel()
            ErrorFormatter.handle_keyboard_interrupt()

        if args.json_output:
            print(json.dumps(result.to_dict()))
        elif result.success:
            ErrorFormatter.print_success("Job successful!")
            print(BannerFormatter.format_banner(ResultFormatter.format_result(result), center=False))
        else:
            ErrorFormatter.print_error("Job failed!", ResultFormatter.format_result(result))
        sys.exit(0 if result.success else 1)
    finally:
        if handle.state.is_terminal:
            handle.release()


def env_command(args: EnvArgs, config: Optional[OrchestratorConfig] = None) -> None:
    """Show the environment jobs run with.

    Examples:
        fwflash env                   # Running platform
        fwflash env --platform win32  # As resolved on Windows
    """
    config = config or OrchestratorConfig.from_environment()
    resolver = EnvironmentResolver(config.dependencies_dir, config.user_data_path)
    context = resolver.resolve(args.platform)

    print(f"Platform:        {context.platform}")
    print(f"Firmwares:       {context.firmwares_path}")
    print(f"Toolchain state: {context.toolchain_state_path}")
    print("PATH:")
    separator = PATH_SEPARATORS.get(context.platform, ":")
    for entry in context.path.split(separator):
        print(f"  {entry}")
    sys.exit(0)


def ports_command() -> None:
    """List serial ports that can be used for flashing."""
    ports = list_serial_ports()
    if not ports:
        print("No serial ports found")
        sys.exit(1)
    for device, description in ports:
        print(f"{device}\t{description}")
    sys.exit(0)


def main() -> None:
    """fwflash - build and flash embedded firmware from git."""
    parser = argparse.ArgumentParser(
        prog="fwflash",
        description="fwflash - build and flash embedded firmware from git",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"fwflash {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Run command
    run_parser = subparsers.add_parser(
        "run",
        help="Build firmware and optionally flash it",
    )
    run_parser.add_argument(
        "-e",
        "--environment",
        required=True,
        help="PlatformIO environment to build",
    )
    run_parser.add_argument(
        "-t",
        "--target",
        default=None,
        help="Target identifier that serializes jobs (default: environment)",
    )
    run_parser.add_argument(
        "-r",
        "--revision",
        default="master",
        help="Branch, tag or commit to build (default: master)",
    )
    run_parser.add_argument(
        "--repository",
        default=None,
        help=f"Clone URL (default: {DEFAULT_REPOSITORY.clone_url})",
    )
    run_parser.add_argument(
        "-d",
        "--project-dir",
        default="src",
        help="PlatformIO project directory inside the repository (default: src)",
    )
    run_parser.add_argument(
        "-f",
        "--flash",
        action="store_true",
        help="Flash the firmware after a successful build",
    )
    run_parser.add_argument(
        "-p",
        "--port",
        default=None,
        help="Device path to flash (default: auto-detect)",
    )
    run_parser.add_argument(
        "--json",
        action="store_true",
        dest="json_output",
        help="Print events and the result as JSON lines",
    )
    run_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show orchestrator logs on the console",
    )

    # Env command
    env_parser = subparsers.add_parser(
        "env",
        help="Show the resolved toolchain environment",
    )
    env_parser.add_argument(
        "--platform",
        default=None,
        help="Platform to resolve for (default: running platform)",
    )

    # Ports command
    subparsers.add_parser(
        "ports",
        help="List serial ports",
    )

    parsed_args = parser.parse_args()

    if not parsed_args.command:
        parser.print_help()
        sys.exit(0)

    try:
        if parsed_args.command == "run":
            run_command(
                RunArgs(
                    environment=parsed_args.environment,
                    target=parsed_args.target,
                    revision=parsed_args.revision,
                    repository=parsed_args.repository,
                    flash=parsed_args.flash,
                    port=parsed_args.port,
                    project_dir=parsed_args.project_dir,
                    json_output=parsed_args.json_output,
                    verbose=parsed_args.verbose,
                )
            )
        elif parsed_args.command == "env":
            env_command(EnvArgs(platform=parsed_args.platform))
        elif parsed_args.command == "ports":
            ports_command()
    except PermissionError as e:
        ErrorFormatter.handle_permission_error(e)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, getattr(parsed_args, "verbose", False))


if __name__ == "__main__":
    main()
