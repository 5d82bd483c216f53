#!/usr/bin/env python3
"""Main entry point for mpssh."""

from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
import sys
from pathlib import Path

from . import __version__
from .config import MAX_CHILDREN, Config, load_config
from .errors import HostListError
from .executor import RunSummary, Scheduler
from .formatter import OutputFormatter
from .hosts import HostList, load_hosts

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mpssh",
        description="Run a command over ssh on many hosts in parallel",
        epilog="Options may appear anywhere before '--'. Put command words that "
               "start with '-' after '--', e.g. mpssh -f hosts -- ls -la",
    )
    parser.add_argument("command", nargs="*",
                        help="Command to run on every host, or arguments for --script")
    parser.add_argument("-f", "--file", dest="host_file", help="Host list file ('-' for stdin)")
    parser.add_argument("-u", "--user", help="Username to login as")
    parser.add_argument("-p", "--procs", type=int, dest="max_children",
                        help=f"Number of parallel ssh sessions (max {MAX_CHILDREN})")
    parser.add_argument("-d", "--delay", type=float, help="Seconds to wait between ssh launches")
    parser.add_argument("-t", "--timeout", type=int, dest="connect_timeout",
                        help="ssh connect timeout in seconds")
    parser.add_argument("-s", "--no-hostkey-check", action="store_true",
                        help="Disable ssh strict host key check")
    parser.add_argument("-b", "--blind", action="store_true", help="Enable blind mode")
    parser.add_argument("-e", "--exit-code", action="store_true", dest="print_exit",
                        help="Print the return code of each host")
    parser.add_argument("-o", "--outdir", type=Path, help="Output directory")
    parser.add_argument("-l", "--label", help="Only run on hosts with this label")
    parser.add_argument("-r", "--script", type=Path,
                        help="Copy a local script to each host and run it")
    parser.add_argument("-U", "--show-user", action="store_true", help="Prefix output with user@host")
    parser.add_argument("-v", "--verbose", action="store_true", help="Print progress")
    parser.add_argument("--ssh", dest="ssh_path", help="Path of the ssh client")
    parser.add_argument("--config", type=Path, help="Path to YAML defaults file")
    parser.add_argument("--dashboard", action="store_true", help="Run with the TUI dashboard")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def parse_args(parser: argparse.ArgumentParser, argv: list[str]) -> argparse.Namespace:
    """Parse options mixed with command words.

    Everything after the first '--' is taken verbatim as command words.
    """
    if "--" in argv:
        split = argv.index("--")
        argv, words = argv[:split], argv[split + 1:]
    else:
        words = []
    args = parser.parse_intermixed_args(argv)
    args.command = [*args.command, *words]
    return args


def apply_args(config: Config, args: argparse.Namespace) -> Config:
    """Override file defaults with command line options."""
    for name in ("host_file", "user", "max_children", "delay", "connect_timeout",
                 "outdir", "label", "script", "ssh_path"):
        value = getattr(args, name)
        if value is not None:
            setattr(config, name, value)
    for name in ("blind", "print_exit", "verbose", "show_user"):
        if getattr(args, name):
            setattr(config, name, True)
    if args.no_hostkey_check:
        config.host_key_check = False

    if config.script is not None:
        # Positional words are arguments for the script
        config.script_args = list(args.command)
        config.command = None
    elif args.command:
        config.command = " ".join(args.command)
    return config


def print_banner(config: Config, hosts: HostList, children: int) -> None:
    what = f'script "{config.script}"' if config.script else f'"{config.command}"'
    print(f"MPSSH - Mass Parallel Ssh {__version__}\n")
    print(f"  [*] read ({len(hosts)}) hosts from the list")
    if config.label:
        print(f"  [*] only hosts labeled '{config.label}'")
    print(f"  [*] executing {what} as user \"{config.user}\"")
    if not config.host_key_check:
        print("  [*] strict host key check disabled")
    if config.blind:
        print("  [*] blind mode enabled")
    if config.verbose:
        print("  [*] verbose mode enabled")
    if config.outdir:
        print(f"  [*] using output directory : {config.outdir}")
    if config.delay:
        print(f"  [*] delay between launches : {config.delay}s")
    print(f"  [*] spawning {children} parallel ssh sessions\n", flush=True)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parse_args(parser, sys.argv[1:] if argv is None else list(argv))

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="mpssh: %(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    # Load configuration
    try:
        config = apply_args(load_config(args.config), args)
        config.validate()
        if config.source_path:
            logger.debug("Using defaults from %s", config.source_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        parser.error(str(e))

    config.user = config.user or getpass.getuser()
    try:
        hosts = load_hosts(config.host_file, default_user=config.user, label=config.label)
    except HostListError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.dashboard:
        from .dashboard import Dashboard

        app = Dashboard(config, hosts)
        app.run()
        if app.summary is None:
            return 130
        return _exit_code(app.summary)

    print_banner(config, hosts, config.effective_children(len(hosts)))
    return _run_headless(config, hosts)


def _run_headless(config: Config, hosts: HostList) -> int:
    """Run the scheduler with console output."""
    formatter = OutputFormatter(
        hosts,
        blind=config.blind,
        verbose=config.verbose,
        print_exit=config.print_exit,
        show_user=config.show_user,
    )
    scheduler = Scheduler(config, hosts, formatter)

    try:
        summary = asyncio.run(scheduler.run())
    except KeyboardInterrupt:
        print(f"\n  Interrupted. {scheduler.summary.done} hosts processed.", file=sys.stderr)
        return 130

    print(f"\n  Done. {summary.done} hosts processed.")
    if summary.spawn_failures:
        failed = ", ".join(str(host) for host in summary.spawn_failures)
        print(f"  Unable to start ssh for: {failed}", file=sys.stderr)
    return _exit_code(summary)


def _exit_code(summary: RunSummary) -> int:
    return 1 if summary.spawn_failures else 0


if __name__ == "__main__":
    sys.exit(main())
