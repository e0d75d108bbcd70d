"""
Main entry point for the apt-update-indicator command-line tool.
"""

# SPDX-License-Identifier: GPL-3.0-or-later

import argparse
import asyncio
import sys
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..config import Config
from ..constants import APP_NAME, APP_VERSION
from ..exceptions import ConfigurationError
from ..filtering import join_entries, split_entries
from ..models import Category, CheckStatus, PackageEntry, StatusKind
from ..presenter import StatusPresenter
from ..update_manager import UpdateManager
from ..utils.logger import set_global_config
from ..utils.state_store import StateStore
from .output import OutputFormatter


class ConsolePresenter(StatusPresenter):
    """Prints what the update manager publishes."""

    def __init__(self, formatter: OutputFormatter, live: bool = False):
        """
        Initialize the presenter.

        Args:
            formatter: Output formatter
            live: Print every change as it happens (watch mode)
        """
        self.formatter = formatter
        self.live = live

    def on_status_changed(self, status: CheckStatus) -> None:
        if self.live:
            self.formatter.status(status)

    def on_category_updated(self, category: Category, entries: List[PackageEntry]) -> None:
        if self.live and (entries or category is Category.UPGRADES):
            self.formatter.category(category, entries)

    def on_last_check_changed(self, last_check: datetime) -> None:
        if self.live:
            self.formatter.info(f"Last check: {self.formatter.format_date(last_check)}")

    def on_notification(self, title: str, lines: List[str]) -> None:
        self.formatter.warning(f"{title}: {', '.join(lines)}")


class IndicatorCLI:
    """Main CLI application class."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize CLI with configuration."""
        self.config = Config(config_path)
        self.state_store = StateStore()
        self.formatter = OutputFormatter()

    def run(self, args: argparse.Namespace) -> int:
        """
        Run the CLI with given arguments.

        Args:
            args: Parsed command line arguments

        Returns:
            Exit code
        """
        self.formatter = OutputFormatter(
            use_color=not args.no_color,
            json_output=args.json
        )

        if getattr(args, 'no_network_check', False):
            self.config.apply_overrides({'check_network': False})

        if args.command in (None, 'check'):
            return asyncio.run(self.cmd_check(args))
        elif args.command == 'list':
            return asyncio.run(self.cmd_check(args, refresh=False))
        elif args.command == 'watch':
            return asyncio.run(self.cmd_watch(args))
        elif args.command == 'apply':
            return asyncio.run(self.cmd_apply(args))
        elif args.command == 'config':
            return self.cmd_config(args)
        else:
            self.formatter.error(f"Unknown command: {args.command}")
            return 1

    def _create_manager(self, live: bool) -> UpdateManager:
        return UpdateManager(
            self.config,
            presenter=ConsolePresenter(self.formatter, live=live),
            state_store=self.state_store,
        )

    async def cmd_check(self, args: argparse.Namespace, refresh: bool = True) -> int:
        """Handle 'check' and 'list' - run one upgrades cycle and report it."""
        manager = self._create_manager(live=False)
        try:
            started = manager.check_now() if refresh else manager.refresh_upgrades()
            if not started:
                self.formatter.error("Could not start the update check")
                return 1
            await manager.wait_until_idle()
            self._report(manager)
        finally:
            await manager.shutdown()
        return 1 if manager.status.is_failure else 0

    async def cmd_watch(self, args: argparse.Namespace) -> int:
        """Handle 'watch' - keep checking on schedule and on package changes."""
        manager = self._create_manager(live=True)
        self.formatter.info(f"{APP_NAME} {APP_VERSION} watching for updates (Ctrl+C to stop)")
        manager.start(initial_delay=args.initial_delay)
        try:
            await asyncio.Event().wait()
        finally:
            await manager.shutdown()
        return 0

    async def cmd_apply(self, args: argparse.Namespace) -> int:
        """Handle 'apply' - launch the update command, then relist upgrades."""
        manager = self._create_manager(live=False)
        try:
            if not manager.apply_updates():
                self.formatter.error("Could not launch the update command")
                return 1
            self.formatter.info("Update command launched")
            await manager.wait_until_idle()
            self._report(manager)
        finally:
            await manager.shutdown()
        return 1 if manager.status.is_failure else 0

    def _report(self, manager: UpdateManager) -> None:
        status = manager.status

        if self.formatter.json_output:
            data: Dict[str, Any] = {
                "status": status.kind.value,
                "count": status.count,
                "last_check": manager.last_check.isoformat() if manager.last_check else None,
            }
            for category in Category:
                data[category.value] = [
                    {"name": entry.name, "version": entry.version}
                    for entry in manager.results(category)
                ]
            self.formatter.output_json(data)
            return

        self.formatter.status(status)
        if status.kind is StatusKind.UPDATES_PENDING:
            upgrades = manager.results(Category.UPGRADES)
            urgent = manager.results(Category.URGENT)
            width = max((len(entry.name) for entry in upgrades), default=0)
            if urgent:
                self.formatter.category(Category.URGENT, urgent, width)
            self.formatter.category(Category.UPGRADES, upgrades, width)

        for category in (Category.NEW, Category.OBSOLETE, Category.RESIDUAL, Category.AUTOREMOVABLE):
            entries = manager.results(category)
            if entries:
                self.formatter.category(category, entries)

        self.formatter.info(f"Last check: {self.formatter.format_date(manager.last_check)}")

    def cmd_config(self, args: argparse.Namespace) -> int:
        """Handle 'config' command - view/modify configuration."""
        if args.action == 'path':
            print(self.config.config_file)
            return 0

        elif args.action == 'get':
            if not args.key:
                if args.json:
                    self.formatter.output_json(self.config.get_all_settings())
                else:
                    self.formatter.header("Configuration")
                    for key, value in self.config.get_all_settings().items():
                        print(f"  {key}: {value}")
                return 0

            if args.key not in self.config.config:
                self.formatter.error(f"Unknown config key: {args.key}")
                return 1
            value = self.config.get(args.key)
            if args.json:
                self.formatter.output_json({args.key: value})
            else:
                print(value)
            return 0

        elif args.action == 'set':
            if not args.key or args.value is None:
                self.formatter.error("Both key and value are required for 'set'")
                self.formatter.info("Example: apt-update-indicator config set check_interval 12")
                return 1

            if args.key not in self.config.config:
                self.formatter.error(f"Unknown config key: {args.key}")
                self.formatter.info("Available keys:")
                for key in self.config.config.keys():
                    print(f"  • {key}")
                return 1

            value = parse_config_value(args.value)
            if args.key == "ignore_list":
                value = join_entries(split_entries(str(value)))
            try:
                self.config.set(args.key, value)
            except ConfigurationError as e:
                self.formatter.error(str(e))
                return 1
            self.formatter.success(f"Set {args.key} = {value}")
            return 0

        self.formatter.error(f"Unknown config action: {args.action}")
        return 1


def parse_config_value(value: str) -> Any:
    """Infer the type of a value given on the command line."""
    if value.lower() in ('true', 'false'):
        return value.lower() == 'true'
    if value.isdigit():
        return int(value)
    if value.lower() in ('null', 'none'):
        return None
    return value


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog='apt-update-indicator',
        description=f'{APP_NAME} - check for and apply Debian/Ubuntu package updates',
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument(
        '--config',
        metavar='PATH',
        help='Alternative config file path'
    )
    parser.add_argument(
        '--json',
        action='store_true',
        help='Output in JSON format'
    )
    parser.add_argument(
        '--no-color',
        action='store_true',
        help='Disable ANSI colors'
    )
    parser.add_argument(
        '--no-network-check',
        action='store_true',
        help='Do not probe the network before checking'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {APP_VERSION}'
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    subparsers.add_parser(
        'check',
        help='Refresh the package index and list upgrades (default)'
    )
    subparsers.add_parser(
        'list',
        help='List upgrades without refreshing the package index'
    )

    watch_parser = subparsers.add_parser(
        'watch',
        help='Keep running: check on schedule and when package lists change'
    )
    watch_parser.add_argument(
        '--initial-delay',
        type=float,
        default=30,
        metavar='SECONDS',
        help='Delay before the first listing (default: 30)'
    )

    subparsers.add_parser('apply', help='Launch the configured update command')

    config_parser = subparsers.add_parser(
        'config',
        help='View/modify configuration',
        description='Manage configuration settings. Examples:\n'
        '  apt-update-indicator config get                   # Show all settings\n'
        '  apt-update-indicator config get ignore_list       # Show specific setting\n'
        '  apt-update-indicator config set check_interval 6  # Set a value\n'
        '  apt-update-indicator config path                  # Show config file location',
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    config_parser.add_argument(
        'action',
        choices=['get', 'set', 'path'],
        help='Config action: get (view), set (change), path (location)'
    )
    config_parser.add_argument(
        'key',
        nargs='?',
        help='Config key (e.g. check_interval, ignore_list, notify)'
    )
    config_parser.add_argument(
        'value',
        nargs='?',
        help='Config value to set (e.g. 6, true, "vim;firefox")'
    )

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        cli = IndicatorCLI(args.config)
        set_global_config({
            'debug_mode': args.debug or bool(cli.config.get('debug_mode')),
            'verbose_logging': bool(cli.config.get('verbose_logging')),
        })
        exit_code = cli.run(args)
        sys.exit(exit_code)
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(130)
    except Exception as e:
        print(f"Fatal error: {str(e)}", file=sys.stderr)
        if args.debug:
            import traceback
            traceback.print_exc()
        sys.exit(1)


if __name__ == '__main__':
    main()
