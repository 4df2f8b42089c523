"""
Main RefreshArr application.
Command line parsing and orchestration of the cleanup, fix-imports and
compare-plex commands.
"""

import argparse
import logging
import sys
import threading
import time
from typing import List, Optional, Tuple

from refresharr import __version__
from refresharr.arr_client import ArrClient, RadarrClient, SonarrClient, create_client
from refresharr.cleanup import CleanupService
from refresharr.config import Config, ConfigManager, parse_duration, parse_id_list
from refresharr.errors import ArrError, CleanupCancelled
from refresharr.filesystem import FileSystemChecker
from refresharr.importfixer import ImportFixer
from refresharr.logging_config import LoggingManager
from refresharr.models import CleanupResult
from refresharr.plex import PlexComparer
from refresharr.progress import ConsoleProgressReporter
from refresharr.report import ReportGenerator

COMMANDS = ("cleanup", "fix-imports", "compare-plex")


class RefreshArrApp:
    """Runs one RefreshArr command against the configured services."""

    def __init__(self, config: Config, show_progress_bar: bool = True):
        self.config = config
        self.show_progress_bar = show_progress_bar
        self.cancel_event = threading.Event()
        self.logging_manager: Optional[LoggingManager] = None
        self.start_time = time.time()

    def setup_logging(self) -> None:
        self.logging_manager = LoggingManager(self.config.logs_folder, self.config.log_level)
        self.logging_manager.setup_logging()
        self.logging_manager.setup_notification_handlers(
            self.config.notification.webhook_url, self.config.notification.webhook_level)

    def _summary(self, message: str) -> None:
        if self.logging_manager is not None:
            self.logging_manager.add_summary_message(message)

    def _finish(self) -> None:
        if self.logging_manager is not None:
            self.logging_manager.log_summary()
        logging.debug(f"Finished in {time.time() - self.start_time:.1f}s")

    def determine_services(self) -> List[Tuple[str, ArrClient]]:
        """Clients for the services selected by --service ('auto' means every configured one)."""
        cfg = self.config
        services = []
        for name in ("sonarr", "radarr"):
            if cfg.service not in (name, "auto"):
                continue
            svc = getattr(cfg, name)
            if svc.configured:
                services.append((name, create_client(name, svc.url, svc.api_key, cfg.request_timeout)))
            elif cfg.service == name:
                logging.error(f"{name.capitalize()} service requested but not properly configured")
        return services

    # ------------------------------------------------------------------
    # cleanup
    # ------------------------------------------------------------------

    def run_cleanup(self) -> int:
        cfg = self.config
        logging.info(f"Starting RefreshArr {__version__} - Missing File Cleanup Service")

        services = self.determine_services()
        if not services:
            logging.error("No services configured or available")
            return 1

        probe = FileSystemChecker()
        all_successful = True
        cancelled = False
        results: List[Tuple[str, CleanupResult]] = []

        for name, client in services:
            logging.info(f"Processing {name} service...")
            service = CleanupService(
                client, probe, ConsoleProgressReporter(self.show_progress_bar),
                dry_run=cfg.dry_run, concurrent_limit=cfg.concurrent_limit,
                request_delay=cfg.request_delay, add_missing_media=cfg.add_missing_media,
                quality_profile_id=cfg.quality_profile_id, update_after_delete=cfg.update_after_delete,
            )
            try:
                if name == "sonarr" and cfg.series_ids:
                    result = service.cleanup_series(cfg.series_ids, self.cancel_event)
                elif name == "radarr" and cfg.movie_ids:
                    result = service.cleanup_movies(cfg.movie_ids, self.cancel_event)
                else:
                    result = service.cleanup_missing_files(self.cancel_event)
            except (ConnectionError, ArrError) as e:
                logging.error(f"Cleanup failed for {name}: {e}")
                self._summary(f"{name}: cleanup failed ({e})")
                all_successful = False
                continue

            results.append((name, result))
            stats = result.stats
            self._summary(f"{name}: {stats.checked} checked, {stats.missing_files} missing, "
                          f"{stats.deleted_records} deleted, {stats.errors} errors")
            if result.error is not None:
                logging.warning(f"{name} cleanup stopped: {result.error}")
                all_successful = False
                cancelled = isinstance(result.error, CleanupCancelled)
                break
            if not result.success:
                logging.warning(f"{name} cleanup completed with errors")
                for message in result.messages:
                    logging.warning(f"  {message}")
                all_successful = False
            else:
                logging.info(f"{name} cleanup completed successfully!")

        if results and not cfg.no_report:
            generator = ReportGenerator(cfg.reports_dir)
            for name, result in results:
                if result.report is None:
                    continue
                logging.info(f"Report for {name}:")
                try:
                    generator.generate(result.report, print_to_terminal=True)
                except OSError as e:
                    logging.warning(f"Failed to generate report for {name}: {e}")

        self._finish()
        if cancelled:
            logging.warning("Cleanup interrupted")
            return 130
        if not all_successful:
            logging.warning("Some cleanup operations completed with errors")
            return 1
        logging.info("All cleanup operations completed successfully!")
        return 0

    # ------------------------------------------------------------------
    # fix-imports
    # ------------------------------------------------------------------

    def run_fix_imports(self) -> int:
        cfg = self.config
        logging.info(f"Starting RefreshArr {__version__} - Sonarr Import Fixer")
        if not cfg.sonarr.configured:
            logging.error("Sonarr must be configured to use the fix-imports command")
            logging.error("Please set SONARR_URL and SONARR_API_KEY environment variables or use CLI flags")
            return 1

        client = SonarrClient(cfg.sonarr.url, cfg.sonarr.api_key, timeout=cfg.request_timeout)
        try:
            client.test_connection()
            result = ImportFixer(client, dry_run=cfg.dry_run, download_paths=cfg.download_paths).fix_imports()
        except (ConnectionError, ArrError) as e:
            logging.error(f"Import fixer failed: {e}")
            return 1

        if result.dry_run and result.total_stuck_items:
            logging.info(f"Found {result.total_stuck_items} stuck import(s) that would be fixed")
        elif result.fixed_items:
            logging.info(f"Imported {result.fixed_items} out of {result.total_stuck_items} stuck imports")
        elif result.total_stuck_items:
            logging.info(f"No items were imported - all {result.total_stuck_items} remain in queue")
        else:
            logging.info("No stuck imports found - your queue is clean!")
        if result.errors:
            logging.info("Please check these items in Sonarr's Activity -> Queue tab and resolve manually.")

        self._summary(f"fix-imports: {result.fixed_items}/{result.total_stuck_items} imported")
        self._finish()
        return 0

    # ------------------------------------------------------------------
    # compare-plex
    # ------------------------------------------------------------------

    def run_compare_plex(self, tmdb_arg: Optional[str]) -> int:
        cfg = self.config
        logging.info(f"Starting RefreshArr {__version__} - Plex Comparison Tool")
        try:
            tmdb_id = int(tmdb_arg or "")
        except ValueError:
            logging.error("Usage: refresharr compare-plex <tmdb-id>")
            return 1
        if not cfg.radarr.configured:
            logging.error("Radarr must be configured to use the compare-plex command")
            return 1
        if not cfg.plex.configured:
            logging.error("Plex must be configured to use the compare-plex command (PLEX_URL, PLEX_TOKEN)")
            return 1

        radarr = RadarrClient(cfg.radarr.url, cfg.radarr.api_key, timeout=cfg.request_timeout)
        comparer = PlexComparer(cfg.plex.url, cfg.plex.token, timeout=cfg.request_timeout)
        try:
            radarr.test_connection()
            comparer.connect()
            movie = radarr.get_by_external_id(tmdb_id)
            if movie is None:
                logging.error(f"Movie with TMDB ID {tmdb_id} not found in Radarr")
                return 1
            comparison = comparer.compare(movie)
        except (ConnectionError, ArrError) as e:
            logging.error(f"Plex comparison failed: {e}")
            return 1

        logging.info(f"Movie: {movie.title} ({movie.year})")
        logging.info(f"Radarr Status: {'Available' if comparison.radarr_has_file else 'Missing'}")
        if comparison.plex_found:
            logging.info(f"Plex Status: {'Available' if comparison.plex_available else 'Unavailable'}")
        else:
            logging.info("Plex Status: Not Found")
        if comparison.match:
            logging.info("Match Status: MATCH")
        else:
            logging.info("Match Status: MISMATCH")
        if comparison.suggestion:
            logging.info(f"Suggestion: {comparison.suggestion}")
        self._finish()
        return 0

    def run(self, command: str = "cleanup", target: Optional[str] = None) -> int:
        try:
            if command == "fix-imports":
                return self.run_fix_imports()
            if command == "compare-plex":
                return self.run_compare_plex(target)
            return self.run_cleanup()
        except KeyboardInterrupt:
            self.cancel_event.set()
            logging.warning("Interrupted")
            return 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="refresharr",
        description="Reconcile Sonarr/Radarr file records with the filesystem.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  cleanup                 Remove records for missing files (default)
  fix-imports             Retry Sonarr imports stuck as 'already imported'
  compare-plex <tmdb-id>  Compare a movie's availability in Radarr and Plex

Environment variables (fallback if CLI args not provided):
  SONARR_URL, SONARR_API_KEY, RADARR_URL, RADARR_API_KEY, PLEX_URL, PLEX_TOKEN,
  REQUEST_TIMEOUT (30s), REQUEST_DELAY (500ms), CONCURRENT_LIMIT (5), LOG_LEVEL,
  DRY_RUN, ADD_MISSING_MOVIES, QUALITY_PROFILE_ID (12)

Examples:
  refresharr --dry-run
  refresharr --service sonarr --series-ids 123,456
  refresharr fix-imports --dry-run
  refresharr compare-plex 603
""")
    parser.add_argument('command', nargs='?', default='cleanup', choices=COMMANDS)
    parser.add_argument('target', nargs='?', help="TMDB ID for compare-plex")
    parser.add_argument('--version', action='version', version=f"RefreshArr {__version__}")

    run_group = parser.add_argument_group('run options')
    run_group.add_argument('--dry-run', action='store_true', default=None,
                           help="Show what would be changed without changing anything")
    run_group.add_argument('--no-report', action='store_true', default=None,
                           help="Skip writing the missing files report")
    run_group.add_argument('--service', choices=('sonarr', 'radarr', 'auto'),
                           help="Which service to process (default: auto)")
    run_group.add_argument('--series-ids', metavar='IDS', help="Comma-separated Sonarr series IDs")
    run_group.add_argument('--movie-ids', metavar='IDS', help="Comma-separated Radarr movie IDs")
    run_group.add_argument('--add-missing-movies', dest='add_missing_media', action='store_true', default=None,
                           help="Add media found behind broken symlinks to the collection")
    run_group.add_argument('--quality-profile-id', type=int, help="Quality profile for added media (default: 12)")
    run_group.add_argument('--concurrent-limit', type=int, help="Items processed in parallel (default: 5)")
    run_group.add_argument('--request-delay', help="Delay after each item, e.g. 500ms")
    run_group.add_argument('--request-timeout', help="HTTP timeout, e.g. 30s")

    arr_group = parser.add_argument_group('arr connection')
    arr_group.add_argument('--sonarr-url')
    arr_group.add_argument('--sonarr-api-key')
    arr_group.add_argument('--radarr-url')
    arr_group.add_argument('--radarr-api-key')

    out_group = parser.add_argument_group('output')
    out_group.add_argument('--log-level', choices=('debug', 'info', 'warn', 'warning', 'error'),
                           type=str.lower, help="Log level (default: info)")
    out_group.add_argument('--logs-folder', help="Also write rotating log files to this folder")
    out_group.add_argument('--reports-dir', help="Folder for JSON reports (default: reports)")
    out_group.add_argument('--config', metavar='FILE', help="Optional JSON settings file")
    return parser


def overrides_from_args(args: argparse.Namespace) -> dict:
    """Turn parsed CLI arguments into ConfigManager overrides."""
    overrides = {
        "dry_run": args.dry_run,
        "no_report": args.no_report,
        "service": args.service,
        "add_missing_media": args.add_missing_media,
        "quality_profile_id": args.quality_profile_id,
        "concurrent_limit": args.concurrent_limit,
        "sonarr_url": args.sonarr_url,
        "sonarr_api_key": args.sonarr_api_key,
        "radarr_url": args.radarr_url,
        "radarr_api_key": args.radarr_api_key,
        "log_level": args.log_level,
        "logs_folder": args.logs_folder,
        "reports_dir": args.reports_dir,
    }
    if args.series_ids:
        overrides["series_ids"] = parse_id_list(args.series_ids)
    if args.movie_ids:
        overrides["movie_ids"] = parse_id_list(args.movie_ids)
    if args.request_delay:
        overrides["request_delay"] = parse_duration(args.request_delay)
    if args.request_timeout:
        overrides["request_timeout"] = parse_duration(args.request_timeout)
    return overrides


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = ConfigManager(args.config).load_config(overrides_from_args(args))
    except (ValueError, FileNotFoundError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    app = RefreshArrApp(config)
    app.setup_logging()
    sys.exit(app.run(args.command, args.target))


if __name__ == "__main__":
    main()
