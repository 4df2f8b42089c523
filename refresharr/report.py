"""
Missing files report output: JSON file on disk and a readable log summary.
"""

import json
import logging
import os
from datetime import datetime
from typing import Optional

from refresharr.models import MEDIA_SERIES, RUN_DRY, MissingFilesReport


class ReportGenerator:
    """Writes missing file reports to the reports folder."""

    def __init__(self, reports_dir: str = "reports"):
        self.reports_dir = reports_dir

    def report_filename(self, report: MissingFilesReport, now: Optional[datetime] = None) -> str:
        timestamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
        if report.run_type == RUN_DRY:
            return f"{report.service_type}-missing-files-report-dryrun-{timestamp}.json"
        return f"{report.service_type}-missing-files-report-{timestamp}.json"

    def generate(self, report: Optional[MissingFilesReport], print_to_terminal: bool = True) -> str:
        """Save the report and optionally log it. Returns the saved path."""
        if report is None:
            raise ValueError("report is None")
        path = self.save(report)
        if print_to_terminal:
            self.print_report(report)
        return path

    def save(self, report: MissingFilesReport) -> str:
        try:
            os.makedirs(self.reports_dir, exist_ok=True)
        except PermissionError:
            raise PermissionError(f"{self.reports_dir} not writable, please check the reports folder.")

        path = os.path.join(self.reports_dir, self.report_filename(report))
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(report.to_dict(), f, indent=2)
        logging.info(f"Report saved to: {path}")
        return path

    def print_report(self, report: MissingFilesReport) -> None:
        logging.info("")
        logging.info("MISSING FILES REPORT")
        logging.info("==========================================")
        logging.info(f"Generated: {report.generated_at}")
        logging.info(f"Service: {report.service_type}")
        logging.info(f"Run Type: {report.run_type}")
        logging.info(f"Total Missing Files: {report.total_missing}")
        logging.info("")

        if report.total_missing == 0:
            logging.info("No missing files found!")
            return

        logging.info("Missing Files:")
        logging.info("==========================================")
        last = len(report.missing_files) - 1
        for i, entry in enumerate(report.missing_files):
            logging.info(f"{i + 1}. {entry.media_name}")
            if entry.media_type == MEDIA_SERIES and entry.season is not None and entry.episode is not None:
                episode_name = entry.episode_name or "Unknown Episode"
                logging.info(f"   Episode: S{entry.season:02d}E{entry.episode:02d} - {episode_name}")
            logging.info(f"   Missing File: {entry.file_path}")
            logging.info(f"   File ID: {entry.file_id}")
            if entry.added_to_collection:
                logging.info("   Added to collection: yes")
            logging.info(f"   Processed: {entry.processed_at}")
            if i < last:
                logging.info("")
        logging.info("==========================================")
