# scheduler/reporter.py
import json
import logging
import os
from datetime import datetime, timezone

import pandas as pd

from utils.alerts import alerts_configured, send_alert

logger = logging.getLogger("reporter")
logger.setLevel(logging.INFO)

REPORT_DIR = os.getenv("REPORT_DIR", "./reports")

REPORT_COLUMNS = [
    "shop_code",
    "status",
    "found",
    "created",
    "updated",
    "failed",
    "duration_seconds",
    "error_message",
    "started_at",
    "completed_at",
]


def generate_run_report(jobs, report_dir=None):
    """
    Write the jobs of one ingestion run as JSON and CSV, and alert on failures.

    Args:
        jobs (list[IngestionJob]): Finished jobs of the run
        report_dir (str, optional): Output directory, REPORT_DIR by default

    Returns:
        tuple: (json_path, csv_path)

    Output Files:
        - {report_dir}/ingestion_{YYYY-MM-DDTHHMMSS}.json
        - {report_dir}/ingestion_{YYYY-MM-DDTHHMMSS}.csv

    Email:
        Sent only when at least one job FAILED and SMTP is configured; the
        two report files are attached.
    """
    report_dir = report_dir or REPORT_DIR
    os.makedirs(report_dir, exist_ok=True)

    rows = [j.model_dump(mode="json", include=set(REPORT_COLUMNS)) for j in jobs]
    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H%M%S")
    json_path = os.path.join(report_dir, f"ingestion_{stamp}.json")
    csv_path = os.path.join(report_dir, f"ingestion_{stamp}.csv")

    with open(json_path, "w", encoding="utf-8") as f:
        json.dump(rows, f, indent=2)
    pd.DataFrame(rows, columns=REPORT_COLUMNS).to_csv(csv_path, index=False)
    logger.info(f"Generated ingestion report: {json_path}, {csv_path}")

    failed = [r for r in rows if r["status"] == "FAILED"]
    if failed and alerts_configured():
        subject = f"[PriceAggregator] {len(failed)} of {len(rows)} shop scrape(s) failed"
        body = "The scheduled ingestion run finished with failures.\n\n"
        for r in failed:
            body += f"- {r['shop_code']}: {r['error_message']}\n"
        body += "\nAttached are the JSON and CSV reports.\n"
        send_alert(subject, body, attachments=[json_path, csv_path])
        logger.info("Failure alert email sent.")

    return json_path, csv_path
