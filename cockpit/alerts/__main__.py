from __future__ import annotations

import argparse
import asyncio
import json
from datetime import datetime, timezone

from cockpit.alerts.scanner import ScanReport, alert_tz, run_alert_scan
from cockpit.db import SessionLocal, engine
from cockpit.logging import configure_logging


def report_dict(report: ScanReport) -> dict:
  def _p(p) -> dict:
    return {"created": p.created, "skipped": p.skipped, "ok": p.ok, "error": p.error}

  return {
    "ok": report.ok,
    "checkedAt": report.checked_at.isoformat(),
    "deadline": _p(report.deadline),
    "overdue": _p(report.overdue),
  }


async def _run(now: datetime | None, tz_name: str | None) -> ScanReport:
  try:
    async with SessionLocal() as db:
      return await run_alert_scan(db, now=now, tz=alert_tz(tz_name))
  finally:
    await engine.dispose()


def main() -> int:
  parser = argparse.ArgumentParser(description="Create deadline and overdue task alerts")
  parser.add_argument("--now", default=None, help="ISO timestamp to scan as of (default: current time)")
  parser.add_argument("--timezone", default=None, help="IANA zone for calendar-day arithmetic (default: ALERT_TIMEZONE)")
  args = parser.parse_args()

  configure_logging()
  now = None
  if args.now:
    now = datetime.fromisoformat(args.now.replace("Z", "+00:00"))
    if now.tzinfo is None:
      now = now.replace(tzinfo=timezone.utc)
  report = asyncio.run(_run(now, args.timezone))
  print(json.dumps(report_dict(report), indent=2))
  return 0 if report.ok else 1


if __name__ == "__main__":
  raise SystemExit(main())
