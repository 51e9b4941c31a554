# cron_trigger.py: external scheduler → webhook trigger (retries on 5xx/429)
#
# Render cron / crontab:  python cron_trigger.py [--count 6]

import sys
import time
import random
import argparse
from typing import Optional

import requests

import config

WEBHOOK_PATH = "/webhook/daily-discounts/auto"


def _jitter_backoff(attempt: int, base: int = 2, cap: int = 30) -> float:
    return min(base ** attempt, cap) + random.random()


def trigger_webhook(
    app_url: Optional[str] = None,
    token: Optional[str] = None,
    count: Optional[int] = None,
    max_retries: int = 3,
    timeout_connect: int = 5,
    timeout_read: int = 900,
    sleep=time.sleep,
) -> Optional[dict]:
    """
    POSTs the all-shops run. Returns the JSON report, or None when the call was
    rejected (4xx) or every attempt failed.
    """
    app_url = (app_url or config.APP_URL).rstrip("/")
    token = (token or config.SHOPIFY_ADMIN_API_TOKEN or "").strip()
    if not app_url or not token:
        print("[CRON] skipped: APP_URL or SHOPIFY_ADMIN_API_TOKEN not configured", flush=True)
        return None

    url = app_url + WEBHOOK_PATH
    headers = {"Content-Type": "application/json", "X-Shopify-Admin-API-Token": token}
    payload = {"count": count} if count else {}

    last_err = None
    for attempt in range(1, max_retries + 1):
        try:
            resp = requests.post(url, json=payload, headers=headers, timeout=(timeout_connect, timeout_read))
            if resp.status_code == 200:
                report = resp.json()
                print(f"[CRON] ok (attempt {attempt}): {report.get('message', '')}", flush=True)
                return report
            if resp.status_code >= 500 or resp.status_code == 429:
                last_err = f"{resp.status_code} {resp.text[:200]}"
            else:
                print(f"[CRON] non-retryable {resp.status_code}: {resp.text[:200]}", flush=True)
                return None
        except requests.RequestException as e:
            last_err = str(e)
        if attempt < max_retries:
            sleep(_jitter_backoff(attempt))

    print(f"[CRON] error (final): {last_err}", flush=True)
    return None


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Trigger the daily auto-discount run for all shops.")
    parser.add_argument("--url", default=config.APP_URL)
    parser.add_argument("--count", type=int, default=None)
    args = parser.parse_args(argv)
    report = trigger_webhook(app_url=args.url, count=args.count)
    return 0 if report and report.get("status") == "success" else 1


if __name__ == "__main__":
    sys.exit(main())
