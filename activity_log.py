# activity_log.py: append-only CSV/JSONL activity log + run summaries

import os
import csv
import json
from datetime import datetime, timezone

import config

LOG_FIELDS = ["ts", "phase", "shop", "note", "product_id", "variant_id", "before", "after", "message"]


def now_utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def log_csv_path() -> str:
    return os.path.join(config.LOG_DIR, "discount_activity.csv")


def log_jsonl_path() -> str:
    return os.path.join(config.LOG_DIR, "discount_activity.jsonl")


def ensure_log_header():
    os.makedirs(config.LOG_DIR, exist_ok=True)
    path = log_csv_path()
    if (not os.path.exists(path)) or os.path.getsize(path) == 0:
        with open(path, "w", newline="", encoding="utf-8") as f:
            csv.writer(f).writerow(LOG_FIELDS)


def log_row(
    phase: str,
    shop: str,
    note: str,
    product_id: str = "",
    variant_id: str = "",
    before="",
    after="",
    title: str = "",
    message: str = "",
    extra: dict = None,
):
    ensure_log_header()
    ts = now_utc_iso()
    with open(log_csv_path(), "a", newline="", encoding="utf-8") as f:
        csv.writer(f).writerow([ts, phase, shop, note, product_id, variant_id, before, after, message])
    row = {
        "ts": ts, "phase": phase, "shop": shop, "note": note,
        "product_id": product_id, "variant_id": variant_id,
        "before": "" if before is None else str(before),
        "after": "" if after is None else str(after),
        "title": title, "message": message,
    }
    if extra:
        row.update(extra)
    with open(log_jsonl_path(), "a", encoding="utf-8") as f:
        f.write(json.dumps(row, ensure_ascii=False) + "\n")
    if config.LOG_TO_STDOUT:
        human = f"{phase} {shop} {note} pid={product_id} vid={variant_id} {row['before']}→{row['after']} “{title}” | {message}"
        print(human, flush=True)


def recent_rows(limit: int = 200) -> list[str]:
    path = log_csv_path()
    if not os.path.exists(path):
        return []
    with open(path, "r", encoding="utf-8") as f:
        lines = f.readlines()
    return lines[-limit:]


# -------- run summaries --------
def summary_path() -> str:
    return os.path.join(config.STATE_DIR, "last_run_summary.json")


def safe_write_json(path: str, data: dict) -> None:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    tmp = path + ".tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False, default=str)
    os.replace(tmp, path)


def save_last_summary(summary: dict) -> None:
    safe_write_json(summary_path(), summary)


def load_last_summary() -> dict:
    try:
        with open(summary_path(), "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        return {"message": "No runs yet."}
