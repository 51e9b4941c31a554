import csv
import json
import os
import shutil
import tempfile
import unittest
from unittest import mock

import activity_log
import config


class TestActivityLog(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.tmp, True)
        for name, sub in (("LOG_DIR", "logs"), ("STATE_DIR", "state")):
            p = mock.patch.object(config, name, os.path.join(self.tmp, sub))
            p.start()
            self.addCleanup(p.stop)

    def test_log_row_writes_csv_and_jsonl(self):
        activity_log.log_row("🏷️", "shop.myshopify.com", "APPLIED", product_id="1", variant_id="1001",
                             before="100.00", after="88.00", title="Mug", message="-20% of profit")
        with open(activity_log.log_csv_path(), encoding="utf-8") as f:
            rows = list(csv.reader(f))
        self.assertEqual(rows[0], activity_log.LOG_FIELDS)
        self.assertEqual(rows[1][2:8], ["shop.myshopify.com", "APPLIED", "1", "1001", "100.00", "88.00"])

        with open(activity_log.log_jsonl_path(), encoding="utf-8") as f:
            record = json.loads(f.readline())
        self.assertEqual(record["title"], "Mug")
        self.assertEqual(record["after"], "88.00")
        self.assertEqual(len(activity_log.recent_rows(10)), 2)

    def test_last_summary(self):
        self.assertEqual(activity_log.load_last_summary(), {"message": "No runs yet."})
        activity_log.save_last_summary({"status": "success", "count": 6})
        self.assertEqual(activity_log.load_last_summary(), {"status": "success", "count": 6})
        self.assertFalse(os.path.exists(activity_log.summary_path() + ".tmp"))


if __name__ == "__main__":
    unittest.main()
