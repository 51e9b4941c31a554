import unittest
from unittest import mock

import requests

import cron_trigger


def response(status, payload=None, text=""):
    r = mock.Mock()
    r.status_code = status
    r.json.return_value = payload or {}
    r.text = text
    return r


class TestTriggerWebhook(unittest.TestCase):

    def call(self, **kw):
        return cron_trigger.trigger_webhook(app_url="https://discounts.example.com/", token="shpat_x",
                                            sleep=lambda s: None, **kw)

    @mock.patch("cron_trigger.requests.post")
    def test_posts_with_admin_token(self, post):
        post.return_value = response(200, {"status": "success", "message": "Processed 1 shops"})
        report = self.call(count=4)
        self.assertEqual(report["status"], "success")
        args, kwargs = post.call_args
        self.assertEqual(args[0], "https://discounts.example.com/webhook/daily-discounts/auto")
        self.assertEqual(kwargs["headers"]["X-Shopify-Admin-API-Token"], "shpat_x")
        self.assertEqual(kwargs["json"], {"count": 4})

    @mock.patch("cron_trigger.requests.post")
    def test_retries_server_errors(self, post):
        post.side_effect = [response(502), requests.ConnectionError("boom"), response(200, {"status": "success"})]
        self.assertEqual(self.call()["status"], "success")
        self.assertEqual(post.call_count, 3)

    @mock.patch("cron_trigger.requests.post")
    def test_rejected_call_is_not_retried(self, post):
        post.return_value = response(401, text="Unauthorized")
        self.assertIsNone(self.call())
        self.assertEqual(post.call_count, 1)

    @mock.patch("cron_trigger.requests.post")
    def test_missing_token_skips(self, post):
        with mock.patch.object(cron_trigger.config, "SHOPIFY_ADMIN_API_TOKEN", ""):
            self.assertIsNone(cron_trigger.trigger_webhook(app_url="https://x.example.com", token=""))
        post.assert_not_called()

    @mock.patch("cron_trigger.trigger_webhook")
    def test_main_exit_code(self, trigger):
        trigger.return_value = {"status": "success"}
        self.assertEqual(cron_trigger.main(["--count", "3"]), 0)
        trigger.return_value = None
        self.assertEqual(cron_trigger.main([]), 1)


if __name__ == "__main__":
    unittest.main()
