import json
import os
import shutil
import tempfile
import unittest
from unittest.mock import patch

from fastapi.testclient import TestClient

import main
from API_EFILING import BatchTimeoutError
from capture_parser import ExtractionError
from report import BatchReport

INVOICES = [{"INV_NO": "A1", "INV_DATE": "2024-01-05", "TOTAL_AMT": "1"}]


class TestProcessEndpoint(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(main.app)

    def test_health(self):
        self.assertEqual(self.client.get("/test").json(), {"status": "ok"})

    def test_missing_fields(self):
        response = self.client.post("/api/process", json={"textJsContent": "x"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "Missing required fields")

    def test_invalid_json_data(self):
        response = self.client.post("/api/process", json={"textJsContent": "x", "jsonData": "[oops"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "Invalid JSON format")

    def test_non_string_capture_is_rejected(self):
        response = self.client.post("/api/process", json={"textJsContent": 123, "jsonData": INVOICES})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "Missing required fields")

    @patch.object(main.efiling_service, "process_data")
    def test_success(self, mock_process):
        report = BatchReport(total=1)
        report.record_success("A1", {"STATUS": "OK"})
        mock_process.return_value = report.finish()

        response = self.client.post(
            "/api/process", json={"textJsContent": "capture", "jsonData": json.dumps(INVOICES)})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["status"], "completed")
        self.assertEqual(body["success"], [{"invoice_no": "A1", "message": {"STATUS": "OK"}}])
        args = mock_process.call_args.args
        self.assertEqual(args[0], "capture")
        self.assertEqual(args[1], INVOICES)

    @patch.object(main.efiling_service, "process_data")
    def test_fatal_error_maps_to_500(self, mock_process):
        mock_process.side_effect = ExtractionError("URL")
        response = self.client.post("/api/process", json={"textJsContent": "capture", "jsonData": INVOICES})

        self.assertEqual(response.status_code, 500)
        body = response.json()
        self.assertTrue(body["message"].startswith("Batch rejected: "))
        self.assertIn("Could not extract URL", body["message"])
        self.assertEqual(body["reason"], "ExtractionError")

    @patch.object(main.efiling_service, "process_data")
    def test_unexpected_error_is_distinct_from_rejection(self, mock_process):
        mock_process.side_effect = RuntimeError("boom")
        response = self.client.post("/api/process", json={"textJsContent": "capture", "jsonData": INVOICES})

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["message"], "Error processing data: boom")
        self.assertNotIn("reason", response.json())

    @patch.object(main.efiling_service, "process_data")
    def test_timeout_maps_to_504_with_partial_report(self, mock_process):
        partial = BatchReport(total=2)
        partial.record_success("A1", "ok")
        mock_process.side_effect = BatchTimeoutError(partial.finish())

        response = self.client.post("/api/process", json={"textJsContent": "capture", "jsonData": INVOICES})

        self.assertEqual(response.status_code, 504)
        self.assertEqual(response.json()["report"]["success_count"], 1)

class TestProcessFileEndpoint(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(main.app)
        self.upload_dir = tempfile.mkdtemp()
        patcher = patch.object(main.Config, "UPLOAD_DIR", self.upload_dir)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.addCleanup(shutil.rmtree, self.upload_dir, True)

    @patch.object(main.efiling_service, "process_data")
    def test_csv_upload_is_archived_and_submitted(self, mock_process):
        mock_process.return_value = BatchReport(total=2).finish()
        csv_content = (
            "INV_NO,INV_DATE,TOTAL_AMT,AMOUNT_KHR\n"
            "A1,2024-01-05,\"1,234.50\",\n"
            "A2,2024-01-06,,40000\n"
        )
        response = self.client.post(
            "/api/process-file",
            data={"textJsContent": "capture"},
            files={"file": ("batch.csv", csv_content.encode("utf-8"), "text/csv")},
        )

        self.assertEqual(response.status_code, 200)
        args = mock_process.call_args.args
        self.assertEqual(args[0], "capture")
        self.assertEqual(args[1], [
            {"INV_NO": "A1", "INV_DATE": "2024-01-05", "TOTAL_AMT": "1,234.50"},
            {"INV_NO": "A2", "INV_DATE": "2024-01-06", "AMOUNT_KHR": "40000"},
        ])
        archived = os.listdir(self.upload_dir)
        self.assertEqual(len(archived), 1)
        self.assertTrue(archived[0].endswith(".csv"))

    @patch.object(main.efiling_service, "process_data")
    def test_empty_upload_is_rejected(self, mock_process):
        response = self.client.post(
            "/api/process-file",
            data={"textJsContent": "capture"},
            files={"file": ("batch.csv", b"", "text/csv")},
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["status"], "error")
        mock_process.assert_not_called()

    @patch.object(main.efiling_service, "process_data")
    def test_header_only_upload_is_rejected(self, mock_process):
        response = self.client.post(
            "/api/process-file",
            data={"textJsContent": "capture"},
            files={"file": ("batch.csv", b"INV_NO,INV_DATE,TOTAL_AMT\n", "text/csv")},
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "Uploaded file contains no invoice rows")
        mock_process.assert_not_called()



if __name__ == '__main__':
    unittest.main()
