"""
Shared pytest fixtures: temp SQLite store, scripted vision model, service.
"""
import json

import pytest

from receipt_automation.pipeline.service import ReceiptTranscriptionService
from receipt_automation.store import ReceiptStore


SAMPLE_RECEIPT = {
    "document_type": "receipt",
    "merchant": {"name": "Cafe X", "tax_office": "Kadıköy", "tax_number": "1234567890"},
    "transaction": {"date": "05.01.2024", "time": "14:02", "receipt_number": "0042", "currency": "TRY"},
    "totals": {"subtotal": "11,57", "tax": "0,93", "total": "12,50"},
    "tax_rates": [{"rate": 8, "taxable_amount": "11,57", "tax_amount": "0,93"}],
    "line_items": [{"description": "Latte", "quantity": 1, "unit_price": "12,50", "total_price": "12,50"}],
}


class FakeVision:
    """Callable vision model returning queued answers (str) or raising queued exceptions."""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.calls = []

    def __call__(self, image, media_type, prompt):
        self.calls.append((image, media_type, prompt))
        answer = self.answers.pop(0) if len(self.answers) > 1 else self.answers[0]
        if isinstance(answer, Exception):
            raise answer
        return answer


def fenced(payload) -> str:
    return "Here is the receipt:\n```json\n" + json.dumps(payload, ensure_ascii=False) + "\n```"


@pytest.fixture()
def store(tmp_path):
    return ReceiptStore(db_path=str(tmp_path / "receipts.sqlite3"))


@pytest.fixture()
def vision():
    return FakeVision(fenced(SAMPLE_RECEIPT))


@pytest.fixture()
def service(vision, store):
    return ReceiptTranscriptionService(vision, store, max_upload_bytes=1024)
