import logging
from decimal import Decimal

from hospital_billing.collaborators import (
    CatalogService,
    InMemoryServiceCatalog,
    LoggingNotifier,
    notify,
)


def test_catalog_lookup_by_code_and_fuzzy_name():
    catalog = InMemoryServiceCatalog(
        [
            CatalogService("SVC-ECG", "Electrocardiogram", Decimal("300"), Decimal("0"), "999316"),
            CatalogService("SVC-MRI", "MRI brain plain", Decimal("6500"), Decimal("18"), "999316"),
        ]
    )
    assert catalog.get("SVC-ECG").name == "Electrocardiogram"
    assert catalog.get("SVC-NONE") is None
    assert catalog.search("MRI brain").service_code == "SVC-MRI"
    assert catalog.search("physiotherapy session") is None


def test_strict_threshold_rejects_loose_matches():
    catalog = InMemoryServiceCatalog(
        [CatalogService("SVC-ECG", "Electrocardiogram", Decimal("300"), Decimal("0"), "999316")],
        match_threshold=100.0,
    )
    assert catalog.search("Electrocardiograms") is None


def test_notifier_redacts_logged_messages(caplog):
    notifier = LoggingNotifier()
    with caplog.at_level(logging.INFO, logger="hospital_billing.collaborators"):
        notifier.send("payment_receipt", "PAT-1001", {"contact": "9845012345"})
    assert notifier.sent == [("payment_receipt", "PAT-1001", {"contact": "9845012345"})]
    assert "9845012345" not in caplog.text
    assert "[REDACTED]" in caplog.text


class BrokenNotifier:
    def send(self, kind, recipient_ref, payload):
        raise ConnectionError("smtp down")


def test_notification_failures_are_logged_not_raised(caplog):
    with caplog.at_level(logging.WARNING, logger="hospital_billing.collaborators"):
        notify(BrokenNotifier(), "payment_receipt", "PAT-1001", {})
    assert "smtp down" in caplog.text
