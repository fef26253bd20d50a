"""External collaborators consumed by the ledger.

The ledger reads patients and catalog prices, checks that claim documents
exist, and hands receipts and claim correspondence to a notifier. Each
collaborator is a protocol with a small in-memory implementation used by
the demo ledger and the tests.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol, Tuple

import rapidfuzz.process
from rapidfuzz import fuzz

from hospital_billing.redaction import redact_text

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class PatientRecord:
    patient_ref: str
    name: str
    uhid: str
    contact_number: Optional[str] = None


@dataclass(frozen=True)
class CatalogService:
    """A billable service with its price and supplied GST classification."""

    service_code: str
    name: str
    unit_price: Decimal
    gst_rate: Decimal
    hsn_sac_code: str
    department: str = "general"


class PatientDirectory(Protocol):
    def resolve(self, patient_ref: str) -> Optional[PatientRecord]:
        ...


class ServiceCatalog(Protocol):
    def get(self, service_code: str) -> Optional[CatalogService]:
        ...

    def search(self, name: str) -> Optional[CatalogService]:
        ...


class DocumentStore(Protocol):
    def exists(self, document_ref: str) -> bool:
        ...


class Notifier(Protocol):
    def send(self, kind: str, recipient_ref: str, payload: Dict[str, Any]) -> None:
        ...


class InMemoryPatientDirectory:
    def __init__(self, patients: Optional[List[PatientRecord]] = None) -> None:
        self._patients: Dict[str, PatientRecord] = {}
        for patient in patients or []:
            self.add(patient)

    def add(self, patient: PatientRecord) -> PatientRecord:
        self._patients[patient.patient_ref] = patient
        return patient

    def resolve(self, patient_ref: str) -> Optional[PatientRecord]:
        return self._patients.get(patient_ref)


class InMemoryServiceCatalog:
    """Price list keyed by service code, searchable by approximate name."""

    def __init__(
        self,
        services: Optional[List[CatalogService]] = None,
        *,
        match_threshold: float = 80.0,
    ) -> None:
        self._services: Dict[str, CatalogService] = {}
        self._match_threshold = match_threshold
        for service in services or []:
            self.add(service)

    def add(self, service: CatalogService) -> CatalogService:
        self._services[service.service_code] = service
        return service

    def get(self, service_code: str) -> Optional[CatalogService]:
        return self._services.get(service_code)

    def search(self, name: str) -> Optional[CatalogService]:
        services = list(self._services.values())
        match = rapidfuzz.process.extractOne(
            name,
            [service.name for service in services],
            scorer=fuzz.WRatio,
            score_cutoff=self._match_threshold,
        )
        if match is None:
            LOGGER.debug("No catalog service matched '%s'", name)
            return None
        _, score, index = match
        LOGGER.debug("Matched '%s' to %s (score %.1f)", name, services[index].service_code, score)
        return services[index]


class InMemoryDocumentStore:
    def __init__(self) -> None:
        self._documents: Dict[str, str] = {}

    def add(self, document_ref: str, file_name: str = "") -> str:
        self._documents[document_ref] = file_name
        return document_ref

    def exists(self, document_ref: str) -> bool:
        return document_ref in self._documents


@dataclass
class LoggingNotifier:
    """Notifier that records messages and writes them to the log."""

    redact_phi: bool = True
    sent: List[Tuple[str, str, Dict[str, Any]]] = field(default_factory=list)

    def send(self, kind: str, recipient_ref: str, payload: Dict[str, Any]) -> None:
        self.sent.append((kind, recipient_ref, dict(payload)))
        message = f"{kind} for {recipient_ref}: {payload}"
        LOGGER.info("Notification %s", redact_text(message) if self.redact_phi else message)


def demo_collaborators(
    *, match_threshold: float = 80.0, redact_phi: bool = True
) -> Dict[str, Any]:
    """Return in-memory collaborators holding the demo patients, services and documents."""
    patients = InMemoryPatientDirectory(
        [
            PatientRecord("PAT-1001", "Asha Rao", "UHID-2024-0001", "9845012345"),
            PatientRecord("PAT-1002", "Vikram Shetty", "UHID-2024-0002", "9900112233"),
            PatientRecord("PAT-1003", "Meera Iyer", "UHID-2024-0003"),
        ]
    )
    catalog = InMemoryServiceCatalog(
        [
            CatalogService("SVC-CONS", "Specialist consultation", Decimal("1000"), Decimal("18"), "999312", "opd"),
            CatalogService("SVC-XRAY", "Chest X-ray", Decimal("650"), Decimal("18"), "999316", "radiology"),
            CatalogService("SVC-CBC", "Complete blood count", Decimal("400"), Decimal("0"), "999316", "pathology"),
            CatalogService("SVC-DRESS", "Dressing materials", Decimal("125"), Decimal("5"), "3005", "ward"),
        ],
        match_threshold=match_threshold,
    )
    documents = InMemoryDocumentStore()
    documents.add("DOC-DISCHARGE-SUMMARY", "discharge_summary.pdf")
    return {
        "patients": patients,
        "catalog": catalog,
        "documents": documents,
        "notifier": LoggingNotifier(redact_phi=redact_phi),
    }


def notify(notifier: Optional[Notifier], kind: str, recipient_ref: str, payload: Dict[str, Any]) -> None:
    """Deliver a notification without letting delivery failures reach the ledger."""
    if notifier is None:
        return
    try:
        notifier.send(kind, recipient_ref, payload)
    except Exception as exc:
        LOGGER.warning("Failed to deliver %s notification: %s", kind, exc)


__all__ = [
    "CatalogService",
    "DocumentStore",
    "InMemoryDocumentStore",
    "InMemoryPatientDirectory",
    "InMemoryServiceCatalog",
    "LoggingNotifier",
    "Notifier",
    "PatientDirectory",
    "PatientRecord",
    "ServiceCatalog",
    "demo_collaborators",
    "notify",
]
