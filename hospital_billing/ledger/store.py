"""In-memory source of truth for invoice accounts.

Each invoice is stored together with its payments, credit notes and claims
as one versioned account. Writers hold a per-invoice lock for their
read-modify-write cycle and commit with an optimistic version check, so a
commit based on a stale read is refused instead of overwriting newer state.
"""
from __future__ import annotations

import copy
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterator, List, Tuple

from hospital_billing.errors import (
    ConcurrencyConflictError,
    LedgerIntegrityError,
    NotFoundError,
    ValidationError,
)
from hospital_billing.ledger.models import CreditNote, InsuranceClaim, Invoice, Payment

LOGGER = logging.getLogger(__name__)


@dataclass
class InvoiceAccount:
    """An invoice and the append-only documents that reference it."""

    invoice: Invoice
    payments: List[Payment] = field(default_factory=list)
    credit_notes: List[CreditNote] = field(default_factory=list)
    claims: List[InsuranceClaim] = field(default_factory=list)
    version: int = 0


class LedgerStore:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._accounts: Dict[str, InvoiceAccount] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._counters: Dict[Tuple[str, str], int] = {}
        self._credit_note_index: Dict[str, str] = {}
        self._claim_index: Dict[str, str] = {}
        self._receipt_index: Dict[str, str] = {}

    # ------------------------------------------------------------------
    # Numbering
    # ------------------------------------------------------------------
    def next_number(self, prefix: str, when: date) -> str:
        """Return the next ``PREFIX-YYYYMM-NNNN`` number for the month of ``when``."""
        period = f"{when.year}{when.month:02d}"
        with self._guard:
            count = self._counters.get((prefix, period), 0) + 1
            self._counters[(prefix, period)] = count
        return f"{prefix}-{period}-{count:04d}"

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------
    @contextmanager
    def lock(self, invoice_number: str) -> Iterator[None]:
        with self._guard:
            invoice_lock = self._locks.setdefault(invoice_number, threading.RLock())
        with invoice_lock:
            yield

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def load(self, invoice_number: str) -> InvoiceAccount:
        """Return a private copy of the stored account."""
        with self._guard:
            account = self._accounts.get(invoice_number)
            if account is None:
                raise NotFoundError(f"Unknown invoice '{invoice_number}'")
            return copy.deepcopy(account)

    def accounts(self) -> List[InvoiceAccount]:
        with self._guard:
            return [copy.deepcopy(account) for account in self._accounts.values()]

    def invoice_for_credit_note(self, credit_note_number: str) -> str:
        try:
            return self._credit_note_index[credit_note_number]
        except KeyError as exc:
            raise NotFoundError(f"Unknown credit note '{credit_note_number}'") from exc

    def invoice_for_claim(self, claim_number: str) -> str:
        try:
            return self._claim_index[claim_number]
        except KeyError as exc:
            raise NotFoundError(f"Unknown claim '{claim_number}'") from exc

    def invoice_for_receipt(self, receipt_number: str) -> str:
        try:
            return self._receipt_index[receipt_number]
        except KeyError as exc:
            raise NotFoundError(f"Unknown receipt '{receipt_number}'") from exc

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def create(self, account: InvoiceAccount) -> InvoiceAccount:
        number = account.invoice.invoice_number
        with self._guard:
            if number in self._accounts:
                raise ValidationError(f"Invoice '{number}' already exists")
            account.version = 1
            self._accounts[number] = copy.deepcopy(account)
        return account

    def commit(self, account: InvoiceAccount) -> InvoiceAccount:
        """Store ``account`` if it was read from the current version."""
        number = account.invoice.invoice_number
        with self._guard:
            current = self._accounts.get(number)
            if current is None:
                raise NotFoundError(f"Unknown invoice '{number}'")
            if current.version != account.version:
                raise ConcurrencyConflictError(number, account.version, current.version)
            self._check_append_only(current, account)
            account.version += 1
            self._accounts[number] = copy.deepcopy(account)
            for note in account.credit_notes:
                self._credit_note_index[note.credit_note_number] = number
            for claim in account.claims:
                self._claim_index[claim.claim_number] = number
            for payment in account.payments:
                self._receipt_index[payment.receipt_number] = number
        LOGGER.debug("Committed invoice %s at version %s", number, account.version)
        return account

    @staticmethod
    def _check_append_only(current: InvoiceAccount, updated: InvoiceAccount) -> None:
        if updated.payments[: len(current.payments)] != current.payments:
            raise LedgerIntegrityError(
                f"Payments of invoice '{current.invoice.invoice_number}' may only be appended"
            )
        for name, key in (("credit_notes", "credit_note_number"), ("claims", "claim_number")):
            before = [getattr(doc, key) for doc in getattr(current, name)]
            after = [getattr(doc, key) for doc in getattr(updated, name)]
            if after[: len(before)] != before:
                raise LedgerIntegrityError(
                    f"{name} of invoice '{current.invoice.invoice_number}' may only be appended"
                )


__all__ = ["InvoiceAccount", "LedgerStore"]
