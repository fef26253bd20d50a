from hospital_billing.redaction import redact_text


def test_redact_basic_patterns():
    text = "Patient UHID: UHID-2024-0001\nMRN: 999\nPolicy No: POL/55/2041"
    result = redact_text(text)
    assert "UHID-2024-0001" not in result
    assert "999" not in result
    assert "POL/55/2041" not in result
    assert result.count("[REDACTED]") == 3


def test_redact_contact_numbers():
    result = redact_text("Call +91 9845012345 or 9900112233 about Aadhaar 1234 5678 9012")
    assert "9845012345" not in result
    assert "9900112233" not in result
    assert "1234 5678 9012" not in result


def test_amounts_and_document_numbers_survive():
    text = "receipt RCPT-202610-0001 for 1180.00"
    assert redact_text(text) == text


def test_extra_patterns():
    assert redact_text("ward W-12", extra_patterns=[r"W-\d+"]) == "ward [REDACTED]"
