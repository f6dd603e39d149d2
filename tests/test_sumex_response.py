"""Tests for reading generalInvoiceResponse documents."""

from decimal import Decimal

import pytest

from swiss_medical_billing.sumex_response import (
    ResponseType,
    StatusType,
    SubmissionStatus,
    parse_invoice_response,
)


def response_xml(outcome: str) -> str:
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<invoice:response xmlns:invoice="http://www.forum-datenaustausch.ch/invoice" language="fr" modus="test" guid="4b9e2f0c-1d2a-4c39-9a3c-6b7f1e2d3c4b">
  <invoice:processing>
    <invoice:transport from="7601003000115" to="7601000123459"/>
  </invoice:processing>
  <invoice:payload response_timestamp="1742472000">
    <invoice:invoice request_timestamp="1741737600" request_date="2025-03-12T00:00:00" request_id="2025-0001"/>
    <invoice:body>
      <invoice:biller gln="7601000123459" zsr="H123456"/>
      <invoice:provider gln="7601000000002" zsr="Z987654"/>
      <invoice:insurance gln="7601003000115"/>
      {outcome}
    </invoice:body>
  </invoice:payload>
</invoice:response>
"""


REJECTED = """<invoice:rejected status_in="received" status_out="canceled">
        <invoice:explanation>Facture refusée: données invalides</invoice:explanation>
        <invoice:error code="1021" record_id="2" text="Tarif inconnu" error_value="AA.00.0010" valid_value="AA.00.0020"/>
        <invoice:error code="2001" text="Assuré inconnu"/>
        <invoice:message code="9000" text="Merci de corriger et renvoyer"/>
      </invoice:rejected>"""

ACCEPTED = """<invoice:accepted status_in="received" status_out="granted">
        <invoice:balance currency="CHF" amount="99.97" amount_reminder="0.00" amount_due="99.95" amount_paid="0.00" amount_unpaid="99.95" amount_vat="0.00"/>
      </invoice:accepted>"""

PENDING = """<invoice:pending status_in="received" status_out="frozen">
        <invoice:explanation>Pièces justificatives demandées</invoice:explanation>
        <invoice:message code="3003">Rapport médical requis</invoice:message>
      </invoice:pending>"""


class TestOutcomes:
    def test_rejected(self):
        response = parse_invoice_response(response_xml(REJECTED))

        assert response.success is True
        assert response.response_type is ResponseType.Rejected
        assert response.submission_status is SubmissionStatus.REJECTED
        assert response.status_in is StatusType.Received
        assert response.status_out is StatusType.Canceled
        assert response.balance is None
        assert len(response.notifications) == 3
        assert [e.code for e in response.errors] == ["1021", "2001"]

        first = response.errors[0]
        assert first.text == "Tarif inconnu"
        assert first.record_id == 2
        assert first.error_value == "AA.00.0010"
        assert first.valid_value == "AA.00.0020"

        message = response.notifications[-1]
        assert message.is_error is False
        assert message.text == "Merci de corriger et renvoyer"

    def test_accepted(self):
        response = parse_invoice_response(response_xml(ACCEPTED))

        assert response.submission_status is SubmissionStatus.ACCEPTED
        assert response.status_out is StatusType.Granted
        assert response.notifications == []
        assert response.balance.amount == Decimal("99.97")
        assert response.balance.amount_due == Decimal("99.95")
        assert response.balance.amount_unpaid == Decimal("99.95")
        assert response.balance.currency == "CHF"
        assert response.balance.vat_number is None

    def test_pending(self):
        response = parse_invoice_response(response_xml(PENDING))

        assert response.submission_status is SubmissionStatus.PENDING
        assert response.status_out is StatusType.Frozen
        assert response.explanation == "Pièces justificatives demandées"
        assert response.errors == []
        assert response.notifications[0].code == "3003"
        assert response.notifications[0].text == "Rapport médical requis"

    def test_header_fields(self):
        response = parse_invoice_response(response_xml(ACCEPTED))

        assert response.language == "fr"
        assert response.modus == "test"
        assert response.guid == "4b9e2f0c-1d2a-4c39-9a3c-6b7f1e2d3c4b"
        assert response.response_timestamp == 1742472000
        assert response.invoice_ref.request_id == "2025-0001"
        assert response.invoice_ref.request_timestamp == 1741737600
        assert response.biller_gln == "7601000123459"
        assert response.provider_zsr == "Z987654"
        assert response.insurance_gln == "7601003000115"

    def test_bytes_input(self):
        response = parse_invoice_response(response_xml(ACCEPTED).encode("utf-8"))
        assert response.submission_status is SubmissionStatus.ACCEPTED


class TestUnusualDocuments:
    @pytest.mark.parametrize("xml", [None, "", "<Document><BkToCstmrDbtCdtNtfctn/></Document>"])
    def test_not_a_response(self, xml):
        response = parse_invoice_response(xml)
        assert response.success is False
        assert response.error == "Not a generalInvoiceResponse document"

    def test_missing_outcome(self):
        response = parse_invoice_response(response_xml(""))
        assert response.success is False
        assert response.error == "Response contains no accepted, rejected or pending element"

    def test_unprefixed_document(self):
        xml = response_xml(ACCEPTED).replace("invoice:", "").replace("xmlns:invoice", "xmlns")
        assert parse_invoice_response(xml).submission_status is SubmissionStatus.ACCEPTED

    def test_unknown_status_name(self):
        xml = response_xml(ACCEPTED.replace('status_out="granted"', 'status_out="archived"'))
        assert parse_invoice_response(xml).status_out is StatusType.Unknown

    def test_malformed_amount_is_zero(self):
        xml = response_xml(ACCEPTED.replace('amount_paid="0.00"', 'amount_paid="n/a"'))
        assert parse_invoice_response(xml).balance.amount_paid == Decimal("0")
