"""Tests for the client-to-Chit-Chats payload adapter."""

from datetime import date

import pytest

from shipdesk.services.chitchats import AdapterPolicy
from shipdesk.services.chitchats.adapter import (
    adapt_create,
    adapt_refresh,
    asciiify,
    clean_hs_code,
    normalize_ship_date,
    sanitize_line_item,
    sanitize_vat_reference,
    shipment_country_code,
)

TODAY = date(2024, 3, 5)


def client_payload(**overrides):
    payload = {
        "to": {
            "name": "Ada Lovelace",
            "address_1": "12 Rue de Rivoli",
            "city": "Paris",
            "postal_code": "75001",
            "country_code": "fr",
        },
        "package": {
            "package_type": "parcel",
            "size_unit": "cm",
            "size_x": 20,
            "size_y": "15",
            "size_z": 0,
            "weight_unit": "g",
            "weight": "250",
            "ship_date": "2024-03-05",
        },
        "customs": {
            "description": "Candle",
            "value": 12.5,
            "value_currency": "USD",
            "line_items": [{"quantity": 1, "description": "Candle"}],
        },
        "order_id": "ETSY-1",
    }
    payload.update(overrides)
    return payload


class TestShipDate:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("", "2024-03-05"),
            (None, "2024-03-05"),
            ("today", "2024-03-05"),
            ("tomorrow", "2024-03-06"),
            ("Tomorrow", "2024-03-06"),
            ("2024-03-05", "2024-03-05"),
            ("2023-12-31", "2023-12-31"),
            ("2024/04/01", "2024-04-01"),
            ("April 2, 2024", "2024-04-02"),
            ("not-a-date", "2024-03-05"),
        ],
    )
    def test_normalize(self, value, expected):
        assert normalize_ship_date(value, today=TODAY) == expected


class TestVatReference:
    def test_sanitize(self):
        assert sanitize_vat_reference("gb-123 abc!") == "GB123ABC"

    def test_truncated_to_twenty(self):
        assert sanitize_vat_reference("a" * 30) == "A" * 20

    @pytest.mark.parametrize("value", ["", "   ", None, "--"])
    def test_empty_is_none(self, value):
        assert sanitize_vat_reference(value) is None

    def test_emitted_when_enabled(self, policy):
        out = adapt_create(client_payload(ioss_number="im-0123 4567"), policy)
        assert out["vat_reference"] == "IM01234567"

    def test_precedence(self, policy):
        out = adapt_create(
            client_payload(vat_number="second", customs={"vat_reference": "third"}, vat_reference="first"),
            policy,
        )
        assert out["vat_reference"] == "FIRST"

    def test_whitespace_is_omitted(self, policy):
        out = adapt_create(client_payload(vat_reference="   "), policy)
        assert "vat_reference" not in out

    def test_suppressed_by_default(self):
        out = adapt_create(client_payload(vat_reference="GB123"), AdapterPolicy())
        assert "vat_reference" not in out


class TestJurisdictionDefaults:
    def test_eu_destination_gets_fallback_email(self, policy):
        payload = client_payload()
        payload["to"]["country_code"] = "DE"
        out = adapt_create(payload, policy)
        assert out["email"] == "fallback@example.com"
        assert out["phone"] == "555-555-0100"

    def test_gb_needs_email(self, policy):
        payload = client_payload()
        payload["to"]["country_code"] = "GB"
        assert adapt_create(payload, policy)["email"] == "fallback@example.com"

    def test_canada_gets_no_phone(self, policy):
        payload = client_payload()
        payload["to"]["country_code"] = "CA"
        out = adapt_create(payload, policy)
        assert "phone" not in out
        assert "email" not in out

    def test_us_gets_no_phone(self, policy):
        payload = client_payload()
        payload["to"]["country_code"] = "US"
        assert "phone" not in adapt_create(payload, policy)

    def test_existing_contact_kept(self, policy):
        payload = client_payload()
        payload["to"].update(country_code="DE", email="ada@example.org", phone="+49 30 1234")
        out = adapt_create(payload, policy)
        assert out["email"] == "ada@example.org"
        assert out["phone"] == "+49 30 1234"


class TestAdaptCreate:
    def test_flattens_recipient_and_package(self, policy):
        out = adapt_create(client_payload(), policy)

        assert out["name"] == "Ada Lovelace"
        assert out["city"] == "Paris"
        assert out["country_code"] == "FR"
        assert out["package_type"] == "parcel"
        assert out["size_x"] == 20
        assert out["size_y"] == 15
        assert out["weight"] == 250
        assert out["ship_date"] == "2024-03-05"
        assert out["order_id"] == "ETSY-1"
        assert "to" not in out
        assert "package" not in out

    def test_customs_stays_nested(self, policy):
        out = adapt_create(client_payload(), policy)
        assert out["customs"] == {
            "package_contents": "merchandise",
            "description": "Candle",
            "value": "12.5",
            "value_currency": "usd",
            "line_items": [{"quantity": 1, "description": "Candle"}],
        }

    def test_non_positive_dimensions_dropped(self, policy):
        out = adapt_create(client_payload(), policy)
        assert "size_z" not in out

    def test_root_level_fields_used_when_not_nested(self, policy):
        out = adapt_create(
            {"name": "Bo", "country_code": "us", "weight": 3, "reference": "R-9"},
            policy,
        )
        assert out["name"] == "Bo"
        assert out["country_code"] == "US"
        assert out["weight"] == 3
        assert out["order_id"] == "R-9"
        assert out["customs"]["value"] == "0"
        assert out["customs"]["value_currency"] == "cad"

    def test_nested_wins_over_root(self, policy):
        out = adapt_create({"name": "root", "to": {"name": "nested", "country_code": "CA"}}, policy)
        assert out["name"] == "nested"

    def test_fallback_country(self, policy):
        assert adapt_create({"name": "x"}, policy, country_code="ca")["country_code"] == "CA"

    def test_idempotent(self, policy):
        once = adapt_create(client_payload(vat_number="de 123"), policy)
        twice = adapt_create(once, policy)
        assert twice == once

    def test_idempotent_for_domestic(self, policy):
        payload = client_payload()
        payload["to"]["country_code"] = "CA"
        once = adapt_create(payload, policy)
        assert adapt_create(once, policy) == once


class TestAdaptRefresh:
    def test_customs_merged_onto_root(self, policy):
        out = adapt_refresh(client_payload(), policy)
        assert "customs" not in out
        assert out["package_contents"] == "merchandise"
        assert out["value"] == "12.5"
        assert out["value_currency"] == "usd"
        assert out["description"] == "Candle"

    def test_line_items_sanitized(self, policy):
        payload = client_payload()
        payload["customs"]["line_items"] = [
            {
                "description": "Crème brûlée candle ✨",
                "currency_code": "usd",
                "value_amount": 12,
                "hs_tariff_code": "3406.00-00",
                "manufacture_country": "uk",
            }
        ]
        item = adapt_refresh(payload, policy)["line_items"][0]

        assert item["description"] == "Creme brulee candle "
        assert item["currency_code"] == "USD"
        assert item["value_amount"] == "12"
        assert item["hs_tariff_code"] == "34060000"
        assert item["origin_country"] == "GB"

    def test_line_items_default_to_empty(self, policy):
        payload = client_payload()
        del payload["customs"]["line_items"]
        assert adapt_refresh(payload, policy)["line_items"] == []

    def test_country_from_argument(self, policy):
        payload = client_payload()
        del payload["to"]["country_code"]
        out = adapt_refresh(payload, policy, country_code="FR")
        assert out["country_code"] == "FR"
        assert out["email"] == "fallback@example.com"


class TestHelpers:
    def test_domestic_line_item_has_no_origin(self):
        assert "origin_country" not in sanitize_line_item({"description": "x"}, "CA", "CA")

    def test_origin_falls_back(self):
        assert sanitize_line_item({}, "US", "CA")["origin_country"] == "CA"

    def test_hs_code(self):
        assert clean_hs_code("1234.56.7890.12345") == "123456789012"
        assert clean_hs_code("n/a") is None

    def test_asciiify(self):
        assert asciiify("Zoë's café\n") == "Zoe's cafe"

    @pytest.mark.parametrize(
        "shipment,expected",
        [
            ({"country_code": "fr"}, "FR"),
            ({"to": {"country_code": "de"}}, "DE"),
            ({"destination": {"country_code": "gb"}}, "GB"),
            ({"to_country_code": "us"}, "US"),
            ({}, ""),
        ],
    )
    def test_shipment_country_code(self, shipment, expected):
        assert shipment_country_code(shipment) == expected
