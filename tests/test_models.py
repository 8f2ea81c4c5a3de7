"""Tests for model serialization and amount coercion."""

import pytest

from clinic_sync.models import Patient, Payment, coerce_amount


class TestCoerceAmount:
    """Tests for amount input cleanup."""

    @pytest.mark.parametrize("raw, expected", [
        (10, 10.0),
        ("12.5", 12.5),
        ("12,5", 12.5),
        (" 3.005 ", 3.01),
        ("abc", 0.0),
        ("", 0.0),
        (None, 0.0),
        (-1, 0.0),
        ("nan", 0.0),
        ("inf", 0.0),
        (True, 0.0),
    ])
    def test_values(self, raw, expected):
        assert coerce_amount(raw) == expected

    def test_payment_model_coerces(self):
        assert Payment(date="2024-01-01", amount=-5).amount == 0.0


class TestSerialization:
    """Tests for wire field names."""

    def test_camel_case_and_no_nulls(self):
        data = Patient(name="Ana", phone="1").to_json()
        assert data["isInsurance"] is False
        assert "insuranceNumber" not in data
        assert "birthDate" not in data
        assert set(data) == {"id", "name", "phone", "isInsurance", "treatments", "createdAt"}

    def test_accepts_both_key_styles(self):
        a = Patient.model_validate({"name": "Ana", "phone": "1", "birthDate": "1990-01-01"})
        b = Patient(name="Ana", phone="1", birth_date="1990-01-01")
        assert a.birth_date == b.birth_date == "1990-01-01"
