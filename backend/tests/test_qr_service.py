"""
Tests du format des QR codes élèves.
"""

import pytest

from schoolaccess.services.qr_service import (
    extract_admission_number,
    generate_qr_image,
    generate_token,
    is_valid_token,
    normalize_token,
)


def test_generate_token():
    assert generate_token(" 2024-001a ") == "QR2024-001A"


def test_normalize_token():
    assert normalize_token("  qr2024001\n") == "QR2024001"


@pytest.mark.parametrize("token, expected", [
    ("QR2024001", True),
    ("qr2024001", True),
    ("QR", False),
    ("2024001", False),
    ("QR2024 001", False),
])
def test_is_valid_token(token, expected):
    assert is_valid_token(token) is expected


def test_extract_admission_number():
    assert extract_admission_number("QR2024001") == "2024001"
    assert extract_admission_number("XX2024001") is None


def test_generate_qr_image_png():
    png = generate_qr_image("QR2024001")

    assert png[:8] == b"\x89PNG\r\n\x1a\n"
