import pytest

from librarydesk.validators import ISBNValidator, TextValidator


@pytest.mark.parametrize("raw, expected", [
    ("978-0-441-01359-3", "9780441013593"),
    ("0 306 40615 2", "0306406152"),
    ("0-8044-2957-x", "080442957X"),
    (None, ""),
])
def test_normalize_isbn(raw, expected):
    assert ISBNValidator.normalize_isbn(raw) == expected


@pytest.mark.parametrize("isbn, valid", [
    ("9780441013593", True),
    ("978-0-306-40615-7", True),
    ("0306406152", True),
    ("080442957X", True),
    ("9780441013594", False),
    ("0306406153", False),
    ("12345", False),
    ("", False),
])
def test_is_valid_isbn(isbn, valid):
    assert ISBNValidator.is_valid_isbn(isbn) is valid


def test_clean_text():
    assert TextValidator.clean("  <b>Dune</b> ") == "Dune"
    assert TextValidator.clean("   ") is None
    assert TextValidator.clean(None) is None


def test_is_blank():
    assert TextValidator.is_blank(None)
    assert TextValidator.is_blank(" \t")
    assert not TextValidator.is_blank("x")


@pytest.mark.parametrize("email, valid", [
    ("siti@example.com", True),
    ("a.b+c@perpustakaan.go.id", True),
    ("no-at-sign.com", False),
    ("two@@example.com", False),
    ("spaces in@example.com", False),
    (None, False),
])
def test_validate_email(email, valid):
    assert TextValidator.validate_email(email) is valid
