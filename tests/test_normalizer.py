# tests/test_normalizer.py
from decimal import Decimal

import pytest

from catalog.normalizer import (
    extract_brand_model,
    extract_color,
    normalize_listing,
    normalize_text,
)
from conftest import make_listing


def test_normalize_listing_kontakt_iphone():
    """
    Test the full normalization of a typical Kontakt listing.

    Asserts:
        - Brand is "Apple" and model is the title-cased matched fragment
        - The Azerbaijani color word "Qara" maps to "Black"
        - normalized_name is lower-cased with punctuation collapsed
        - Price and stock flag pass through untouched
    """
    listing = normalize_listing(make_listing())

    assert listing.brand == "Apple"
    assert listing.model == "Iphone 13 Pro Max"
    assert listing.color == "Black"
    assert listing.normalized_name == "iphone 13 pro max 256gb qara"
    assert listing.price == Decimal("2199.00")
    assert listing.in_stock is True
    assert listing.category == "SMARTPHONE"


@pytest.mark.parametrize(
    "title, brand, model",
    [
        ("Samsung Galaxy S23 Ultra 256GB Phantom Black", "Samsung", "Galaxy S23 Ultra"),
        ("Samsung Galaxy A54 5G 8/128GB", "Samsung", "Galaxy A54"),
        ("Xiaomi Redmi Note 12 Pro 8/256GB", "Redmi", "Redmi Note 12"),
        ("Xiaomi 13T 12/256GB", "Xiaomi", "Xiaomi 13t"),
        ("POCO X5 Pro 5G", "Poco", "Poco X5"),
        ("Honor X8a 6/128GB", "Honor", "Honor X8a"),
        ("Tecno Spark Go 2024 4/64GB", "Tecno", "Tecno Spark Go 2024"),
        ("Apple iPhone SE 64GB", "Apple", "Iphone Se"),
    ],
)
def test_extract_brand_model_rules(title, brand, model):
    """
    Test that the ordered brand rules pick the right brand and model.

    Xiaomi and Huawei/Honor rules take the brand from the matched word, so
    "Redmi" and "Honor" are kept as brands of their own.
    """
    assert extract_brand_model(title) == (brand, model)


def test_extract_brand_model_no_rule_matches():
    assert extract_brand_model("Nokia 105 Dual SIM") == (None, None)
    assert extract_brand_model("") == (None, None)


@pytest.mark.parametrize(
    "title, color",
    [
        ("iPhone 15 Pro 256GB Natural Titanium", "Titanium"),
        ("Galaxy S24 Ultra Titanium Gray", "Titanium"),
        ("iPhone 14 Midnight", "Black"),
        ("iPhone 12 Mavi", "Blue"),
        ("Смартфон Apple iPhone 15 черный", "Black"),
        ("Xiaomi Redmi Note 12 Pro 8/256GB", None),
        ("Redmi 12C Mint Green", "Green"),
    ],
)
def test_extract_color_from_title(title, color):
    """
    Test color detection across English, Azerbaijani and Russian keywords.

    Note:
        Keywords match whole words only, so "Redmi" never reads as "red".
    """
    assert extract_color(title) == color


def test_extract_color_explicit_value_wins():
    assert extract_color("iPhone 13 Blue", explicit="Qara") == "Black"
    assert extract_color("iPhone 13 Blue", explicit="sierra blue") == "Blue"
    assert extract_color("iPhone 13 Blue", explicit="phantom") == "Phantom"
    assert extract_color("iPhone 13 Blue", explicit="  ") == "Blue"


def test_normalize_text_strips_diacritics_and_punctuation():
    assert normalize_text("Gümüşü") == "gumusu"
    assert normalize_text("Galaxy  S23/Ultra (5G)") == "galaxy s23 ultra 5g"
    assert normalize_text(None) == ""


def test_normalize_listing_survives_rule_failure(monkeypatch):
    """
    Test that a failing brand extraction degrades instead of raising.

    Asserts:
        - Listing is still produced with a normalized name
        - Brand and model are None and the scraped color is kept
    """

    def boom(title):
        raise ValueError("bad pattern")

    monkeypatch.setattr("catalog.normalizer.extract_brand_model", boom)
    listing = normalize_listing(make_listing(color="Red"))

    assert listing.normalized_name == "iphone 13 pro max 256gb qara"
    assert listing.brand is None
    assert listing.model is None
    assert listing.color == "Red"
