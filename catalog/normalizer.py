# catalog/normalizer.py
import logging
import re
import unicodedata

from crawler.models import NormalizedListing, ScrapedListing

logger = logging.getLogger("catalog")
logger.setLevel(logging.INFO)

CATEGORY = "SMARTPHONE"

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
_SPACES_RE = re.compile(r"\s+")


def _capitalize(group):
    return group.capitalize()


# Ordered: the first matching rule wins. Each entry is
# (pattern, brand or callable(first group) -> brand).
BRAND_RULES = [
    (r"(iphone)\s*(\d+\s*pro\s*max|\d+\s*pro|\d+\s*plus|\d+|se|air|mini)", "Apple"),
    (
        r"(samsung|galaxy)\s*"
        r"(s\d+\s*ultra|s\d+\s*plus|s\d+|a\d+|z\s*fold\d*|z\s*flip\d*|note\d+)",
        "Samsung",
    ),
    (r"(xiaomi|redmi)\s*(note\s*\d+|\d+[a-z]*)", _capitalize),
    (r"(poco)\s*(x\d+[a-z]*|m\d+[a-z]*|c\d+[a-z]*|f\d+[a-z]*)", "Poco"),
    (
        r"(huawei|honor)\s*(p\d+[a-z]*|mate\s*\d+|nova\s*\d+|magic\d*[a-z]*\s*pro"
        r"|magic\d*[a-z]*|x\d+[a-z]*|\d+[a-z]*)",
        _capitalize,
    ),
    (r"(oppo)\s*(find\s*[xn]\d*|reno\s*\d+|a\d+)", "Oppo"),
    (r"(vivo)\s*(x\d+|v\d+|y\d+)", "Vivo"),
    (r"(realme)\s*(gt\s*\d*|\d+[a-z]*)", "Realme"),
    (
        r"(tecno)\s*(spark\s*go\s*\d*[a-z]*|spark\s*\d+[a-z]*|camon\s*\d+[a-z]*"
        r"|phantom\s*[x\d]*|pova\s*\d+[a-z]*)",
        "Tecno",
    ),
    (
        r"(infinix)\s*(note\s*\d+[a-z]*\s*pro|note\s*\d+[a-z]*|smart\s*\d+[a-z]*"
        r"|hot\s*\d+[a-z]*\s*pro|hot\s*\d+[a-z]*)",
        "Infinix",
    ),
    (
        r"(motorola)\s*(moto\s*[ge]\d+[a-z]*\s*power\s*5g|moto\s*[ge]\d+[a-z]*\s*power"
        r"|moto\s*[ge]\d+[a-z]*\s*5g|moto\s*[ge]\d+[a-z]*|edge\s*\d+[a-z]*\s*fusion\s*5g"
        r"|edge\s*\d+[a-z]*|razr\s*\d+[a-z]*)",
        "Motorola",
    ),
]
BRAND_RULES = [(re.compile(p, re.IGNORECASE), brand) for p, brand in BRAND_RULES]

# Multi-word and more specific keywords come first so "rose gold" wins over "gold".
COLOR_KEYWORDS = [
    ("space gray", "Gray"),
    ("space grey", "Gray"),
    ("rose gold", "Gold"),
    ("midnight", "Black"),
    ("graphite", "Gray"),
    ("starlight", "White"),
    ("coral", "Orange"),
    ("mint", "Green"),
    ("lavender", "Purple"),
    ("titanium", "Titanium"),
    ("teal", "Teal"),
    ("black", "Black"),
    ("white", "White"),
    ("red", "Red"),
    ("blue", "Blue"),
    ("green", "Green"),
    ("yellow", "Yellow"),
    ("purple", "Purple"),
    ("pink", "Pink"),
    ("orange", "Orange"),
    ("gold", "Gold"),
    ("silver", "Silver"),
    ("gray", "Gray"),
    ("grey", "Gray"),
    ("brown", "Brown"),
    # Azerbaijani
    ("qara", "Black"),
    ("ağ", "White"),
    ("qırmızı", "Red"),
    ("mavi", "Blue"),
    ("yaşıl", "Green"),
    ("sarı", "Yellow"),
    ("bənövşəyi", "Purple"),
    ("çəhrayı", "Pink"),
    ("narıncı", "Orange"),
    ("qızılı", "Gold"),
    ("gümüşü", "Silver"),
    ("boz", "Gray"),
    # Russian
    ("черный", "Black"),
    ("чёрный", "Black"),
    ("белый", "White"),
    ("красный", "Red"),
    ("синий", "Blue"),
    ("голубой", "Blue"),
    ("зеленый", "Green"),
    ("зелёный", "Green"),
    ("желтый", "Yellow"),
    ("жёлтый", "Yellow"),
    ("фиолетовый", "Purple"),
    ("розовый", "Pink"),
    ("оранжевый", "Orange"),
    ("золотой", "Gold"),
    ("серебряный", "Silver"),
    ("серебристый", "Silver"),
    ("серый", "Gray"),
]
COLOR_KEYWORDS = [
    (re.compile(rf"(?<!\w){re.escape(word)}(?!\w)"), color)
    for word, color in COLOR_KEYWORDS
]


def normalize_text(text):
    """
    Canonical form of a title: diacritics stripped, lower case, and every run
    of non-alphanumeric characters collapsed to one space.

    >>> normalize_text("iPhone 13 Pro Max 256GB Qara")
    'iphone 13 pro max 256gb qara'
    """
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFD", text)
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    return _NON_ALNUM_RE.sub(" ", stripped.lower()).strip()


def _title_case(text):
    return " ".join(w.capitalize() for w in _SPACES_RE.split(text.strip()) if w)


def extract_brand_model(title):
    """
    Run the brand rules against a title.

    Returns:
        tuple: (brand, model); both None when no rule matches. The model is the
            whole matched fragment, whitespace-collapsed and title-cased, e.g.
            "Iphone 13 Pro Max" or "Galaxy S23 Ultra".
    """
    if not title:
        return None, None
    for pattern, brand in BRAND_RULES:
        m = pattern.search(title)
        if m:
            if callable(brand):
                brand = brand(m.group(1))
            return brand, _title_case(m.group(0))
    return None, None


def extract_color(title, explicit=None):
    """Explicit color wins; otherwise scan the title for a known keyword."""
    if explicit and explicit.strip():
        return extract_color(explicit) or explicit.strip().capitalize()
    if not title:
        return None
    lowered = title.lower()
    for pattern, color in COLOR_KEYWORDS:
        if pattern.search(lowered):
            return color
    return None


def normalize_listing(listing: ScrapedListing) -> NormalizedListing:
    """
    Turn a scraped listing into a normalized one.

    Never raises for a bad title: if rule matching fails the listing keeps a
    best-effort normalized name with no brand/model.
    """
    normalized_name = normalize_text(listing.title)
    try:
        brand, model = extract_brand_model(listing.title)
        color = extract_color(listing.title, listing.color)
    except Exception as e:
        logger.warning(f"Normalization failed for '{listing.title}': {e}")
        brand, model, color = None, None, listing.color

    if brand is None:
        logger.debug(f"No brand rule matched '{listing.title}'")

    return NormalizedListing(
        **listing.model_dump(exclude={"color"}),
        color=color,
        normalized_name=normalized_name,
        brand=brand,
        model=model,
        category=CATEGORY,
    )
