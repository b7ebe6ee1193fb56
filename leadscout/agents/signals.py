"""Pure signal extractors: emails, phones, social links, tech hints, domains."""
from __future__ import annotations

import re
from typing import Dict, List
from urllib.parse import urlparse

import phonenumbers
from bs4 import BeautifulSoup

EMAIL_REGEX = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)

_OBFUSCATED = [
    (re.compile(r"\s*[\[(]\s*at\s*[\])]\s*", re.I), "@"),
    (re.compile(r"\s*[\[(]\s*dot\s*[\])]\s*", re.I), "."),
    (re.compile(r"\s+at\s+", re.I), "@"),
    (re.compile(r"\s+dot\s+", re.I), "."),
]
_BRACKETS = re.compile(r"[\[\](){}<>]")
_ASSET_SUFFIXES = (".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".css", ".js")

MIN_PHONE_DIGITS = 8

SOCIAL_PATTERNS = {
    "linkedin": re.compile(r"https?://(?:[a-z]+\.)?linkedin\.com/[A-Za-z0-9_./%-]+", re.I),
    "facebook": re.compile(r"https?://(?:[a-z]+\.)?facebook\.com/[A-Za-z0-9_./%-]+", re.I),
    "instagram": re.compile(r"https?://(?:[a-z]+\.)?instagram\.com/[A-Za-z0-9_./%-]+", re.I),
    "twitter": re.compile(r"https?://(?:[a-z]+\.)?(?:twitter|x)\.com/[A-Za-z0-9_./%-]+", re.I),
    "youtube": re.compile(r"https?://(?:[a-z]+\.)?youtube\.com/[A-Za-z0-9_./%@-]+", re.I),
    "tiktok": re.compile(r"https?://(?:[a-z]+\.)?tiktok\.com/[A-Za-z0-9_./%@-]+", re.I),
}

HTML_TECH_MARKERS = [
    ("wp-content", "WordPress"),
    ("shopify", "Shopify"),
    ("wixstatic", "Wix"),
    ("squarespace", "Squarespace"),
    ("hubspot", "HubSpot"),
]
SCRIPT_TECH_MARKERS = [
    (re.compile(r"salesforce|pardot", re.I), "Salesforce/Pardot"),
    (re.compile(r"marketo", re.I), "Marketo"),
    (re.compile(r"hubspot", re.I), "HubSpot"),
]
MARKDOWN_TECH_MARKERS = [
    ("powered by shopify", "Shopify"),
    ("powered by wordpress", "WordPress"),
]

TWO_PART_CC_TLDS = {"co.uk", "com.au", "co.nz", "com.br", "com.mx", "com.tr"}


def deobfuscate(text: str = "") -> str:
    output = text or ""
    for pattern, replacement in _OBFUSCATED:
        output = pattern.sub(replacement, output)
    return _BRACKETS.sub("", output)


def extract_emails(text: str = "") -> List[str]:
    """Lower-cased, de-duplicated emails in first-seen order."""
    found: Dict[str, None] = {}
    for match in EMAIL_REGEX.findall(deobfuscate(text)):
        email = match.strip().lower()
        if email.endswith(_ASSET_SUFFIXES):
            continue
        found.setdefault(email, None)
    return list(found)


def extract_phones(text: str = "", default_region: str = "US") -> List[str]:
    """Valid phone numbers in E.164 form, de-duplicated by canonical value."""
    cleaned = re.sub(r"[()]", " ", text or "")
    cleaned = re.sub(r"[^0-9+\s-]", " ", cleaned)

    phones: Dict[str, None] = {}
    for token in cleaned.split():
        normalized = re.sub(r"[^0-9+]", "", token)
        if len(normalized) < MIN_PHONE_DIGITS:
            continue
        try:
            number = phonenumbers.parse(normalized, default_region)
        except phonenumbers.NumberParseException:
            continue
        if not phonenumbers.is_valid_number(number):
            continue
        phones.setdefault(phonenumbers.format_number(number, phonenumbers.PhoneNumberFormat.E164), None)
    return list(phones)


def _strip_query(url: str) -> str:
    return re.split(r"[?#]", url, maxsplit=1)[0]


def extract_social_links(text: str = "") -> Dict[str, List[str]]:
    """Split profile links into LinkedIn and other social platforms."""
    linkedin: Dict[str, None] = {}
    other: Dict[str, None] = {}
    for platform, pattern in SOCIAL_PATTERNS.items():
        bucket = linkedin if platform == "linkedin" else other
        for match in pattern.findall(text or ""):
            bucket.setdefault(_strip_query(match), None)
    return {"linkedin": list(linkedin), "other": list(other)}



def detect_tech_hints(html: str = "", markdown: str = "") -> List[str]:
    html = html or ""
    markdown = markdown or ""
    tech: Dict[str, None] = {}

    lowered = html.lower()
    for marker, label in HTML_TECH_MARKERS:
        if marker in lowered:
            tech.setdefault(label, None)

    if html:
        soup = BeautifulSoup(html, "html.parser")
        generator = soup.find("meta", attrs={"name": "generator"})
        if generator and (generator.get("content") or "").strip():
            tech.setdefault(generator["content"].strip(), None)
        for script in soup.find_all("script", src=True):
            src = script.get("src") or ""
            for pattern, label in SCRIPT_TECH_MARKERS:
                if pattern.search(src):
                    tech.setdefault(label, None)

    lowered_md = markdown.lower()
    for phrase, label in MARKDOWN_TECH_MARKERS:
        if phrase in lowered_md:
            tech.setdefault(label, None)

    return list(tech)


def normalize_domain(value: str) -> str:
    """Collapse a URL or bare host to its registrable domain."""
    cleaned = (value or "").strip()
    if not cleaned:
        return cleaned
    prefixed = cleaned if cleaned.lower().startswith("http") else f"https://{cleaned}"
    try:
        host = (urlparse(prefixed).hostname or "").lower()
    except ValueError:
        return cleaned
    if not host:
        return cleaned

    parts = host.split(".")
    if len(parts) <= 2:
        return host
    last_three = ".".join(parts[-3:])
    if ".".join(parts[-2:]) in TWO_PART_CC_TLDS:
        return last_three
    return ".".join(parts[-2:])


def ensure_http(url: str) -> str:
    if not url:
        return url
    if not re.match(r"^https?://", url, re.I):
        return f"https://{url}"
    return url
