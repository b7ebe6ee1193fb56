"""Utility functions shared across agents."""
import hashlib
import re


def build_lead_id(domain: str, primary_email: str = "") -> str:
    """Deterministic lead key: SHA-1 of `domain|primary_email`."""
    base = f"{domain}|{primary_email or ''}"
    return hashlib.sha1(base.encode("utf-8")).hexdigest()


def slugify(text: str, max_length: int = 80) -> str:
    """Convert a label to a dash-separated slug for spreadsheet titles."""
    slug = re.sub(r"[^a-z0-9]+", "-", (text or "").lower()).strip("-")
    return slug[:max_length] or "run"
