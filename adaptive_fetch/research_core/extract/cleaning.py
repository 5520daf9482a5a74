from __future__ import annotations

import re

from bs4 import BeautifulSoup

DROPPED_TAGS = ("script", "style", "noscript", "template", "svg", "iframe")


def _normalize_text(text: str) -> str:
    text = text.replace("\xa0", " ")
    text = re.sub(r"\r\n?", "\n", text)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def looks_like_html(raw: str) -> bool:
    head = raw[:2000].lower()
    return "<html" in head or "<body" in head or "<!doctype html" in head


def clean_content(raw: str) -> str:
    """Reduce a fetched page to readable text; non-HTML input is only normalized."""
    if not looks_like_html(raw):
        return _normalize_text(raw)

    soup = BeautifulSoup(raw, "html.parser")
    for tag in soup(DROPPED_TAGS):
        tag.decompose()
    body = soup.body or soup
    return _normalize_text(body.get_text("\n"))
