"""
HTML extraction for crawled pages, backed by BeautifulSoup.
"""
import re
from functools import cached_property
from typing import Dict, List, Optional

from bs4 import BeautifulSoup

HEADING_TAGS = ("h1", "h2", "h3")

_WHITESPACE = re.compile(r"\s+")


def clean_text(text: Optional[str]) -> str:
    if not text:
        return ""
    return _WHITESPACE.sub(" ", text).strip()


def unique(values: List[str]) -> List[str]:
    return list(dict.fromkeys(values))


class ParsedPage:
    """
    Read-only view over one HTML document.

    Every accessor returns raw attribute values; URL resolution and
    classification belong to the crawler.
    """

    def __init__(self, html: str):
        self.soup = BeautifulSoup(html, "html.parser")

    @property
    def title(self) -> Optional[str]:
        tag = self.soup.find("title")
        text = clean_text(tag.get_text()) if tag else ""
        return text or None

    @property
    def description(self) -> Optional[str]:
        return self.meta.get("description") or None

    @property
    def keywords(self) -> List[str]:
        raw = self.meta.get("keywords", "")
        return [keyword.strip() for keyword in raw.split(",") if keyword.strip()]

    @cached_property
    def meta(self) -> Dict[str, str]:
        meta: Dict[str, str] = {}
        for tag in self.soup.find_all("meta"):
            key = tag.get("name") or tag.get("property")
            content = tag.get("content")
            if key and content:
                meta[key.strip().lower()] = clean_text(content)
        return meta

    def headings(self, tag: str) -> List[str]:
        texts = [clean_text(el.get_text(" ")) for el in self.soup.find_all(tag)]
        return [text for text in texts if text]

    @property
    def hrefs(self) -> List[str]:
        return [a.get("href") for a in self.soup.find_all("a", href=True)]

    @property
    def images(self) -> List[str]:
        return unique([img.get("src") for img in self.soup.find_all("img", src=True)])

    @property
    def scripts(self) -> List[str]:
        return unique([script.get("src") for script in self.soup.find_all("script", src=True)])

    @property
    def stylesheets(self) -> List[str]:
        hrefs = []
        for link in self.soup.find_all("link", href=True):
            rel = link.get("rel") or []
            if isinstance(rel, str):
                rel = rel.split()
            if "stylesheet" in [value.lower() for value in rel]:
                hrefs.append(link.get("href"))
        return unique(hrefs)
