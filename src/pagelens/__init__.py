# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""PageLens: schema-conformant semantic structure for web pages.

Turns a page's markup and screenshot into a tree of named sections with typed,
intent-annotated elements:
- DomStructure: header/hero/sections/footer derived from markup patterns
- AnalyzedPage: the strict, sanitized result of reconciling markup and vision
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any


@dataclass
class Image:
    """An <img> captured from the markup."""

    src: str = ""
    alt: str = ""
    width: str = ""
    height: str = ""
    classes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "src": self.src,
            "alt": self.alt,
            "width": self.width,
            "height": self.height,
            "classes": list(self.classes),
        }


@dataclass
class Link:
    """An anchor with visible text and a navigable href."""

    text: str
    href: str
    target: str = ""
    classes: list[str] = field(default_factory=list)
    aria_label: str = ""

    @property
    def dedup_key(self) -> str:
        return f"{self.text}|{self.href}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "href": self.href,
            "target": self.target,
            "classes": list(self.classes),
            "ariaLabel": self.aria_label,
        }


@dataclass
class Button:
    """A call-to-action: an anchor ("link") or a <button> ("button")."""

    text: str = ""
    href: str = ""
    type: str = "button"  # link | button
    classes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "href": self.href, "type": self.type, "classes": list(self.classes)}


@dataclass
class Heading:
    text: str
    html_tag: str  # h1..h6
    id: str = ""
    classes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "htmlTag": self.html_tag, "id": self.id, "classes": list(self.classes)}


@dataclass
class TextBlock:
    text: str
    classes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "classes": list(self.classes)}


@dataclass
class Header:
    logo: Image | None = None
    nav_links: list[Link] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "logo": self.logo.to_dict() if self.logo else None,
            "navLinks": [link.to_dict() for link in self.nav_links],
        }


@dataclass
class Hero:
    heading: Heading | None = None
    image: Image | None = None
    button: Button | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "heading": self.heading.to_dict() if self.heading else None,
            "image": self.image.to_dict() if self.image else None,
            "button": self.button.to_dict() if self.button else None,
        }


@dataclass
class DomSection:
    """A content block found by the section heuristics."""

    index: int
    heading: Heading | None = None
    texts: list[TextBlock] = field(default_factory=list)
    list_items: list[TextBlock] | None = None  # None when the block has no list

    @property
    def is_empty(self) -> bool:
        return self.heading is None and not self.texts and self.list_items is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "heading": self.heading.to_dict() if self.heading else None,
            "texts": [t.to_dict() for t in self.texts],
            "list": {"items": [i.to_dict() for i in self.list_items]} if self.list_items is not None else None,
        }


@dataclass
class Footer:
    text: TextBlock | None = None
    links: list[Link] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text.to_dict() if self.text else None,
            "links": [link.to_dict() for link in self.links],
        }


@dataclass
class DomStructure:
    """Page structure derived purely from markup pattern matching."""

    header: Header = field(default_factory=Header)
    hero: Hero = field(default_factory=Hero)
    sections: list[DomSection] = field(default_factory=list)
    footer: Footer = field(default_factory=Footer)
    url: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "header": self.header.to_dict(),
            "hero": self.hero.to_dict(),
            "sections": [s.to_dict() for s in self.sections],
            "footer": self.footer.to_dict(),
            "url": self.url,
        }


@dataclass(frozen=True)
class Screenshot:
    """Captured page image: raw bytes plus their MIME type."""

    data: bytes
    mime: str = "image/jpeg"

    @property
    def base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def to_payload(self) -> dict[str, str]:
        """``{"mime", "base64"}`` as embedded in responses and generic AI requests."""
        return {"mime": self.mime, "base64": self.base64}

    @classmethod
    def from_base64(cls, encoded: str, mime: str = "image/jpeg") -> Screenshot:
        """Decode *encoded*; raises binascii.Error on malformed input."""
        return cls(data=base64.b64decode("".join(encoded.split()), validate=True), mime=mime or "image/jpeg")
