# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Markup structural extractor: raw HTML -> DomStructure.

Four independent passes (header, hero, sections, footer) over one lxml parse.
Each pass is an ordered list of first-match-wins rules, so the result is a
pragmatic, lossy reading of the page rather than a faithful outline.

Never raises: empty or unparsable markup yields an empty DomStructure.
"""

from __future__ import annotations

import copy
import html
import logging
import re
from collections.abc import Iterator

import lxml.html
from lxml import etree

from . import (
    Button,
    DomSection,
    DomStructure,
    Footer,
    Header,
    Heading,
    Hero,
    Image,
    Link,
    TextBlock,
)
from .text_cleaner import collapse_text, split_classes

logger = logging.getLogger(__name__)

MAX_HEADER_LINKS = 10  # only applied when the header has no <nav>
MAIN_SCAN_CHARS = 3000  # hero fallback: leading markup of <main>
MIN_PARAGRAPH_CHARS = 10  # section paragraphs must be longer than this

_HEADING_TAGS = frozenset({"h1", "h2", "h3", "h4", "h5", "h6"})
_ICON_SRC_RE = re.compile(r"icon|logo|avatar", re.IGNORECASE)
_COPYRIGHT_RE = re.compile(r"©|copyright", re.IGNORECASE)

# (tag, class substrings) in priority order
_HERO_CONTAINERS: tuple[tuple[str, str], ...] = (
    ("section", "hero"),
    ("div", "hero"),
    ("section", "jumbotron"),
    ("div", "jumbotron"),
    ("section", "banner"),
    ("div", "banner"),
)
_CTA_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("a", ("btn", "button", "cta")),
    ("button", ("btn", "button", "cta")),
    ("a", ("primary",)),
)
# (tag, class substrings or None for any) scanned in this order
_SECTION_PASSES: tuple[tuple[str, tuple[str, ...] | None], ...] = (
    ("section", None),
    ("article", None),
    ("div", ("section", "content-block", "container")),
)
_SECTION_SKIP_CLASSES = ("hero", "header", "footer", "nav")
_COPYRIGHT_CLASS_TAGS = ("p", "div", "span")


# ---------------------------------------------------------------------------
# Tree helpers
# ---------------------------------------------------------------------------


def parse_html(raw_html: str | bytes) -> lxml.html.HtmlElement | None:
    """Parse markup with the recovering HTML parser. Returns None when empty/unparsable."""
    if isinstance(raw_html, str):
        if not raw_html.strip():
            return None
        raw_html = raw_html.encode("utf-8")
    elif not raw_html or not raw_html.strip():
        return None
    try:
        parser = lxml.html.HTMLParser(recover=True, encoding="utf-8")
        return lxml.html.document_fromstring(raw_html, parser=parser)
    except (etree.ParserError, ValueError) as e:
        logger.debug("HTML parse failed: %s", e)
        return None


def _as_tree(source: lxml.html.HtmlElement | str) -> lxml.html.HtmlElement | None:
    if isinstance(source, str):
        return parse_html(source)
    return source


def _first(el: lxml.html.HtmlElement, *tags: str) -> lxml.html.HtmlElement | None:
    """First descendant (document order) with one of *tags*."""
    return next(el.iterdescendants(*tags), None)


def _has_class(el: lxml.html.HtmlElement, needles: tuple[str, ...]) -> bool:
    cls = (el.get("class") or "").lower()
    return any(n in cls for n in needles)


def _text(el: lxml.html.HtmlElement) -> str:
    return collapse_text(el.text_content())


def _image(el: lxml.html.HtmlElement) -> Image:
    return Image(
        src=el.get("src") or "",
        alt=el.get("alt") or "",
        width=el.get("width") or "",
        height=el.get("height") or "",
        classes=split_classes(el.get("class")),
    )


def _heading(el: lxml.html.HtmlElement) -> Heading:
    return Heading(
        text=_text(el),
        html_tag=el.tag,
        id=el.get("id") or "",
        classes=split_classes(el.get("class")),
    )


def _button(el: lxml.html.HtmlElement) -> Button:
    return Button(
        text=_text(el),
        href=el.get("href") or "",
        type="link" if el.tag == "a" else "button",
        classes=split_classes(el.get("class")),
    )


def _text_block(el: lxml.html.HtmlElement) -> TextBlock:
    return TextBlock(text=_text(el), classes=split_classes(el.get("class")))


def _inner_fragment(el: lxml.html.HtmlElement, max_chars: int) -> lxml.html.HtmlElement | None:
    """Re-parse the first *max_chars* of el's inner markup (truncation may cut a tag)."""
    inner = html.escape(el.text or "", quote=False)
    inner += "".join(etree.tostring(child, encoding="unicode", method="html") for child in el)
    inner = inner[:max_chars]
    if not inner.strip():
        return None
    try:
        return lxml.html.fragment_fromstring(inner, create_parent="div")
    except (etree.ParserError, ValueError):
        return None


# ---------------------------------------------------------------------------
# Links (shared)
# ---------------------------------------------------------------------------


def extract_links(source: lxml.html.HtmlElement | str) -> list[Link]:
    """All anchors with text and a non-fragment href, de-duplicated by ``text|href``."""
    root = _as_tree(source)
    if root is None:
        return []
    links: list[Link] = []
    seen: set[str] = set()
    for a in root.iter("a"):
        text = _text(a)
        href = a.get("href") or ""
        if not text or not href or href.startswith("#"):
            continue
        link = Link(
            text=text,
            href=href,
            target=a.get("target") or "",
            classes=split_classes(a.get("class")),
            aria_label=a.get("aria-label") or "",
        )
        if link.dedup_key in seen:
            continue
        seen.add(link.dedup_key)
        links.append(link)
    return links


# ---------------------------------------------------------------------------
# Header
# ---------------------------------------------------------------------------


def _find_logo(region: lxml.html.HtmlElement) -> Image | None:
    for img in region.iterdescendants("img"):
        if _has_class(img, ("logo",)):
            return _image(img)
    for wrapper_tag in ("a", "div"):
        for wrapper in region.iterdescendants(wrapper_tag):
            if not _has_class(wrapper, ("logo",)):
                continue
            img = _first(wrapper, "img")
            if img is not None:
                return _image(img)
    for img in region.iterdescendants("img"):
        if "logo" in (img.get("id") or "").lower():
            return _image(img)
    return None


def extract_header(source: lxml.html.HtmlElement | str) -> Header:
    doc = _as_tree(source)
    header = Header()
    if doc is None:
        return header
    region = next(doc.iter("header"), None)
    if region is None:
        return header

    header.logo = _find_logo(region)

    nav = _first(region, "nav")
    if nav is not None:
        header.nav_links = extract_links(nav)
    else:
        links = [link for link in extract_links(region) if link.href not in ("#", "/") or link.text]
        header.nav_links = links[:MAX_HEADER_LINKS]
    return header


# ---------------------------------------------------------------------------
# Hero
# ---------------------------------------------------------------------------


def _hero_candidates(doc: lxml.html.HtmlElement) -> Iterator[lxml.html.HtmlElement]:
    for tag, needle in _HERO_CONTAINERS:
        match = next((el for el in doc.iter(tag) if _has_class(el, (needle,))), None)
        if match is not None:
            yield match
    match = next((el for el in doc.iter("section") if el.get("id") == "hero"), None)
    if match is not None:
        yield match
    main = next(doc.iter("main"), None)
    if main is not None:
        fragment = _inner_fragment(main, MAIN_SCAN_CHARS)
        if fragment is not None:
            yield fragment


def _find_cta(container: lxml.html.HtmlElement) -> Button | None:
    for tag, needles in _CTA_RULES:
        for el in container.iterdescendants(tag):
            if _has_class(el, needles):
                return _button(el)
    return None


def extract_hero(source: lxml.html.HtmlElement | str) -> Hero:
    """First container yielding a heading or an image wins.

    Values found in earlier, unsuccessful containers (e.g. a lone button)
    are kept unless a later container overwrites them.
    """
    doc = _as_tree(source)
    hero = Hero()
    if doc is None:
        return hero

    for container in _hero_candidates(doc):
        heading_el = _first(container, "h1")
        if heading_el is None:
            heading_el = _first(container, "h2")
        if heading_el is not None:
            hero.heading = _heading(heading_el)

        for img in container.iterdescendants("img"):
            if not _ICON_SRC_RE.search(img.get("src") or ""):
                hero.image = _image(img)
                break

        cta = _find_cta(container)
        if cta is not None:
            hero.button = cta

        if hero.heading is not None or hero.image is not None:
            break
    return hero


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


def _section_from_block(block: lxml.html.HtmlElement, index: int) -> DomSection:
    section = DomSection(index=index)

    heading_el = next((d for d in block.iterdescendants() if d.tag in _HEADING_TAGS), None)
    if heading_el is not None:
        section.heading = _heading(heading_el)

    for p in block.iterdescendants("p"):
        text = _text(p)
        if len(text) > MIN_PARAGRAPH_CHARS:
            section.texts.append(TextBlock(text=text, classes=split_classes(p.get("class"))))

    list_el = _first(block, "ul", "ol")
    if list_el is not None:
        items = [_text_block(li) for li in list_el.iterchildren("li")]
        items = [item for item in items if item.text]
        if items:
            section.list_items = items
    return section


def extract_sections(source: lxml.html.HtmlElement | str) -> list[DomSection]:
    """Content blocks outside header/footer, indexed across all passes.

    Passes are not de-duplicated against each other: a ``div.section``
    nested in a ``<section>`` is reported twice.
    """
    doc = _as_tree(source)
    if doc is None:
        return []
    body = copy.deepcopy(doc)
    for region in list(body.iter("header", "footer")):
        region.drop_tree()

    sections: list[DomSection] = []
    index = 0
    for tag, needles in _SECTION_PASSES:
        for block in body.iter(tag):
            if needles is not None and not _has_class(block, needles):
                continue
            if _has_class(block, _SECTION_SKIP_CLASSES):
                continue
            section = _section_from_block(block, index)
            if section.is_empty:
                continue
            sections.append(section)
            index += 1
    return sections


# ---------------------------------------------------------------------------
# Footer
# ---------------------------------------------------------------------------


def _find_footer_text(region: lxml.html.HtmlElement) -> TextBlock | None:
    for tag in _COPYRIGHT_CLASS_TAGS:
        el = next((e for e in region.iterdescendants(tag) if _has_class(e, ("copy",))), None)
        if el is not None:
            return _text_block(el)
    el = next((p for p in region.iterdescendants("p") if _COPYRIGHT_RE.search(p.text_content())), None)
    if el is not None:
        return _text_block(el)
    el = _first(region, "p")
    if el is not None:
        return _text_block(el)
    return None


def extract_footer(source: lxml.html.HtmlElement | str) -> Footer:
    doc = _as_tree(source)
    footer = Footer()
    if doc is None:
        return footer
    region = next(doc.iter("footer"), None)
    if region is None:
        return footer
    footer.text = _find_footer_text(region)
    footer.links = extract_links(region)
    return footer


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def extract_structure(raw_html: str | bytes, url: str = "") -> DomStructure:
    """Derive header/hero/sections/footer from raw HTML."""
    doc = parse_html(raw_html)
    if doc is None:
        logger.debug("Empty or unparsable HTML for %s", url or "<inline>")
        return DomStructure(url=url)

    structure = DomStructure(
        header=extract_header(doc),
        hero=extract_hero(doc),
        sections=extract_sections(doc),
        footer=extract_footer(doc),
        url=url,
    )
    logger.debug(
        "DOM structure: logo=%s nav_links=%d hero_heading=%s sections=%d footer_links=%d",
        structure.header.logo is not None,
        len(structure.header.nav_links),
        structure.hero.heading is not None,
        len(structure.sections),
        len(structure.footer.links),
    )
    return structure
