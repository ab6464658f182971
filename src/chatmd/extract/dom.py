"""HTML tree helpers shared by the extractors.

The extractors only need a handful of tree operations: parse a fragment into a
mutable tree, find elements, swap an element for an inert placeholder and
serialize the result back to a string. They are kept here so the extractors do
not depend on parser details directly.
"""

from __future__ import annotations

from bs4 import BeautifulSoup, Tag

TREE_BUILDER = "html5lib"


def clean_input(html: str) -> str:
    """Return ``html`` with lone surrogates replaced so every parser accepts it."""

    return html.encode("utf-8", errors="replace").decode("utf-8", errors="replace")


def parse_fragment(html: str) -> Tag:
    """Parse an HTML fragment and return the element holding its nodes.

    html5lib applies the same implied-end-tag rules as a browser, so minified
    tables (``<tr>``/``<td>`` without closing tags) come out well formed.
    """

    soup = BeautifulSoup(clean_input(html or ""), TREE_BUILDER)
    return soup.body if soup.body is not None else soup


def serialize(container: Tag) -> str:
    return container.decode_contents()


def replace_with_token(node: Tag, token: str) -> None:
    """Replace ``node`` with a ``<span>`` whose only content is ``token``."""

    span = BeautifulSoup("", TREE_BUILDER).new_tag("span")
    span.string = token
    node.replace_with(span)


def class_list(node: Tag) -> list[str]:
    classes = node.get("class") or []
    if isinstance(classes, str):
        return classes.split()
    return list(classes)
