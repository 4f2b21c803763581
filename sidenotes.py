"""
Sidenotes with footnote-like syntax, as a markdown-it plugin.

Syntax:
  [>id]           numbered sidenote reference
  [>id]: content  numbered sidenote definition (inline markdown allowed)
  [>_id]          unnumbered sidenote reference
  [>_id]: content unnumbered sidenote definition

A definition must open a paragraph; it covers the rest of that line and is
removed from the document. References may appear before or after their
definition. References without a definition are left as literal text.
"""

from __future__ import annotations

import logging
import random
import re
import string
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from markdown_it import MarkdownIt
from markdown_it.rules_core import StateCore
from markdown_it.token import Token

logger = logging.getLogger(__name__)

DEFINITION_RE = re.compile(r"^\[>(_)?([^\]]+)\]:\s*")
# group 1: unnumbered id, group 2: numbered id
REFERENCE_RE = re.compile(r"\[>_([^\]]+)\]|\[>([^\]_][^\]]*)\]")

_BREAKS = ("softbreak", "hardbreak")
_ID_ALPHABET = string.ascii_lowercase + string.digits

IdFactory = Callable[[], str]


@dataclass
class SidenoteDefinition:
    key: str
    children: List[Token]
    unnumbered: bool


def random_sidenote_id() -> str:
    return "sidenote-" + "".join(random.choices(_ID_ALPHABET, k=9))


def sidenote_html(content_html: str, unnumbered: bool, sidenote_id: str) -> str:
    if unnumbered:
        return (
            f'<span class="sidenote-unnumbered-wrapper" data-sidenote-id="{sidenote_id}">'
            f'<span class="sidenote-unnumbered">{content_html}</span></span>'
        )
    return (
        f'<span class="sidenote-wrapper" data-sidenote-id="{sidenote_id}">'
        f'<input type="checkbox" class="margin-toggle" id="{sidenote_id}" />'
        f'<label class="sidenote-number" for="{sidenote_id}"></label>'
        f'<span class="sidenote"><span class="sidenote-number-copy text-primary dark:text-primary-dark"></span>'
        f"{content_html}</span></span>"
    )


def _split_first_line(children: List[Token]):
    for index, child in enumerate(children):
        if child.type in _BREAKS:
            return children[:index], children[index + 1:]
    return list(children), []


def collect_definitions(tokens: List[Token]) -> Tuple[List[Token], Dict[str, SidenoteDefinition]]:
    """
    First pass: pull definitions out of paragraphs. Returns the remaining
    tokens and the definitions keyed by id ('_' prefix for unnumbered).
    """
    definitions: Dict[str, SidenoteDefinition] = {}
    kept: List[Token] = []
    i = 0
    while i < len(tokens):
        token = tokens[i]
        is_paragraph = (
            token.type == "paragraph_open"
            and i + 2 < len(tokens)
            and tokens[i + 1].type == "inline"
            and tokens[i + 2].type == "paragraph_close"
        )
        if not is_paragraph:
            kept.append(token)
            i += 1
            continue

        inline = tokens[i + 1]
        children = inline.children or []
        first = children[0] if children else None
        match = DEFINITION_RE.match(first.content) if first is not None and first.type == "text" else None
        if not match:
            kept.extend(tokens[i:i + 3])
            i += 3
            continue

        unnumbered = match.group(1) == "_"
        key = f"_{match.group(2)}" if unnumbered else match.group(2)
        first.content = first.content[match.end():]
        line, rest = _split_first_line(children)
        if line and line[0].content == "" and line[0].type == "text":
            line = line[1:]
        if key in definitions:
            logger.debug("sidenote '%s' redefined; keeping the later definition", key)
        definitions[key] = SidenoteDefinition(key=key, children=line, unnumbered=unnumbered)

        if rest:
            inline.children = rest
            inline.content = inline.content.split("\n", 1)[1] if "\n" in inline.content else ""
            kept.extend(tokens[i:i + 3])
        i += 3
    return kept, definitions


def _replace_in_text(
    text: str,
    definitions: Dict[str, SidenoteDefinition],
    render: Callable[[SidenoteDefinition], str],
) -> Optional[List[Token]]:
    pieces: List[Token] = []
    last = 0
    replaced = False
    for match in REFERENCE_RE.finditer(text):
        if match.start() > last:
            pieces.append(_text_token(text[last:match.start()]))
        key = f"_{match.group(1)}" if match.group(1) is not None else match.group(2)
        definition = definitions.get(key)
        if definition is None:
            pieces.append(_text_token(match.group(0)))
        else:
            html = Token("html_inline", "", 0)
            html.content = render(definition)
            pieces.append(html)
            replaced = True
        last = match.end()
    if not replaced:
        return None
    if last < len(text):
        pieces.append(_text_token(text[last:]))
    return pieces


def _text_token(content: str) -> Token:
    token = Token("text", "", 0)
    token.content = content
    return token


def replace_references(
    tokens: List[Token],
    definitions: Dict[str, SidenoteDefinition],
    render: Callable[[SidenoteDefinition], str],
) -> None:
    """Second pass: swap [>id] / [>_id] in text runs for sidenote markup."""
    for token in tokens:
        if token.type != "inline" or not token.children:
            continue
        children: List[Token] = []
        for child in token.children:
            if child.type == "text" and child.content:
                pieces = _replace_in_text(child.content, definitions, render)
                if pieces is not None:
                    children.extend(pieces)
                    continue
            children.append(child)
        token.children = children


def sidenotes_plugin(md: MarkdownIt, id_factory: Optional[IdFactory] = None) -> None:
    make_id = id_factory or random_sidenote_id

    def sidenotes(state: StateCore) -> None:
        tokens, definitions = collect_definitions(state.tokens)
        if not definitions:
            return

        def render(definition: SidenoteDefinition) -> str:
            content = state.md.renderer.renderInline(definition.children, state.md.options, state.env)
            return sidenote_html(content, definition.unnumbered, make_id())

        replace_references(tokens, definitions, render)
        state.tokens[:] = tokens

    md.core.ruler.push("sidenotes", sidenotes)


def create_markdown(id_factory: Optional[IdFactory] = None) -> MarkdownIt:
    # "[>id]: text" would otherwise parse as a link reference definition.
    md = MarkdownIt("commonmark").disable("reference")
    md.use(sidenotes_plugin, id_factory=id_factory)
    return md


def render_markdown(text: str, id_factory: Optional[IdFactory] = None) -> str:
    return create_markdown(id_factory).render(text)
