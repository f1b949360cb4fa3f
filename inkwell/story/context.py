"""
Context assembly -- turns story material into prompt text.

Two kinds of bundle are produced:

* Codex context: lore entries rendered as ``<codex>`` XML.  With
  ``include_all=False`` entries are ranked by relevance to the current text
  and kept while they fit the token budget; the number left out is reported
  as ``dropped_entry_count``.  With ``include_all=True`` nothing is dropped.
* Custom context: scenes the user picked by hand, optionally preceded by the
  story outline, cut at a character ceiling.

All text is sanitised first: inline ``data:image`` payloads are replaced by
placeholders before anything is counted or rendered.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from html.parser import HTMLParser

from inkwell.llm.token_counter import TokenCounter
from inkwell.prompts.structured import escape_xml, sanitize_tag_name
from inkwell.story.store import CodexCategory, CodexEntry, SceneContext, StoryStore
from inkwell.types import ContextBundle

logger = logging.getLogger(__name__)

MAX_CUSTOM_CONTEXT_CHARS = 100_000

NOTES_CATEGORY_KEYWORDS = ("notizen", "notes", "note")

CATEGORY_TAGS: dict[str, str] = {
    "Characters": "character",
    "Locations": "location",
    "Objects": "item",
    "Notes": "other",
}

IMPORTANCE_MAJOR = "major"
IMPORTANCE_MINOR = "minor"
IMPORTANCE_BACKGROUND = "background"

IMPORTANCE_WEIGHTS: dict[str, float] = {
    IMPORTANCE_MAJOR: 1.5,
    IMPORTANCE_MINOR: 1.0,
    IMPORTANCE_BACKGROUND: 0.5,
}

TITLE_WEIGHT = 10.0
ALIAS_WEIGHT = 8.0
KEYWORD_WEIGHT = 3.0
# Mentions in the user's prompt count more than mentions in the scene text.
PROMPT_WEIGHT = 2.0

_IMG_TAG_RE = re.compile(
    r"""<img\b[^>]*?\bsrc\s*=\s*(?:"\s*data:image/[^"]*"|'\s*data:image/[^']*')[^>]*>""",
    re.IGNORECASE,
)
_MD_IMAGE_RE = re.compile(r"!\[[^\]]*\]\(\s*data:image/[^)]*\)", re.IGNORECASE)
# Any inline image URI, base64 or percent-encoded, of any length.
_DATA_URI_RE = re.compile(
    r"""data:image/[^;,\s]+(?:;[A-Za-z0-9=.+-]+)*,[^\s"'<>)]*""",
    re.IGNORECASE,
)


# ---------------------------------------------------------------------------
# Text sanitising
# ---------------------------------------------------------------------------

def strip_embedded_images(text: str) -> str:
    """Replace inline image payloads (data URIs) with placeholder text."""
    if not text:
        return ""
    text = _IMG_TAG_RE.sub("[Image removed]", text)
    text = _MD_IMAGE_RE.sub("[Image removed]", text)
    return _DATA_URI_RE.sub("[Image data removed]", text)


class _TextExtractor(HTMLParser):
    _BLOCK_TAGS = frozenset(
        {"p", "div", "br", "li", "h1", "h2", "h3", "h4", "h5", "h6", "blockquote", "tr"}
    )
    _SKIP_TAGS = frozenset({"script", "style"})

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.parts: list[str] = []
        self._skip_depth = 0

    def handle_starttag(self, tag, attrs):
        if tag in self._SKIP_TAGS:
            self._skip_depth += 1
        elif tag in self._BLOCK_TAGS:
            self.parts.append("\n")

    def handle_endtag(self, tag):
        if tag in self._SKIP_TAGS:
            self._skip_depth = max(0, self._skip_depth - 1)
        elif tag in self._BLOCK_TAGS:
            self.parts.append("\n")

    def handle_data(self, data):
        if not self._skip_depth:
            self.parts.append(data)


def html_to_text(html: str) -> str:
    """Flatten rich-text HTML to plain text with paragraph breaks."""
    if not html:
        return ""
    if "<" not in html and "&" not in html:
        return html.strip()
    parser = _TextExtractor()
    parser.feed(html)
    parser.close()
    text = "".join(parser.parts)
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def clean_text(text: str) -> str:
    """Strip images, then flatten HTML."""
    return html_to_text(strip_embedded_images(text))


def truncate_text(text: str, limit: int) -> tuple[str, bool]:
    """Cut *text* at *limit* characters; the flag tells whether it was cut."""
    if len(text) <= limit:
        return text, False
    return text[:limit], True


# ---------------------------------------------------------------------------
# Codex rendering
# ---------------------------------------------------------------------------

def is_notes_category(name: str) -> bool:
    lowered = name.lower()
    return any(keyword in lowered for keyword in NOTES_CATEGORY_KEYWORDS)


def _field_text(value: object) -> str:
    return escape_xml(strip_embedded_images("" if value is None else str(value)))


def render_entry(entry: CodexEntry, category: str) -> str:
    tag = CATEGORY_TAGS.get(category, "other")
    meta = entry.metadata or {}
    xml = f'<{tag} name="{_field_text(entry.title)}"'
    if meta.get("aliases"):
        xml += f' aliases="{_field_text(meta["aliases"])}"'
    if meta.get("storyRole") and category == "Characters":
        xml += f' storyRole="{_field_text(meta["storyRole"])}"'
    xml += ">\n"

    content = strip_embedded_images(entry.content)
    if content:
        xml += f"  <description>{escape_xml(content)}</description>\n"

    custom_fields = meta.get("customFields") or []
    if isinstance(custom_fields, list):
        for custom in custom_fields:
            if not isinstance(custom, dict):
                continue
            name = sanitize_tag_name(custom.get("name"))
            if name:
                xml += f"  <{name}>{_field_text(custom.get('value'))}</{name}>\n"

    for key, value in meta.items():
        if key in ("storyRole", "customFields", "aliases"):
            continue
        if value is None or value == "":
            continue
        name = sanitize_tag_name(key)
        if name:
            xml += f"  <{name}>{_field_text(value)}</{name}>\n"

    xml += f"</{tag}>"
    return xml


def render_codex(categories: list[CodexCategory]) -> str:
    blocks = [
        render_entry(entry, category.name)
        for category in categories
        for entry in category.entries
    ]
    if not blocks:
        return ""
    return "<codex>\n" + "\n".join(blocks) + "\n</codex>"


# ---------------------------------------------------------------------------
# Relevance
# ---------------------------------------------------------------------------

@dataclass
class ScoredEntry:
    entry: CodexEntry
    category: str
    score: float
    pinned: bool
    position: int


def entry_importance(entry: CodexEntry) -> str:
    role = entry.story_role
    if role in ("Protagonist", "Antagonist"):
        return IMPORTANCE_MAJOR
    if role in ("Background", "Hintergrundcharakter"):
        return IMPORTANCE_BACKGROUND
    return IMPORTANCE_MINOR


def entry_keywords(entry: CodexEntry) -> list[str]:
    keywords = [t for t in entry.tags if t]
    keywords.extend(w.lower() for w in entry.title.split() if len(w) > 3)
    return keywords


def _count_mentions(term: str, haystack: str) -> int:
    term = term.strip()
    if not term or not haystack:
        return 0
    pattern = r"(?<!\w)" + re.escape(term) + r"(?!\w)"
    return len(re.findall(pattern, haystack, re.IGNORECASE))


def score_entry(entry: CodexEntry, text: str, prompt_context: str = "") -> float:
    """
    Relevance of *entry* to the text being generated.

    Mentions of the title, aliases and keywords are weighted and summed over
    the scene text and (at a higher weight) the prompt, then scaled by the
    entry's importance.  Zero means not mentioned at all.
    """

    def _mentions(haystack: str) -> float:
        score = TITLE_WEIGHT * _count_mentions(entry.title, haystack)
        for alias in entry.aliases:
            score += ALIAS_WEIGHT * _count_mentions(alias, haystack)
        for keyword in entry_keywords(entry):
            score += KEYWORD_WEIGHT * _count_mentions(keyword, haystack)
        return score

    raw = _mentions(text) + PROMPT_WEIGHT * _mentions(prompt_context)
    return raw * IMPORTANCE_WEIGHTS[entry_importance(entry)]


def _is_pinned(entry: CodexEntry, category: str) -> bool:
    return (
        entry.always_include
        or bool(entry.metadata.get("globalInclude"))
        or is_notes_category(category)
    )


# ---------------------------------------------------------------------------
# Assembler
# ---------------------------------------------------------------------------

class ContextAssembler:
    """
    Builds :class:`ContextBundle` values from a :class:`StoryStore`.

    Parameters
    ----------
    store:
        Source of codex entries; read once per build.
    token_counter:
        Sizes rendered entries against the budget (heuristic by default).
    """

    def __init__(self, store: StoryStore, token_counter: TokenCounter | None = None) -> None:
        self._store = store
        self._counter = token_counter or TokenCounter()

    def build_codex_context(
        self,
        scope: str,
        text: str,
        prompt_context: str = "",
        token_budget: int = 1000,
        include_all: bool = False,
    ) -> ContextBundle:
        """
        Render the codex for *scope*.

        Parameters
        ----------
        scope:
            Story id whose entries are used.
        text:
            Scene or beat text the entries are ranked against.
        prompt_context:
            The user's prompt or instruction; mentions here weigh more.
        token_budget:
            Size limit for relevance-selected entries.  Always-include
            entries and the notes category do not count against it.
        include_all:
            Keep every entry regardless of relevance and budget.
        """
        categories = [c for c in self._store.get_entries(scope) if c.entries]
        total = sum(len(c.entries) for c in categories)
        if total == 0:
            return ContextBundle(rendered="", total_entry_count=0)

        if include_all:
            return ContextBundle(
                rendered=render_codex(categories),
                dropped_entry_count=0,
                total_entry_count=total,
            )

        text = strip_embedded_images(text)
        prompt_context = strip_embedded_images(prompt_context)

        scored: list[ScoredEntry] = []
        position = 0
        for category in categories:
            for entry in category.entries:
                pinned = _is_pinned(entry, category.name)
                score = 0.0 if pinned else score_entry(entry, text, prompt_context)
                scored.append(ScoredEntry(entry, category.name, score, pinned, position))
                position += 1

        kept: set[int] = {s.position for s in scored if s.pinned}
        used = 0
        candidates = sorted(
            (s for s in scored if not s.pinned and s.score > 0),
            key=lambda s: (-s.score, s.position),
        )
        for candidate in candidates:
            cost = self._counter.count_text(render_entry(candidate.entry, candidate.category))
            if used + cost > token_budget:
                continue
            used += cost
            kept.add(candidate.position)

        filtered: list[CodexCategory] = []
        start = 0
        for category in categories:
            chunk = scored[start:start + len(category.entries)]
            start += len(category.entries)
            entries = [s.entry for s in chunk if s.position in kept]
            if entries:
                filtered.append(CodexCategory(name=category.name, entries=entries))

        dropped = total - len(kept)
        if dropped:
            logger.debug(
                "Codex context for %s: kept %d of %d entries (%d tokens)",
                scope, len(kept), total, used,
            )
        return ContextBundle(
            rendered=render_codex(filtered),
            dropped_entry_count=dropped,
            total_entry_count=total,
        )

    def build_custom_context(
        self,
        selected: list[SceneContext],
        outline: str = "",
        max_chars: int = MAX_CUSTOM_CONTEXT_CHARS,
    ) -> ContextBundle:
        """
        Render user-selected scenes (and optionally the outline) as text.

        Scenes are taken in order until *max_chars* is reached; the scene
        crossing the limit is cut and the rest are counted as dropped.
        """
        parts: list[str] = []
        remaining = max_chars
        truncated = False
        dropped = 0

        if outline:
            outline_text, cut = truncate_text(clean_text(outline), remaining)
            parts.append(f"<storyOutline>\n{outline_text}\n</storyOutline>")
            remaining -= len(outline_text)
            truncated = truncated or cut

        for scene in selected:
            if remaining <= 0:
                dropped += 1
                continue
            content, cut = truncate_text(clean_text(scene.content), remaining)
            remaining -= len(content)
            truncated = truncated or cut
            title = f' title="{escape_xml(scene.title)}"' if scene.title else ""
            parts.append(
                f'<scene id="{escape_xml(scene.scene_id)}"{title}>\n'
                f"{escape_xml(content)}\n</scene>"
            )

        return ContextBundle(
            rendered="\n\n".join(parts),
            dropped_entry_count=dropped,
            total_entry_count=len(selected),
            truncated=truncated,
        )
