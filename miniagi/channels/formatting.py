"""Rich-text formatting: marker syntax to plain text plus format spans.

Agents answer with a small subset of markdown (fenced blocks, inline code and
bold) and occasionally with the equivalent HTML tags. Chat transports such as
Telegram want plain text and a list of entities instead, so the formatter
strips the markers and records where each formatted run landed in the output.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Iterable, Literal

SpanKind = Literal["bold", "code", "pre"]

TRUNCATION_MARKER = "\n\n... (truncated)"

# Openers are tried longest first so "```" never reads as three inline markers.
_MARKERS: tuple[tuple[str, SpanKind], ...] = (
    ("```", "pre"),
    ("**", "bold"),
    ("`", "code"),
)

_SPECIAL_RE = re.compile(r"[`*]")
_BLANK_RUN_RE = re.compile(r"\n{3,}")
_LANGUAGE_RE = re.compile(r"^[A-Za-z0-9_+#.-]+$")

_PRE_CODE_RE = re.compile(
    r"<pre>\s*<code(?:\s+class=[\"'](?:language-)?([\w+#.-]+)[\"'])?\s*>(.*?)</code>\s*</pre>",
    re.IGNORECASE | re.DOTALL,
)
_BOLD_TAG_RE = re.compile(r"</?(?:b|strong)>", re.IGNORECASE)
_CODE_TAG_RE = re.compile(r"</?code>", re.IGNORECASE)
_PRE_TAG_RE = re.compile(r"</?pre>", re.IGNORECASE)

_ENTITIES = {
    "&lt;": "<",
    "&gt;": ">",
    "&quot;": '"',
    "&#39;": "'",
    "&apos;": "'",
    "&nbsp;": " ",
}
_ENTITY_RE = re.compile("|".join(re.escape(e) for e in _ENTITIES))

# Fenced and inline code, left untouched by tag and entity rewriting.
_CODE_REGION_RE = re.compile(r"```.*?```|`[^`]*`", re.DOTALL)


@dataclass(frozen=True)
class FormatSpan:
    """A formatted run over the output plain text."""

    kind: SpanKind
    offset: int
    length: int
    language: str | None = None

    @property
    def end(self) -> int:
        return self.offset + self.length


@dataclass(frozen=True)
class FormattedText:
    text: str
    spans: tuple[FormatSpan, ...] = ()

    def __len__(self) -> int:
        return len(self.text)


def _pre_code_to_fence(match: re.Match) -> str:
    language, body = match.group(1), match.group(2)
    return f"```{language or ''}\n{body}```"


def _normalize_prose(text: str) -> str:
    text = _PRE_CODE_RE.sub(_pre_code_to_fence, text)
    text = _BOLD_TAG_RE.sub("**", text)
    text = _PRE_TAG_RE.sub("```", text)
    text = _CODE_TAG_RE.sub("`", text)
    text = _ENTITY_RE.sub(lambda m: _ENTITIES[m.group(0)], text)
    # Decoded last so "&amp;lt;" stays a literal "&lt;".
    return text.replace("&amp;", "&")


def normalize_markup(raw: str) -> str:
    """Rewrite legacy tags and character entities into the marker syntax.

    Text already inside backtick code is kept as typed.
    """
    text = raw.replace("\r\n", "\n")
    parts = []
    last = 0
    for match in _CODE_REGION_RE.finditer(text):
        parts.append(_normalize_prose(text[last:match.start()]))
        parts.append(match.group(0))
        last = match.end()
    parts.append(_normalize_prose(text[last:]))
    return "".join(parts)


def _strip_language(inner: str) -> tuple[str, str | None]:
    newline = inner.find("\n")
    if newline == -1:
        return inner, None
    first_line = inner[:newline].strip()
    if first_line == "":
        return inner[newline + 1:], None
    if _LANGUAGE_RE.match(first_line):
        return inner[newline + 1:], first_line
    return inner, None


def _scan(source: str) -> tuple[str, list[FormatSpan]]:
    out: list[str] = []
    spans: list[FormatSpan] = []
    emitted = 0
    i = 0
    n = len(source)

    while i < n:
        for marker, kind in _MARKERS:
            if not source.startswith(marker, i):
                continue
            start = i + len(marker)
            close = source.find(marker, start)
            if close == -1:
                # Unmatched opener stays in the text as typed.
                out.append(marker)
                emitted += len(marker)
                i = start
                break
            inner = source[start:close]
            language = None
            if kind == "pre":
                inner, language = _strip_language(inner)
            if inner:
                spans.append(FormatSpan(kind, emitted, len(inner), language))
                out.append(inner)
                emitted += len(inner)
            i = close + len(marker)
            break
        else:
            match = _SPECIAL_RE.search(source, i + 1)
            stop = match.start() if match else n
            out.append(source[i:stop])
            emitted += stop - i
            i = stop

    return "".join(out), spans


def _squeeze(text: str, spans: Iterable[FormatSpan]) -> FormattedText:
    """Collapse blank-line runs and trim, remapping span offsets."""
    dropped = bytearray(len(text))
    for match in _BLANK_RUN_RE.finditer(text):
        for k in range(match.start() + 2, match.end()):
            dropped[k] = 1
    leading = len(text) - len(text.lstrip())
    for k in range(leading):
        dropped[k] = 1
    for k in range(len(text.rstrip()), len(text)):
        dropped[k] = 1

    position = [0] * (len(text) + 1)
    kept: list[str] = []
    for k, ch in enumerate(text):
        position[k] = len(kept)
        if not dropped[k]:
            kept.append(ch)
    position[len(text)] = len(kept)

    remapped = []
    for span in spans:
        start, end = position[span.offset], position[span.end]
        if end > start:
            remapped.append(FormatSpan(span.kind, start, end - start, span.language))
    return FormattedText("".join(kept), tuple(remapped))


def format_rich_text(raw: str) -> FormattedText:
    """Turn marker-annotated text into plain text and left-to-right spans.

    Fenced blocks (with an optional language tag on the opening line), inline
    code and bold are recognised. An opener without a closer is kept
    literally.
    """
    if not raw:
        return FormattedText("")
    text, spans = _scan(normalize_markup(raw))
    return _squeeze(text, spans)


def clip_spans(spans: Iterable[FormatSpan], cut: int) -> tuple[FormatSpan, ...]:
    """Drop spans starting at or past ``cut`` and clamp the ones crossing it."""
    clipped = []
    for span in spans:
        if span.offset >= cut:
            continue
        if span.end > cut:
            span = FormatSpan(span.kind, span.offset, cut - span.offset, span.language)
        clipped.append(span)
    return tuple(clipped)


Measure = Callable[[str], int]


def _fit(text: str, budget: int, measure: Measure) -> int:
    """Length of the longest prefix of ``text`` measuring at most ``budget``."""
    if measure is len:
        return min(budget, len(text))
    used = 0
    for k, ch in enumerate(text):
        used += measure(ch)
        if used > budget:
            return k
    return len(text)


def truncate(
    formatted: FormattedText,
    limit: int,
    marker: str = TRUNCATION_MARKER,
    measure: Measure = len,
) -> FormattedText:
    """Fit ``formatted`` into ``limit``, appending ``marker`` when cut.

    ``measure`` gives the length of a string in the transport's units and must
    be additive over characters (``len``, or UTF-16 code units for Telegram).
    """
    text = formatted.text
    if measure(text) <= limit:
        return formatted

    budget = limit - measure(marker)
    if budget <= 0:
        cut = _fit(text, limit, measure)
        return FormattedText(text[:cut], clip_spans(formatted.spans, cut))

    cut = _fit(text, budget, measure)
    floor = cut - cut // 5
    boundary = text.rfind("\n", floor, cut)
    if boundary <= 0:
        boundary = text.rfind(" ", floor, cut)
    if boundary > 0:
        cut = boundary

    return FormattedText(text[:cut] + marker, clip_spans(formatted.spans, cut))


def render_for_transport(raw: str, limit: int, measure: Measure = len) -> FormattedText:
    return truncate(format_rich_text(raw), limit, measure=measure)
