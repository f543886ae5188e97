"""Material ingestion: split one raw source into salience-weighted fragments."""

import re

import structlog

from knowflow.config import Settings
from knowflow.models.material import Fragment, Material, MaterialKind

logger = structlog.get_logger()

_PARAGRAPH_RE = re.compile(r"\n[ \t]*\n")
# ASCII terminators only count when followed by whitespace ("3.5", "e.g" stay whole);
# CJK terminators and the full-width clause comma always split
_SENTENCE_RE = re.compile(r"[.!?;]+(?=\s|$)|[。！？；，]+")
_FENCE_RE = re.compile(r"^[ \t]*(```|~~~)")
_HEADING_RE = re.compile(r"^[ \t]*#{1,6}[ \t]")

Span = tuple[int, int]


def _trim(body: str, start: int, end: int) -> Span | None:
    while start < end and body[start].isspace():
        start += 1
    while end > start and body[end - 1].isspace():
        end -= 1
    return (start, end) if start < end else None


def _split(body: str, start: int, end: int, boundary: re.Pattern, keep: bool) -> list[Span]:
    """Split ``body[start:end]`` at ``boundary`` matches.

    With ``keep`` the boundary text stays attached to the preceding span.
    """
    spans = []
    cursor = start
    for match in boundary.finditer(body, start, end):
        span = _trim(body, cursor, match.end() if keep else match.start())
        if span:
            spans.append(span)
        cursor = match.end()
    tail = _trim(body, cursor, end)
    if tail:
        spans.append(tail)
    return spans


def _prose_spans(body: str, start: int, end: int) -> list[Span]:
    spans = []
    for p_start, p_end in _split(body, start, end, _PARAGRAPH_RE, keep=False):
        spans.extend(_split(body, p_start, p_end, _SENTENCE_RE, keep=True))
    return spans


def _line_blocks(body: str, headings: bool) -> list[tuple[Span, bool]]:
    """Group lines into (span, is_code) blocks at fences (and headings)."""
    blocks: list[tuple[Span, bool]] = []
    block_start = 0
    in_fence = False
    offset = 0
    for line in body.splitlines(keepends=True):
        line_end = offset + len(line)
        if _FENCE_RE.match(line):
            if in_fence:
                blocks.append(((block_start, line_end), True))
                block_start = line_end
            else:
                blocks.append(((block_start, offset), False))
                block_start = offset
            in_fence = not in_fence
        elif headings and not in_fence and _HEADING_RE.match(line):
            blocks.append(((block_start, offset), False))
            blocks.append(((offset, line_end), False))
            block_start = line_end
        offset = line_end
    blocks.append(((block_start, len(body)), in_fence))
    return blocks


class MaterialIngester:
    """Normalizes raw material into an ordered list of topic fragments.

    Pure: no network access, no state between calls. URL material without a
    fetched body becomes a single fragment holding the URL itself.

    Args:
        min_fragment_chars: Fragments shorter than this merge into a neighbour.
        max_fragments: Upper bound on fragments per material.
    """

    def __init__(self, min_fragment_chars: int = 6, max_fragments: int = 64):
        self.min_fragment_chars = min_fragment_chars
        self.max_fragments = max_fragments

    @classmethod
    def from_settings(cls, settings: Settings) -> "MaterialIngester":
        return cls(
            min_fragment_chars=settings.min_fragment_chars,
            max_fragments=settings.max_fragments,
        )

    def ingest(self, material: Material) -> list[Fragment]:
        """Split a material into fragments.

        Args:
            material: Raw material.

        Returns:
            Fragments in body order; empty when the material has no usable text.
        """
        body = material.body
        if material.kind == MaterialKind.URL and (
            not body.strip() or body.strip() == (material.url or "").strip()
        ):
            target = (material.url or body).strip()
            if not target:
                return []
            return [Fragment(index=0, start=0, end=len(target), text=target, salience=1.0)]

        if not body.strip():
            return []

        spans = self._structural_spans(body, material.kind)
        spans = self._merge_short(body, spans)
        spans = self._cap(body, spans)
        fragments = self._weigh(body, spans, material.tags)

        logger.debug(
            "material_ingested",
            kind=material.kind.value,
            body_length=len(body),
            fragments=len(fragments),
        )
        return fragments

    def _structural_spans(self, body: str, kind: MaterialKind) -> list[Span]:
        if kind in (MaterialKind.TEXT, MaterialKind.URL):
            return _prose_spans(body, 0, len(body))

        spans: list[Span] = []
        for (start, end), is_code in _line_blocks(body, headings=kind == MaterialKind.MARKDOWN):
            if is_code:
                span = _trim(body, start, end)
                if span:
                    spans.append(span)
            elif kind == MaterialKind.CODE:
                spans.extend(_split(body, start, end, _PARAGRAPH_RE, keep=False))
            else:
                spans.extend(_prose_spans(body, start, end))
        return spans

    def _length(self, body: str, span: Span) -> int:
        return len(body[span[0]:span[1]].strip())

    def _merge_short(self, body: str, spans: list[Span]) -> list[Span]:
        """Fold under-length spans into the following span (the last into its predecessor)."""
        merged: list[Span] = []
        carry: Span | None = None
        for span in spans:
            if carry is not None:
                span = (carry[0], span[1])
                carry = None
            if self._length(body, span) < self.min_fragment_chars:
                carry = span
                continue
            merged.append(span)
        if carry is not None:
            if merged:
                merged[-1] = (merged[-1][0], carry[1])
            elif self._length(body, carry) >= self.min_fragment_chars:
                merged.append(carry)
        return merged

    def _cap(self, body: str, spans: list[Span]) -> list[Span]:
        """Merge the shortest span into its shorter neighbour until under the cap."""
        spans = list(spans)
        while len(spans) > self.max_fragments:
            lengths = [self._length(body, s) for s in spans]
            i = lengths.index(min(lengths))
            if i == 0:
                j = 1
            elif i == len(spans) - 1:
                j = i - 1
            else:
                j = i - 1 if lengths[i - 1] <= lengths[i + 1] else i + 1
            lo, hi = min(i, j), max(i, j)
            spans[lo:hi + 1] = [(spans[lo][0], spans[hi][1])]
        return spans

    def _weigh(self, body: str, spans: list[Span], tags: list[str]) -> list[Fragment]:
        if not spans:
            return []
        texts = [body[s:e] for s, e in spans]
        longest = max(len(t) for t in texts)
        declared = [t.strip().lower() for t in tags if t.strip()]
        count = len(spans)

        fragments = []
        for i, ((start, end), text) in enumerate(zip(spans, texts)):
            length_score = len(text) / longest
            position_score = 1.0 - 0.5 * i / count
            lowered = text.lower()
            tag_score = 1.0 if any(tag in lowered for tag in declared) else 0.0
            salience = 0.5 * length_score + 0.3 * position_score + 0.2 * tag_score
            fragments.append(
                Fragment(
                    index=i,
                    start=start,
                    end=end,
                    text=text,
                    salience=round(min(1.0, salience), 4),
                )
            )
        return fragments
