"""Scene segmentation engine.

Splits normalized narrative text into ordered scenes within a length
envelope. The rule-based path works on character spans of the normalized
text, so every scene is an exact slice of it and no content is dropped or
rewritten:

1. Split into paragraphs on blank lines (when preserving paragraphs)
2. Paragraphs that fit ``max_length`` become scene candidates as-is
3. Longer paragraphs are split into sentences and accumulated greedily;
   a buffer still under ``min_length`` absorbs as much of the next
   sentence as fits instead of being emitted short
4. Sentences longer than ``max_length`` are split on clause punctuation,
   then by length, breaking at whitespace or punctuation found in the last
   20% of the window
5. Short candidates are merged with a neighbour whenever the union fits

``max_length`` is a hard limit. ``min_length`` is met wherever the text
allows it.

With ``use_provider_assist`` the provider is asked to propose scene
boundaries first; any failure falls back to the rule-based path.
"""

import logging
import math
import re
import time
from typing import List, Optional, Tuple

from scenecast.gateway.logger import StructuredJSONLogger
from scenecast.scenes.normalizer import normalize
from scenecast.scenes.response_parser import SegmentationResponseError, parse_segmentation_response
from scenecast.schemas.generation import TextGenerationOptions
from scenecast.schemas.scene import Scene, SegmentationConfig, SegmentationResult, SegmentationStats


logger = logging.getLogger(__name__)


# (start, end) offsets into the normalized text; never starts or ends on whitespace
Span = Tuple[int, int]

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")

# Trailing marks that stay attached to the sentence they close
_CLOSING_MARKS = "\"')]」』）》〉】"

# Characters after which a length split may break (whitespace also qualifies)
_BREAK_CHARS = "，。！？；、"

# Length splits only look for a break inside the last 20% of the window
BREAK_WINDOW_RATIO = 0.8

PROVIDER_SEGMENTATION_OPTIONS = TextGenerationOptions(temperature=0.3, max_output_tokens=4096)


def build_segmentation_prompt(text: str, config: SegmentationConfig) -> str:
    """Prompt asking the provider to propose ``{index, text}`` scenes."""
    return (
        "Split the following narrative into scenes for a short video. Each scene must:\n"
        f"1. Be between {config.min_length} and {config.max_length} characters long\n"
        "2. Be semantically complete and coherent\n"
        "3. Work as a single visual shot\n"
        "4. Break at natural language boundaries\n"
        "5. Keep the original wording and language unchanged\n\n"
        "Respond with JSON only, in this format:\n"
        '{"scenes": [{"index": 0, "text": "first scene text"}, '
        '{"index": 1, "text": "second scene text"}]}\n\n'
        f"Text:\n{text}"
    )


class _SpanSplitter:
    """Span arithmetic over one normalized text for one config."""

    def __init__(self, text: str, config: SegmentationConfig):
        self.text = text
        self.config = config
        self.min_length = config.min_length
        self.max_length = config.max_length
        self.break_chars = set(_BREAK_CHARS) | set(config.sentence_terminators) | set(config.clause_separators)

    def tighten(self, start: int, end: int) -> Span:
        text = self.text
        while start < end and text[start].isspace():
            start += 1
        while end > start and text[end - 1].isspace():
            end -= 1
        return start, end

    def _tight_spans(self, spans) -> List[Span]:
        tightened = (self.tighten(start, end) for start, end in spans)
        return [span for span in tightened if span[0] < span[1]]

    def paragraphs(self) -> List[Span]:
        if not self.config.preserve_paragraphs:
            return self._tight_spans([(0, len(self.text))])

        spans = []
        pos = 0
        for match in _PARAGRAPH_BREAK.finditer(self.text):
            spans.append((pos, match.start()))
            pos = match.end()
        spans.append((pos, len(self.text)))
        return self._tight_spans(spans)

    def _split_after(self, start: int, end: int, marks: str) -> List[Span]:
        """Split a span after each run of ``marks``.

        ASCII marks only count when followed by whitespace or the end of the
        span, so decimals, abbreviations and "1,000" stay whole.
        """
        text = self.text
        spans = []
        piece_start = start
        i = start
        while i < end:
            if text[i] not in marks:
                i += 1
                continue
            j = i + 1
            while j < end and (text[j] in marks or text[j] in _CLOSING_MARKS):
                j += 1
            if text[i].isascii() and j < end and not text[j].isspace():
                i = j
                continue
            spans.append((piece_start, j))
            piece_start = j
            i = j
        spans.append((piece_start, end))
        return self._tight_spans(spans)

    def sentences(self, start: int, end: int) -> List[Span]:
        return self._split_after(start, end, self.config.sentence_terminators)

    def clauses(self, start: int, end: int) -> List[Span]:
        return self._split_after(start, end, self.config.clause_separators)

    def find_break(self, lower: int, upper: int) -> Optional[int]:
        """Latest cut position in [lower, upper] that falls on a natural break.

        Scans backwards from ``upper``. A cut lands before whitespace or just
        after a break character.
        """
        text = self.text
        for i in range(upper - 1, lower - 1, -1):
            if text[i].isspace():
                return i
            if text[i] in self.break_chars:
                return i + 1
        return None

    def split_by_length(self, start: int, end: int) -> List[Span]:
        parts = []
        pos = start
        while end - pos > self.max_length:
            upper = pos + self.max_length
            cut = None
            if self.config.smart_split:
                lower = pos + max(1, math.ceil(self.max_length * BREAK_WINDOW_RATIO))
                cut = self.find_break(lower, upper)
            if cut is None:
                cut = upper
            parts.extend(self._tight_spans([(pos, cut)]))
            pos = self.tighten(cut, end)[0]
        parts.extend(self._tight_spans([(pos, end)]))
        return parts

    def pieces(self, start: int, end: int) -> List[Span]:
        """Sentences of a paragraph, each at most ``max_length`` long."""
        result = []
        for sentence_start, sentence_end in self.sentences(start, end):
            if sentence_end - sentence_start <= self.max_length:
                result.append((sentence_start, sentence_end))
            elif self.config.smart_split:
                for clause_start, clause_end in self.clauses(sentence_start, sentence_end):
                    if clause_end - clause_start <= self.max_length:
                        result.append((clause_start, clause_end))
                    else:
                        result.extend(self.split_by_length(clause_start, clause_end))
            else:
                result.extend(self.split_by_length(sentence_start, sentence_end))
        return result

    def accumulate(self, pieces: List[Span]) -> List[Span]:
        """Greedily pack pieces into chunks of at most ``max_length``."""
        chunks = []
        buffer = None
        for piece in pieces:
            if buffer is None:
                buffer = piece
            elif piece[1] - buffer[0] <= self.max_length:
                buffer = (buffer[0], piece[1])
            elif buffer[1] - buffer[0] >= self.min_length:
                chunks.append(buffer)
                buffer = piece
            else:
                head, buffer = self.force_append(buffer, piece)
                chunks.append(head)

        if buffer is not None:
            if (
                chunks
                and buffer[1] - buffer[0] < self.min_length
                and buffer[1] - chunks[-1][0] <= self.max_length
            ):
                chunks[-1] = (chunks[-1][0], buffer[1])
            else:
                chunks.append(buffer)
        return chunks

    def force_append(self, buffer: Span, piece: Span) -> Tuple[Span, Span]:
        """Fill an under-minimum buffer with the head of ``piece``.

        Returns the emitted chunk and the remainder of ``piece``. The cut is
        made no earlier than the end of the buffer and ``min_length``, so the
        remainder is always a non-empty tail of ``piece``.
        """
        start = buffer[0]
        upper = start + self.max_length
        cut = None
        if self.config.smart_split:
            lower = max(
                buffer[1],
                start + self.min_length,
                start + math.ceil(self.max_length * BREAK_WINDOW_RATIO)
            )
            cut = self.find_break(min(lower, upper), upper)
        if cut is None:
            cut = upper
        return self.tighten(start, cut), self.tighten(cut, piece[1])

    def absorb_short(self, chunks: List[Span]) -> List[Span]:
        """Merge each chunk under ``min_length`` into a neighbour when the union fits."""
        merged: List[Span] = []
        for chunk in chunks:
            if merged:
                previous = merged[-1]
                is_short = (
                    previous[1] - previous[0] < self.min_length
                    or chunk[1] - chunk[0] < self.min_length
                )
                if is_short and chunk[1] - previous[0] <= self.max_length:
                    merged[-1] = (previous[0], chunk[1])
                    continue
            merged.append(chunk)
        return merged


def rule_based_segments(text: str, config: SegmentationConfig) -> List[str]:
    """Split already-normalized text into scene texts without a provider."""
    splitter = _SpanSplitter(text, config)
    chunks: List[Span] = []
    for start, end in splitter.paragraphs():
        if end - start <= config.max_length:
            chunks.append((start, end))
        else:
            chunks.extend(splitter.accumulate(splitter.pieces(start, end)))
    return [text[start:end] for start, end in splitter.absorb_short(chunks)]


class SegmentationEngine:
    """Turns raw narrative text into an ordered list of scenes.

    Args:
        gateway: Generation gateway used when provider assist is requested
        default_config: Config that per-call overrides are merged onto
        structured_logger: Receives a segmentation_complete event per call
    """

    def __init__(
        self,
        gateway=None,
        default_config: Optional[SegmentationConfig] = None,
        structured_logger: Optional[StructuredJSONLogger] = None
    ):
        self.gateway = gateway
        self.default_config = default_config or SegmentationConfig()
        self.structured_logger = structured_logger

    def segment(
        self,
        text: str,
        config: Optional[SegmentationConfig] = None,
        caller_id: Optional[str] = None,
        **overrides
    ) -> SegmentationResult:
        """Segment ``text`` into scenes.

        Args:
            text: Raw narrative text
            config: Config for this call (the engine default if None)
            caller_id: Caller the provider call is attributed to
            **overrides: Individual config fields to override

        Returns:
            SegmentationResult with contiguous ``scene_{i}`` ids and indices
        """
        start_time = time.perf_counter()
        config = (config or self.default_config).merged(overrides)
        raw = text or ""
        normalized = normalize(raw)

        method = "rule_based"
        fallback_reason = None

        if not normalized:
            texts = []
        elif len(normalized) < config.min_length:
            texts = [normalized]
        elif config.use_provider_assist:
            try:
                texts = self._provider_assisted(normalized, config, caller_id)
                method = "provider_assisted"
            except Exception as e:
                fallback_reason = str(e) or type(e).__name__
                logger.warning(
                    f"Provider-assisted segmentation failed, falling back to rule-based: {fallback_reason}"
                )
                texts = rule_based_segments(normalized, config)
        else:
            texts = rule_based_segments(normalized, config)

        scenes = [Scene(id=f"scene_{i}", index=i, text=scene_text) for i, scene_text in enumerate(texts)]
        processing_time_ms = (time.perf_counter() - start_time) * 1000

        stats = SegmentationStats(
            original_length=len(raw),
            normalized_length=len(normalized),
            scene_count=len(scenes),
            average_scene_length=round(sum(len(s.text) for s in scenes) / len(scenes)) if scenes else 0,
            processing_time_ms=processing_time_ms,
            fallback_reason=fallback_reason
        )

        if self.structured_logger:
            self.structured_logger.log_segmentation_complete(
                method, len(scenes), processing_time_ms, fallback_reason
            )
        else:
            logger.info(f"Segmented text into {len(scenes)} scene(s) via {method}")

        return SegmentationResult(scenes=scenes, method=method, stats=stats)

    def _provider_assisted(
        self,
        text: str,
        config: SegmentationConfig,
        caller_id: Optional[str]
    ) -> List[str]:
        if self.gateway is None:
            raise SegmentationResponseError("No generation gateway configured")

        outcome = self.gateway.generate_text(
            build_segmentation_prompt(text, config),
            PROVIDER_SEGMENTATION_OPTIONS,
            caller_id=caller_id
        )
        if not outcome.success:
            error = outcome.error
            kind = error.kind.value if error else "UNKNOWN"
            raise SegmentationResponseError(f"Provider call failed [{kind}]")

        texts = []
        for proposed in parse_segmentation_response(outcome.value):
            # Provider scenes over the hard limit are split the rule-based way
            texts.extend(rule_based_segments(normalize(proposed), config))
        if not texts:
            raise SegmentationResponseError("Provider proposed no usable scenes")
        return texts
