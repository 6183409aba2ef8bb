"""
Text normalization with offset tracking for PII detection.

This module canonicalizes text before any recognizer runs and records, for
every character of the normalized text, the index of the original character
it came from. Handles common evasion techniques:
- Fullwidth and composed characters (＠ → @, ０ → 0, e + ◌́ → é)
- Zero-width characters and non-breaking spaces that break patterns
- Inconsistent whitespace (runs of tabs/spaces)
- Obfuscated emails ("john (dot) doe (at) mail (dot) ch", "arobase", "Klammeraffe")
- Phone numbers with trunk markers or odd separators ("+41 (0)79", "079-123-45-67")

Spans detected on the normalized text are mapped back with map_span().
"""

import bisect
import logging
import re
import unicodedata
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from ..detection_config import NORMALIZATION_FORMS
from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)


# Zero-width characters removed outright
# U+200B..U+200F: ZW space, ZW non-joiner, ZW joiner, LTR/RTL marks
# U+2060: Word Joiner, U+FEFF: Zero Width No-Break Space (BOM)
ZERO_WIDTH_PATTERN = re.compile(r'[\u200b-\u200f\u2060\ufeff]')

# Non-breaking spaces replaced 1:1 by ASCII spaces
NBSP_TRANSLATION = str.maketrans({'\u00a0': ' ', '\u2007': ' ', '\u202f': ' '})

# Hyphen, non-breaking hyphen, figure dash, en/em dash, horizontal bar
DASH_PATTERN = re.compile(r'[\u2010-\u2015]')

# Runs of whitespace other than line breaks
BLANK_RUN_PATTERN = re.compile(r'[^\S\r\n]+')

_SP = r'[^\S\r\n]*'
_SP1 = r'[^\S\r\n]+'

# Locale-aware obfuscation tokens.
# "at"/"dot": bracketed forms that are rewritten with any surrounding blanks.
# "at_words"/"dot_words": bare words, rewritten only when blank-delimited.
# Bare "dot" and "Punkt" are ordinary prose and never tokens; a bare "point"
# counts only next to an obfuscated at-token.
OBFUSCATION_TOKENS: Dict[str, Dict[str, Tuple[str, ...]]] = {
    "en": {
        "at": (r'\(at\)', r'\[at\]', r'\{at\}'),
        "at_words": (),
        "dot": (r'\(dot\)', r'\[dot\]', r'\{dot\}'),
        "dot_words": (),
    },
    "fr": {
        "at": (r'\(arobase\)', r'\[arobase\]'),
        "at_words": ("arobase",),
        "dot": (r'\(point\)', r'\[point\]'),
        "dot_words": ("point",),
    },
    "de": {
        "at": (r'\(klammeraffe\)', r'\[klammeraffe\]'),
        "at_words": ("klammeraffe",),
        "dot": (r'\(punkt\)', r'\[punkt\]'),
        "dot_words": (),
    },
}

# "+41 (0) 79 ..." -> "+41 79 ..."
PHONE_TRUNK_PATTERN = re.compile(r'(\+\d{1,3})' + _SP + r'\(0\)' + _SP + r'(?=\d)')

# Digit groups uniformly separated by "-", "." or "/", starting with a
# country code (optionally followed by one space and a group) or a national
# trunk zero: "+41.79.123.45.67", "+41 79-123-45-67", "079-123-45-67"
PHONE_GROUPS_PATTERN = re.compile(
    r'(?<![\w+.\-/])'
    r'(?:\+\d{1,3}(?: \d{2,4})?|0\d{1,3})'
    r'([\-./])\d{2,4}'
    r'(?:\1\d{2,4}){1,5}'
    r'(?!\w|[.\-/]\d)'
)

PHONE_MIN_DIGITS = 9
PHONE_MAX_DIGITS = 15


@dataclass(frozen=True)
class NormalizerOptions:
    """
    Feature toggles for TextNormalizer.

    Attributes:
        normalize_unicode: Apply the unicode normalization form (and dash folding)
        normalization_form: One of NFC, NFD, NFKC, NFKD
        normalize_whitespace: Drop zero-width chars, collapse blank runs
        handle_emails: Rewrite "(at)"/"(dot)" style email obfuscation
        handle_phones: Drop "(0)" trunk markers, canonicalize digit-group separators
        supported_locales: Locales whose obfuscation tokens are recognized
    """
    normalize_unicode: bool = True
    normalization_form: str = "NFKC"
    normalize_whitespace: bool = True
    handle_emails: bool = True
    handle_phones: bool = True
    supported_locales: Tuple[str, ...] = ("en", "fr", "de")

    def __post_init__(self):
        if self.normalization_form not in NORMALIZATION_FORMS:
            raise ConfigurationError(
                f"Invalid normalization form {self.normalization_form!r}, "
                f"expected one of {', '.join(NORMALIZATION_FORMS)}"
            )
        unknown = [loc for loc in self.supported_locales if loc not in OBFUSCATION_TOKENS]
        if unknown:
            raise ConfigurationError(f"Unsupported normalizer locales: {unknown}")


@dataclass
class NormalizationResult:
    """
    Normalized text plus the index map back to the original.

    Attributes:
        normalized_text: Text the recognizers run on
        index_map: index_map[i] is the original index of normalized_text[i];
            non-decreasing, many-to-one allowed
        original_text: The untouched input
        steps_applied: Names of the steps that ran
    """
    normalized_text: str
    index_map: List[int]
    original_text: str = ""
    steps_applied: Tuple[str, ...] = field(default_factory=tuple)

    def map_span(self, start: int, end: int) -> Tuple[int, int]:
        """Map a normalized-text span onto the original text."""
        return map_span(start, end, self.index_map, len(self.original_text))

    @property
    def changed(self) -> bool:
        return self.normalized_text != self.original_text


def map_span(
    start: int,
    end: int,
    index_map: Sequence[int],
    original_length: Optional[int] = None
) -> Tuple[int, int]:
    """
    Map a half-open span over normalized text back to original offsets.

    The start maps through the index map directly. The end maps to the
    original index of the first normalized character produced by a later
    source segment, so a span ending on a composed or rewritten character
    covers the whole original segment ("(dot) ch" ends after "ch", not after
    its first character).

    Args:
        start: Normalized start offset
        end: Normalized end offset (exclusive)
        index_map: Map produced by TextNormalizer
        original_length: Length of the original text (default: last mapped index + 1)

    Returns:
        Tuple of (original_start, original_end); identity for an empty map
    """
    if not index_map:
        return start, end

    size = len(index_map)
    if original_length is None:
        original_length = index_map[-1] + 1

    start = min(max(start, 0), size)
    end = min(max(end, start), size)

    original_start = index_map[start] if start < size else original_length

    if end == start:
        return original_start, original_start

    last_origin = index_map[end - 1]
    following = bisect.bisect_right(index_map, last_origin, end - 1)
    original_end = index_map[following] if following < size else original_length

    original_start = min(original_start, original_length)
    original_end = min(max(original_end, original_start), original_length)
    return original_start, original_end


def _apply_edits(
    text: str,
    index_map: List[int],
    edits: List[Tuple[int, int, str]]
) -> Tuple[str, List[int]]:
    """
    Apply sorted, non-overlapping (start, end, replacement) edits.

    Replacement characters all map to the original index of the edit start.
    """
    if not edits:
        return text, index_map

    pieces = []
    new_map: List[int] = []
    pos = 0
    for start, end, replacement in edits:
        pieces.append(text[pos:start])
        new_map.extend(index_map[pos:start])
        if replacement:
            pieces.append(replacement)
            new_map.extend([index_map[start]] * len(replacement))
        pos = end
    pieces.append(text[pos:])
    new_map.extend(index_map[pos:])
    return ''.join(pieces), new_map


def _alternation(patterns: Sequence[str]) -> str:
    return '|'.join(patterns)


class TextNormalizer:
    """
    Deterministic, total text normalizer.

    Steps run in a fixed order (unicode, whitespace, emails, phones), each
    independently toggleable through NormalizerOptions. No step raises;
    text that none of them recognizes passes through unchanged.
    """

    def __init__(self, options: Optional[NormalizerOptions] = None):
        self.options = options or NormalizerOptions()
        self._build_email_patterns()

    def _build_email_patterns(self):
        at_tokens: List[str] = []
        at_words: List[str] = []
        dot_tokens: List[str] = []
        dot_words: List[str] = []
        for locale in self.options.supported_locales:
            table = OBFUSCATION_TOKENS[locale]
            at_tokens.extend(table["at"])
            at_words.extend(table["at_words"])
            dot_tokens.extend(table["dot"])
            dot_words.extend(table["dot_words"])

        at_alts = [_SP + r'(?:@|' + _alternation(at_tokens) + r')' + _SP] if at_tokens else [_SP + '@' + _SP]
        if at_words:
            at_alts.append(_SP1 + r'(?:' + _alternation(at_words) + r')' + _SP1)
        dot_alts = []
        if dot_tokens:
            dot_alts.append(_SP + r'(?:' + _alternation(dot_tokens) + r')' + _SP)
        dot_word = _SP1 + r'(?:' + _alternation(dot_words) + r')' + _SP1 if dot_words else None
        if dot_word:
            dot_alts.append(dot_word)

        at = r'(?:' + _alternation(at_alts) + r')'
        # Plain dots are only accepted unspaced; spaced dots end a sentence
        dot = r'(?:\.|' + _alternation(dot_alts) + r')' if dot_alts else r'\.'

        local_atom = r'[\w%+\-]+'
        domain_atom = r'[\w\-]+'
        tld = r'[^\W\d_]{2,24}'

        self._email_region = re.compile(
            r'(?<![\w.@])'
            + local_atom + r'(?:' + dot + local_atom + r')*'
            + at
            + domain_atom + r'(?:' + dot + domain_atom + r')*'
            + dot + tld
            + r'(?![\w@])',
            re.IGNORECASE,
        )
        token_alts = [r'(?P<at>' + at + r')']
        if dot_tokens:
            token_alts.append(r'(?P<dot>' + dot_alts[0] + r')')
        if dot_word:
            token_alts.append(r'(?P<dot_word>' + dot_word + r')')
        self._email_token = re.compile('|'.join(token_alts), re.IGNORECASE)

    def normalize(self, original: str) -> NormalizationResult:
        """
        Normalize text for PII detection.

        Args:
            original: Raw input text

        Returns:
            NormalizationResult with the normalized text and index map
        """
        if original is None:
            original = ""
        if not isinstance(original, str):
            original = str(original)

        text = original
        index_map = list(range(len(original)))
        steps: List[str] = []
        if not text:
            return NormalizationResult(text, index_map, original, ())

        if self.options.normalize_unicode:
            text, index_map = self._normalize_unicode(text, index_map)
            steps.append("unicode")
        if self.options.normalize_whitespace:
            text, index_map = self._normalize_whitespace(text, index_map)
            steps.append("whitespace")
        if self.options.handle_emails:
            text, index_map = self._deobfuscate_emails(text, index_map)
            steps.append("emails")
        if self.options.handle_phones:
            text, index_map = self._canonicalize_phones(text, index_map)
            steps.append("phones")

        if text != original:
            logger.debug(f"Normalized text: {len(original)} -> {len(text)} chars ({', '.join(steps)})")
        return NormalizationResult(text, index_map, original, tuple(steps))

    def _normalize_unicode(self, text: str, index_map: List[int]) -> Tuple[str, List[int]]:
        """
        Apply the normalization form per combining cluster (a base character
        plus its combining marks) so every output character has one origin.
        """
        form = self.options.normalization_form
        if unicodedata.is_normalized(form, text) and not DASH_PATTERN.search(text):
            return text, index_map

        pieces = []
        new_map: List[int] = []
        size = len(text)
        i = 0
        while i < size:
            j = i + 1
            while j < size and unicodedata.combining(text[j]):
                j += 1
            cluster = unicodedata.normalize(form, text[i:j])
            cluster = DASH_PATTERN.sub('-', cluster)
            pieces.append(cluster)
            new_map.extend([index_map[i]] * len(cluster))
            i = j
        return ''.join(pieces), new_map

    def _normalize_whitespace(self, text: str, index_map: List[int]) -> Tuple[str, List[int]]:
        # Zero-width characters vanish; their neighbours keep their own origins
        edits = [(m.start(), m.end(), '') for m in ZERO_WIDTH_PATTERN.finditer(text)]
        text, index_map = _apply_edits(text, index_map, edits)

        text = text.translate(NBSP_TRANSLATION)

        # Collapsed runs map to the first original index of the run
        edits = [
            (m.start(), m.end(), ' ')
            for m in BLANK_RUN_PATTERN.finditer(text)
            if m.group() != ' '
        ]
        return _apply_edits(text, index_map, edits)

    def _deobfuscate_emails(self, text: str, index_map: List[int]) -> Tuple[str, List[int]]:
        edits: List[Tuple[int, int, str]] = []
        for region in self._email_region.finditer(text):
            offset = region.start()
            tokens = list(self._email_token.finditer(region.group()))
            obfuscated_at = any(
                t.group('at') is not None and t.group().strip() != '@' for t in tokens
            )
            for token in tokens:
                if token.group('at') is not None:
                    replacement = '@'
                else:
                    # A bare dot word next to a literal "@" is prose ("le point marie@...")
                    if token.lastgroup == 'dot_word' and not obfuscated_at:
                        continue
                    replacement = '.'
                if token.group() == replacement:
                    continue
                edits.append((offset + token.start(), offset + token.end(), replacement))
        if edits:
            logger.debug(f"Email de-obfuscation rewrote {len(edits)} tokens")
        return _apply_edits(text, index_map, edits)

    def _canonicalize_phones(self, text: str, index_map: List[int]) -> Tuple[str, List[int]]:
        edits = [(m.end(1), m.end(), ' ') for m in PHONE_TRUNK_PATTERN.finditer(text)]
        text, index_map = _apply_edits(text, index_map, edits)

        # Separator replacement is 1:1, so the index map is unchanged
        chars = None
        for match in PHONE_GROUPS_PATTERN.finditer(text):
            digits = sum(c.isdigit() for c in match.group())
            if not PHONE_MIN_DIGITS <= digits <= PHONE_MAX_DIGITS:
                continue
            separator = match.group(1)
            if chars is None:
                chars = list(text)
            for pos in range(match.start(), match.end()):
                if chars[pos] == separator:
                    chars[pos] = ' '
        if chars is not None:
            text = ''.join(chars)
        return text, index_map


def normalize_text(text: str, options: Optional[NormalizerOptions] = None) -> str:
    """
    Normalize text for PII detection, discarding the index map.

    Args:
        text: Raw input text
        options: Normalizer toggles (default: all steps enabled)

    Returns:
        Normalized text ready for PII detection
    """
    return TextNormalizer(options).normalize(text).normalized_text
