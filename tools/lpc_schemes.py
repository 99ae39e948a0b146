#!/usr/bin/env python3
"""
LPC boot ROM checksum schemes
Maps processor part numbers (LPC1768, LPC2103, ...) to the vector table
checksum layout their boot ROM validates.
Reference: UM10360 §32.3.1.1, UM10503 §6.4.4.1 (Criterion for Valid User Code)
"""

import logging
from typing import NamedTuple, Optional, Tuple

logger = logging.getLogger(__name__)

WORD_SIZE = 4

# Used when the processor string matches no family
DEFAULT_PROCESSOR = "LPC1000"


class ChecksumScheme(NamedTuple):
    """Checksum layout for one LPC family"""
    family_id: str
    word_count: Optional[int]
    result_slot: int

    @property
    def supported(self) -> bool:
        return self.word_count is not None

    @property
    def offset(self) -> int:
        """Byte offset of the checksum word"""
        return self.result_slot * WORD_SIZE

    @property
    def region_size(self) -> int:
        """Number of bytes summed by the boot ROM (excluding a trailing slot)"""
        return (self.word_count or 0) * WORD_SIZE

    @property
    def checked_words(self) -> int:
        """Number of leading words the boot ROM validates, slot included"""
        return max(self.word_count or 0, self.result_slot + 1)


def _scheme(family_id, word_count=None, result_slot=0):
    # The slot is either inside the summed region or the word right after it
    if word_count is not None and not 0 <= result_slot <= word_count:
        raise ValueError(
            f"{family_id}: result slot {result_slot} outside 0..{word_count}")
    return ChecksumScheme(family_id, word_count, result_slot)


# First match wins, so LPC29 must precede LPC2
SCHEMES: Tuple[ChecksumScheme, ...] = (
    _scheme("LPC3"),                 # no checksum validation
    _scheme("LPC29"),                # no checksum validation
    _scheme("LPC1", 7, 7),           # words 0..6, checksum at 0x1C
    _scheme("LPC2", 8, 5),           # words 0..7, checksum at 0x14
    _scheme("LPC4", 7, 7),
    _scheme("LPC5", 7, 7),
)


def schemes() -> Tuple[ChecksumScheme, ...]:
    return SCHEMES


def resolve(identifier: str) -> Optional[ChecksumScheme]:
    """Return the first scheme whose family id appears in identifier"""
    for scheme in SCHEMES:
        if scheme.family_id in identifier:
            return scheme
    return None


def resolve_or_default(identifier: str) -> Tuple[ChecksumScheme, bool]:
    """Resolve identifier, falling back to DEFAULT_PROCESSOR.

    Returns the scheme and whether the fallback was taken.
    """
    scheme = resolve(identifier)
    if scheme is not None:
        return scheme, False

    logger.warning(f'Unknown processor "{identifier}", falling back to {DEFAULT_PROCESSOR}')
    scheme = resolve(DEFAULT_PROCESSOR)
    if scheme is None:
        raise RuntimeError(f"{DEFAULT_PROCESSOR} does not match any registered family")
    return scheme, True
