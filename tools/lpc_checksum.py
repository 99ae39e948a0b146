#!/usr/bin/env python3
"""
LPC BootROM checksum calculator
Computes the vector table checksum validated by the LPC boot ROM and patches
it into a raw firmware image (.bin) in place.

The boot ROM sums the first words of the image (modulo 2^32) and accepts the
image only when the sum, checksum word included, is zero. The checksum is
therefore the 2's complement of the sum of the other words.

Usage:
    python3 lpc_checksum.py -p LPC1768 firmware.bin
    python3 lpc_checksum.py -p LPC2103 --dry-run -d firmware.bin
"""

import sys
import struct
import argparse
import json
import logging
from pathlib import Path
from typing import List, Optional

from lpc_schemes import (
    DEFAULT_PROCESSOR,
    WORD_SIZE,
    ChecksumScheme,
    resolve_or_default,
    schemes,
)

logger = logging.getLogger(__name__)

WORD_MASK = 0xFFFFFFFF


class ChecksumError(Exception):
    """Base class for checksum failures"""


class UnsupportedSchemeError(ChecksumError):
    """The processor family has no boot ROM checksum"""
    def __init__(self, scheme):
        super().__init__(f"Checksum not supported for {scheme.family_id}")
        self.scheme = scheme


class ChecksumIOError(ChecksumError):
    """Reading or writing the image failed"""
    def __init__(self, message, path=None):
        if path is not None:
            message = f"{path}: {message}"
        super().__init__(message)
        self.path = path


class ChecksumResult:
    """Outcome of processing one image"""
    def __init__(self, path, family_id, checksum, stored, offset, already_valid, written):
        self.path = Path(path)
        self.family_id = family_id
        self.checksum = checksum
        self.stored = stored
        self.offset = offset
        self.already_valid = already_valid
        self.written = written

    def to_dict(self):
        return {
            "filename": str(self.path),
            "family": self.family_id,
            "checksum": f"0x{self.checksum:08x}",
            "stored": None if self.stored is None else f"0x{self.stored:08x}",
            "offset": f"0x{self.offset:02x}",
            "already_valid": self.already_valid,
            "written": self.written,
        }


def _name(reader):
    return getattr(reader, "name", None)


def read_words(reader, count: int) -> List[int]:
    """Read exactly count little-endian 32-bit words from the current position"""
    size = count * WORD_SIZE
    try:
        data = reader.read(size)
    except OSError as e:
        raise ChecksumIOError(f"Read failed: {e}", _name(reader)) from e

    if len(data) < size:
        raise ChecksumIOError(
            f"Image too small: got {len(data)} bytes, need {size}", _name(reader))

    return list(struct.unpack(f"<{count}I", data))


def checksum_words(scheme: ChecksumScheme, words: List[int]) -> int:
    """2's complement of the sum of every word except the result slot"""
    total = 0
    for i, word in enumerate(words):
        if i != scheme.result_slot:
            total = (total + word) & WORD_MASK
    return (0 - total) & WORD_MASK


def compute_checksum(scheme: ChecksumScheme, reader) -> int:
    """Compute the checksum for the image at the reader's current position.

    Reads scheme.word_count words and never writes. The current content of
    the result slot does not influence the result.
    """
    if not scheme.supported:
        raise UnsupportedSchemeError(scheme)

    words = read_words(reader, scheme.word_count)
    return checksum_words(scheme, words)


def read_stored_checksum(scheme: ChecksumScheme, reader) -> Optional[int]:
    """Return the word currently in the result slot, None past end of image"""
    try:
        reader.seek(scheme.offset)
        data = reader.read(WORD_SIZE)
    except OSError as e:
        raise ChecksumIOError(f"Read failed: {e}", _name(reader)) from e

    if len(data) < WORD_SIZE:
        return None
    return struct.unpack("<I", data)[0]


def read_header(scheme: ChecksumScheme, reader) -> List[int]:
    """Read the words checked by the boot ROM from the start of the image.

    Returns fewer words when the image ends early.
    """
    try:
        reader.seek(0)
        data = reader.read(scheme.checked_words * WORD_SIZE)
    except OSError as e:
        raise ChecksumIOError(f"Read failed: {e}", _name(reader)) from e

    count = len(data) // WORD_SIZE
    return list(struct.unpack(f"<{count}I", data[:count * WORD_SIZE]))


def is_valid(scheme: ChecksumScheme, words: List[int]) -> bool:
    """Boot ROM check: region words plus the slot sum to zero.

    False when words stop before the result slot.
    """
    if not scheme.supported:
        raise UnsupportedSchemeError(scheme)

    count = scheme.checked_words
    if len(words) < count:
        return False
    return sum(words[:count]) & WORD_MASK == 0


def patch_checksum(writer, scheme: ChecksumScheme, checksum: int):
    """Write checksum into the result slot. Only those 4 bytes change.

    A failed write may leave the slot partially written.
    """
    try:
        writer.seek(scheme.offset)
        writer.write(struct.pack("<I", checksum & WORD_MASK))
        writer.flush()
    except OSError as e:
        raise ChecksumIOError(f"Write failed: {e}", _name(writer)) from e


def process_image(path, scheme: ChecksumScheme, dry_run=False) -> ChecksumResult:
    """Compute the checksum of an image file and patch it unless dry_run"""
    if not scheme.supported:
        raise UnsupportedSchemeError(scheme)

    try:
        f = open(path, "r+b")
    except OSError as e:
        raise ChecksumIOError(f"Cannot open file: {e}", path) from e

    with f:
        checksum = compute_checksum(scheme, f)
        logger.info(f"Checksum: 0x{checksum:x}")

        stored = read_stored_checksum(scheme, f)
        already_valid = is_valid(scheme, read_header(scheme, f))
        written = False
        if already_valid:
            logger.info(f"Checksum already valid at 0x{scheme.offset:02x}")
        elif dry_run:
            logger.debug("Dry run, not writing checksum")
        else:
            patch_checksum(f, scheme, checksum)
            written = True
            old = "none" if stored is None else f"0x{stored:08X}"
            logger.info(f"Patched checksum at 0x{scheme.offset:02X}: {old} -> 0x{checksum:08X}")

            # Read back what the boot ROM will see
            if not is_valid(scheme, read_header(scheme, f)):
                raise ChecksumIOError("Verification failed after write", path)

    return ChecksumResult(path, scheme.family_id, checksum, stored, scheme.offset,
                          already_valid, written)


def setup_logging(verbose=False, display=False):
    if verbose:
        level = logging.DEBUG
    elif display:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format='%(levelname)s - %(message)s')


def list_schemes():
    print(f"{'Family':<8} {'Words':>5} {'Bytes':>5} {'Slot':>4} {'Offset':>6}")
    for scheme in schemes():
        if scheme.supported:
            print(f"{scheme.family_id:<8} {scheme.word_count:>5} {scheme.region_size:>5} "
                  f"{scheme.result_slot:>4} {f'0x{scheme.offset:02x}':>6}")
        else:
            print(f"{scheme.family_id:<8} {'-':>5} {'-':>5} {'-':>4} {'-':>6}  (no checksum)")


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Handle LPC BootROM checksum calculation for various LPC processors")
    parser.add_argument("input", nargs="?", help="Firmware image to patch")
    parser.add_argument("--processor", "-p", default=DEFAULT_PROCESSOR,
                        help="Processor used (e.g. LPC1768, or LPC2103)")
    parser.add_argument("--dry-run", "-n", action="store_true",
                        help="Do not write the checksum value")
    parser.add_argument("--display", "-d", action="store_true", help="Display operations done")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logs")
    parser.add_argument("--json", action="store_true", help="Output results as JSON")
    parser.add_argument("--list", action="store_true", help="List known processor families")
    args = parser.parse_args(argv)

    setup_logging(args.verbose, args.display)

    if args.list:
        list_schemes()
        return 0

    if args.input is None:
        parser.error("the following arguments are required: input")

    scheme, fallback = resolve_or_default(args.processor)

    logger.debug(f"CPU Family: {scheme.family_id}")
    logger.debug(f"Firmware file: {args.input}")
    logger.debug(f"Dry run: {args.dry_run}")

    try:
        result = process_image(args.input, scheme, dry_run=args.dry_run)
    except ChecksumError as e:
        logger.error(str(e))
        if args.json:
            print(json.dumps({"error": str(e), "family": scheme.family_id}))
        return 1

    if args.json:
        output = result.to_dict()
        output["processor"] = args.processor
        output["fallback"] = fallback
        print(json.dumps(output, indent=2))

    return 0


if __name__ == "__main__":
    sys.exit(main())
