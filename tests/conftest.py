"""
Shared fixtures: raw firmware images built from 32-bit words
"""

import struct

import pytest


def pack_words(words):
    """Pack words as little-endian 32-bit values"""
    return struct.pack(f'<{len(words)}I', *words)


def unpack_words(data):
    return list(struct.unpack(f'<{len(data) // 4}I', data))


def create_test_image(filename, words, payload=b''):
    """Create a firmware image whose vector table is words, followed by payload"""
    with open(filename, 'wb') as f:
        f.write(pack_words(words))
        f.write(payload)
    return filename


@pytest.fixture
def make_image(tmp_path):
    """Factory fixture writing images into a temporary directory"""
    def _make(words, payload=b'', name='firmware.bin'):
        return create_test_image(tmp_path / name, words, payload)
    return _make


@pytest.fixture
def cortex_m_words():
    """Typical LPC17xx vector table: SP, Reset, NMI, HardFault ... reserved"""
    return [
        0x10008000,  # initial SP
        0x000000C5,  # Reset
        0x000000CD,  # NMI
        0x000000CF,  # HardFault
        0x000000D1,  # MemManage
        0x000000D3,  # BusFault
        0x000000D5,  # UsageFault
        0xDEADBEEF,  # checksum slot (stale)
    ]
