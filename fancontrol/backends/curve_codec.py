#!/usr/bin/env python3
"""
Binary curve table layouts for the Lenovo fan firmware.

The buffer taken by Fan_Set_Table is only partly understood and may change
between firmware revisions, so each known layout lives behind its own codec
and the backend picks one by revision name.
"""

import struct
from typing import Dict, List, Tuple

from ..errors import NotSupported
from ..fan import FanCurvePoint


class CurveCodec:
    """Encode/decode a list of curve points to the firmware buffer."""

    revision = ""

    def encode(self, points: List[FanCurvePoint], table_length: int) -> bytes:
        raise NotImplementedError

    def decode(self, buffer: bytes) -> List[FanCurvePoint]:
        raise NotImplementedError


class PairTableCodec(CurveCodec):
    """
    v1 layout: table_length little-endian (u16 temperature, u16 rpm) pairs.

    Points are written in the given (ascending) order. Short curves are
    padded with zero pairs, long ones truncated to table_length.
    """

    revision = "v1"
    _pair = struct.Struct("<HH")

    def encode(self, points: List[FanCurvePoint], table_length: int) -> bytes:
        if table_length <= 0:
            raise ValueError(f"table length must be positive, got {table_length}")
        pairs: List[Tuple[int, int]] = [(p.temperature, p.rpm) for p in points[:table_length]]
        pairs.extend([(0, 0)] * (table_length - len(pairs)))
        try:
            return b"".join(self._pair.pack(temp, rpm) for temp, rpm in pairs)
        except struct.error as exc:
            raise ValueError(f"curve point out of range for firmware table: {exc}")

    def decode(self, buffer: bytes) -> List[FanCurvePoint]:
        usable = len(buffer) - len(buffer) % self._pair.size
        points = [FanCurvePoint(temperature=temp, rpm=rpm)
                  for temp, rpm in self._pair.iter_unpack(buffer[:usable])]
        # zero pairs are padding
        while points and points[-1] == FanCurvePoint(0, 0):
            points.pop()
        return points


_CODECS: Dict[str, CurveCodec] = {
    PairTableCodec.revision: PairTableCodec(),
}


def get_codec(revision: str) -> CurveCodec:
    try:
        return _CODECS[revision]
    except KeyError:
        raise NotSupported(f"curve table layout {revision!r}")
