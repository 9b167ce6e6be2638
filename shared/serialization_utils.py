"""
Serialization utilities for the contract event pipeline.

Provides JSON encoding for HexBytes, raw bytes, datetimes, Decimals and
integers beyond the IEEE 754 safe range.

Usage:
    from shared.serialization_utils import PayloadEncoder
    json.dumps(record.to_dict(), cls=PayloadEncoder)
"""

import json
from datetime import datetime
from decimal import Decimal
from json import JSONEncoder
from typing import Any

from hexbytes import HexBytes


class PayloadEncoder(JSONEncoder):
    """
    JSON encoder for sink payloads and trace logs.

    Sources:
    - RFC 7159 section 6 (JSON number limits)
    - IEEE 754-2008 (double precision safe integer limit: 2^53 - 1)
    """

    _MAX_SAFE_INTEGER = 2**53 - 1

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, (HexBytes, bytes, bytearray)):
            return "0x" + bytes(obj).hex()
        if isinstance(obj, datetime):
            return obj.isoformat()
        # web3.py AttributeDict (transaction/block responses)
        if hasattr(obj, "__iter__") and hasattr(obj, "keys"):
            return dict(obj)
        return super().default(obj)

    def encode(self, obj: Any) -> str:
        return super().encode(self._convert_large_ints(obj))

    def _convert_large_ints(self, obj: Any) -> Any:
        """Recursively stringify integers outside the IEEE 754 safe range (uint256 amounts)."""
        if isinstance(obj, dict):
            return {k: self._convert_large_ints(v) for k, v in obj.items()}
        elif isinstance(obj, (list, tuple)):
            return [self._convert_large_ints(item) for item in obj]
        elif isinstance(obj, bool):
            return obj
        elif isinstance(obj, int) and (obj > self._MAX_SAFE_INTEGER or obj < -self._MAX_SAFE_INTEGER):
            return str(obj)
        return obj


def dumps(obj: Any) -> str:
    """Serialize with ``PayloadEncoder``."""
    return json.dumps(obj, cls=PayloadEncoder)
