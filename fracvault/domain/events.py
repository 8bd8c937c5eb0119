"""
Vault program event decoding.

The program emits Anchor events as ``Program data: <base64>`` log lines. The
payload starts with sha256("event:<Name>")[:8] followed by the event fields,
the first of which is always the affected vault's pubkey. Older program
builds only wrote ``Program log: <Name> ...`` text, so a text scan for the
same names remains as a fallback.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional

from solders.pubkey import Pubkey

from ..utils.logging_setup import get_logger

logger = get_logger(__name__)

PROGRAM_DATA_PREFIX = "Program data: "

BASE58_ADDRESS = re.compile(r"\b[1-9A-HJ-NP-Za-km-z]{32,44}\b")


class VaultEventType(Enum):
    FRACTIONALIZED = "Fractionalized"
    RECLAIM_INITIATED = "ReclaimInitiated"
    RECLAIM_FINALIZED = "ReclaimFinalized"
    RECLAIM_CANCELLED = "ReclaimCancelled"
    REDEEMED = "Redeemed"
    VAULT_CLOSED = "VaultClosed"

    @property
    def discriminator(self) -> bytes:
        return event_discriminator(self.value)


def event_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"event:{name}".encode()).digest()[:8]


_BY_DISCRIMINATOR: Dict[bytes, VaultEventType] = {
    event_type.discriminator: event_type for event_type in VaultEventType
}


@dataclass(frozen=True)
class VaultEvent:
    """A decoded program event. ``vault`` is None when no address could be found."""
    event_type: VaultEventType
    vault: Optional[str]
    structured: bool = True


def encode_event(event_type: VaultEventType, vault: str, payload: bytes = b"") -> str:
    """Render an event as the ``Program data:`` log line the program would emit."""
    raw = event_type.discriminator + bytes(Pubkey.from_string(vault)) + payload
    return PROGRAM_DATA_PREFIX + base64.b64encode(raw).decode()


class EventDecoder:
    """
    Decodes vault events from one transaction's log lines.

    Args:
        ignore_addresses: Base58 strings never taken as a vault address in the
            text fallback (program ids that appear in invoke lines).
    """

    def __init__(self, ignore_addresses: Iterable[str] = ()):
        self.ignore_addresses = frozenset(ignore_addresses)

    def decode(self, logs: List[str]) -> List[VaultEvent]:
        events = self._decode_structured(logs)
        if events:
            return events
        return self._decode_text(logs)

    def _decode_structured(self, logs: List[str]) -> List[VaultEvent]:
        events: List[VaultEvent] = []
        for line in logs:
            if not line.startswith(PROGRAM_DATA_PREFIX):
                continue
            try:
                raw = base64.b64decode(line[len(PROGRAM_DATA_PREFIX):], validate=True)
            except (binascii.Error, ValueError):
                logger.debug(f"Skipping undecodable program data line: {line[:60]}")
                continue
            event_type = _BY_DISCRIMINATOR.get(raw[:8])
            if event_type is None:
                continue
            vault = str(Pubkey.from_bytes(raw[8:40])) if len(raw) >= 40 else None
            events.append(VaultEvent(event_type=event_type, vault=vault))
        return events

    def _decode_text(self, logs: List[str]) -> List[VaultEvent]:
        events: List[VaultEvent] = []
        for event_type in VaultEventType:
            matching = [line for line in logs if event_type.value in line]
            if not matching:
                continue
            events.append(
                VaultEvent(
                    event_type=event_type,
                    vault=self._find_address(matching) or self._find_address(logs),
                    structured=False,
                )
            )
        return events

    def _find_address(self, lines: List[str]) -> Optional[str]:
        for line in lines:
            for candidate in BASE58_ADDRESS.findall(line):
                if candidate not in self.ignore_addresses:
                    return candidate
        return None
