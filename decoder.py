"""Decodificação do frame iBeacon a partir do ``rawData`` hexadecimal dos gateways.

Layout depois do marcador ``4C000215`` (company id Apple ``4C00``, tipo iBeacon
``02``, tamanho ``15`` = 21 bytes):

    UUID      16 bytes  (32 caracteres hex)
    Major      2 bytes  big-endian
    Minor      2 bytes  big-endian
    TX power   1 byte   com sinal
"""

import logging
from typing import Optional

from models import DecodedBeacon

logger = logging.getLogger(__name__)

IBEACON_MARKER = "4C000215"
MIN_RAW_LENGTH = 50
# UUID + major + minor + tx power, em caracteres hex
IBEACON_BODY_LENGTH = 42


def format_uuid(uuid_hex: str) -> str:
    """32 caracteres hex -> 8-4-4-4-12."""
    return "-".join(
        (uuid_hex[0:8], uuid_hex[8:12], uuid_hex[12:16], uuid_hex[16:20], uuid_hex[20:32])
    )


def to_signed_byte(value: int) -> int:
    return value - 256 if value > 127 else value


def parse_battery_level(raw_hex: str) -> Optional[int]:
    """Nível de bateria nos dados de advertising específicos do fabricante.

    O formato do fabricante não é documentado para os gateways suportados, então
    nenhum valor de bateria é extraído.
    """
    return None


def decode_ibeacon(raw_hex: Optional[str]) -> Optional[DecodedBeacon]:
    """Decodifica a primeira estrutura iBeacon encontrada em ``raw_hex``.

    Retorna ``None`` quando a string é curta demais, não tem o marcador iBeacon
    ou não traz uma estrutura completa depois dele.
    """
    if not raw_hex or len(raw_hex) < MIN_RAW_LENGTH:
        return None

    data = raw_hex.upper()
    marker_index = data.find(IBEACON_MARKER)
    if marker_index == -1:
        return None

    start = marker_index + len(IBEACON_MARKER)
    if len(data) < start + IBEACON_BODY_LENGTH:
        return None

    try:
        uuid_hex = data[start:start + 32]
        int(uuid_hex, 16)  # levanta ValueError com caracteres não-hex
        uuid = format_uuid(uuid_hex)
        major = int(data[start + 32:start + 36], 16)
        minor = int(data[start + 36:start + 40], 16)
        tx_power = to_signed_byte(int(data[start + 40:start + 42], 16))
        return DecodedBeacon(
            uuid=uuid,
            major=major,
            minor=minor,
            tx_power=tx_power,
            battery_level=parse_battery_level(raw_hex),
        )
    except ValueError as exc:
        logger.debug("Invalid iBeacon payload %r: %s", raw_hex, exc)
        return None
