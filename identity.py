"""Formas canônicas de MAC de gateway e UUID de beacon.

A allow-list e a tabela de devices usam caixas diferentes para o UUID, então
cada busca passa pela sua própria função em vez de um ``upper()``/``lower()`` solto.
"""

from typing import Optional


def canonical_mac(mac: Optional[str]) -> str:
    """``aa:bb:cc:dd:ee:01`` -> ``AABBCCDDEE01``. String vazia quando não sobra nada."""
    if not mac:
        return ""
    return str(mac).strip().replace(":", "").upper()


def canonical_allowlist_uuid(uuid: str) -> str:
    """Forma usada pela allow-list de UUIDs de serviço: maiúsculas, com hífens."""
    return uuid.strip().upper()


def canonical_device_uuid(uuid: str) -> str:
    """Forma usada pela tabela de devices: minúsculas, com hífens."""
    return uuid.strip().lower()
