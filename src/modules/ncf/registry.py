"""
Static catalogue of DGII fiscal voucher (NCF) types and the NCF string format.

An NCF is the type code (one letter plus two digits, e.g. ``B01``) followed by
an 11-digit zero-padded sequence number: ``B0100000000001``.
"""
import re
from dataclasses import dataclass
from enum import StrEnum

from src.core.exceptions import ValidationError

NCF_SEQUENCE_WIDTH = 11
NCF_MAX_SEQUENCE = 10**NCF_SEQUENCE_WIDTH - 1

NCF_PATTERN = re.compile(r"[A-Z]\d{2}\d{11}")


class NCFTypeCode(StrEnum):
    """NCF type codes handled by the system."""

    B01 = "B01"
    B02 = "B02"
    B14 = "B14"
    B15 = "B15"
    E31 = "E31"
    E32 = "E32"
    E33 = "E33"
    E34 = "E34"
    E41 = "E41"
    E43 = "E43"
    E44 = "E44"
    E45 = "E45"


# Types whose authorized ranges carry a DGII expiration date
EXPIRING_TYPES = frozenset({NCFTypeCode.B01, NCFTypeCode.B14, NCFTypeCode.B15})


@dataclass(frozen=True)
class NCFType:
    code: NCFTypeCode
    description: str
    applies_to_credit: bool
    applies_to_final_consumer: bool

    @property
    def requires_expiration(self) -> bool:
        return self.code in EXPIRING_TYPES

    @property
    def is_electronic(self) -> bool:
        return self.code.startswith("E")


_NCF_TYPES: dict[NCFTypeCode, NCFType] = {
    t.code: t
    for t in (
        NCFType(NCFTypeCode.B01, "Facturas con Valor Fiscal", True, False),
        NCFType(NCFTypeCode.B02, "Facturas Consumidor Final", False, True),
        NCFType(NCFTypeCode.B14, "Facturas Gubernamentales", True, False),
        NCFType(NCFTypeCode.B15, "Facturas para Exportaciones", True, False),
        NCFType(NCFTypeCode.E31, "Facturas de Compras", True, False),
        NCFType(NCFTypeCode.E32, "Facturas para Gastos Menores", True, False),
        NCFType(NCFTypeCode.E33, "Facturas de Gastos", True, False),
        NCFType(NCFTypeCode.E34, "Notas de Débito", True, False),
        NCFType(NCFTypeCode.E41, "Comprobantes de Compras", False, False),
        NCFType(NCFTypeCode.E43, "Notas de Crédito que afectan al NCF Fiscal", True, False),
        NCFType(NCFTypeCode.E44, "Notas de Crédito al Consumidor Final", False, True),
        NCFType(NCFTypeCode.E45, "Comprobantes de Anulación", False, False),
    )
}


def get_ncf_type(code: str) -> NCFType | None:
    """Look up an NCF type by code (case-insensitive)."""
    return _NCF_TYPES.get(code.strip().upper()) if code else None


def list_ncf_types() -> list[NCFType]:
    return sorted(_NCF_TYPES.values(), key=lambda t: t.code)


def require_ncf_type(code: str) -> NCFType:
    """Look up an NCF type or raise ValidationError."""
    ncf_type = get_ncf_type(code)
    if ncf_type is None:
        raise ValidationError(f"Unknown NCF type: {code}", field="ncf_type")
    return ncf_type


def format_ncf(ncf_type: str, number: int) -> str:
    """Build the NCF string for a sequence number, e.g. ("B02", 1) -> "B0200000000001"."""
    if number < 1 or number > NCF_MAX_SEQUENCE:
        raise ValueError(f"NCF sequence number out of range: {number}")
    return f"{ncf_type}{number:0{NCF_SEQUENCE_WIDTH}d}"


def validate_format(ncf: str, expected_type: str) -> bool:
    """True when ``ncf`` is well formed and belongs to ``expected_type``."""
    if not ncf or not expected_type:
        return False
    return bool(NCF_PATTERN.fullmatch(ncf)) and ncf[:3] == expected_type.upper()


def parse_ncf(ncf: str) -> tuple[str, int] | None:
    """Split a well-formed NCF into (type code, sequence number)."""
    if not ncf or not NCF_PATTERN.fullmatch(ncf):
        return None
    return ncf[:3], int(ncf[3:])
