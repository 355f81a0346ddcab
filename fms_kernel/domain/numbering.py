"""
Document numbering domain types (``fms_kernel.domain.numbering``).

Responsibility
--------------
Pure helpers for the serial allocator: the deterministic scope key under
which a sequence is gapless, and the zero-padded, separator-delimited
formats of every legal document number.

Architecture position
---------------------
**Kernel domain layer** -- ZERO I/O.  The allocator service owns the
counter rows; this module only names scopes and formats integers.

Invariants enforced
-------------------
* A scope key is a pure function of the scope's components.  Two scopes
  with the same components always map to the same counter row, in any
  construction order.
* Format templates are validated once (a trial render) when built.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping

DV_NUMBER_PATTERN = re.compile(r"^(\d{4,})-(\d{2})-(\d{4})$")


@dataclass(frozen=True)
class SerialScope:
    """
    Key under which a numbering sequence is gapless and unique.

    Components are stored as a sorted tuple of (name, value) pairs so that
    ``SerialScope.of(fiscal_year=2025, document_type="dv")`` and
    ``SerialScope.of(document_type="dv", fiscal_year=2025)`` are equal.
    """

    components: tuple[tuple[str, str], ...]

    def __post_init__(self) -> None:
        if not self.components:
            raise ValueError("SerialScope requires at least one component")
        for name, value in self.components:
            if not name or value == "":
                raise ValueError(f"Empty scope component: {name}={value!r}")
            if "|" in name or "=" in name or "|" in value:
                raise ValueError(f"Reserved character in scope component: {name}={value!r}")

    @classmethod
    def of(cls, **components: Any) -> SerialScope:
        return cls.from_mapping(components)

    @classmethod
    def from_mapping(cls, components: Mapping[str, Any]) -> SerialScope:
        pairs = tuple(sorted(
            (str(k), str(v)) for k, v in components.items() if v is not None
        ))
        return cls(components=pairs)

    @property
    def key(self) -> str:
        return "|".join(f"{name}={value}" for name, value in self.components)

    def __str__(self) -> str:
        return self.key


def dv_scope(fiscal_year: int) -> SerialScope:
    """DV numbers restart every fiscal year."""
    return SerialScope.of(document_type="dv", fiscal_year=fiscal_year)


def check_scope(fiscal_year: int, fund_cluster_code: str, payment_type: str) -> SerialScope:
    return SerialScope.of(
        document_type="check",
        fiscal_year=fiscal_year,
        fund_cluster=fund_cluster_code,
        payment_type=payment_type,
    )


def ors_scope(fiscal_year: int, fund_cluster_code: str) -> SerialScope:
    return SerialScope.of(
        document_type="ors",
        fiscal_year=fiscal_year,
        fund_cluster=fund_cluster_code,
    )


# Fields each formatter supplies; a template may use only these
FORMAT_FIELDS: dict[str, dict[str, Any]] = {
    "dv_number": {"serial": 1, "month": 1, "year": 2025},
    "check_number": {"serial": 1, "year": 2025},
    "ors_number": {"serial": 1, "year": 2025, "month": 1, "fund_cluster": "01"},
    "receipt_number": {"serial": 1, "series": "A"},
}


@dataclass(frozen=True)
class NumberingFormats:
    """
    ``str.format`` templates for every numbered document.

    Each template is trial-rendered with exactly the fields its formatter
    passes (``FORMAT_FIELDS``), so a template naming a field its document
    does not have fails here rather than at allocation time.
    """

    dv_number: str = "{serial:04d}-{month:02d}-{year}"
    check_number: str = "{year}-{serial:04d}"
    ors_number: str = "{fund_cluster}-{year}-{month:02d}-{serial:04d}"
    receipt_number: str = "{series}-{serial:07d}"

    def __post_init__(self) -> None:
        for name, sample in FORMAT_FIELDS.items():
            template = getattr(self, name)
            try:
                rendered = template.format(**sample)
            except KeyError as exc:
                raise ValueError(
                    f"{name} format {template!r} uses unknown field {exc}; "
                    f"available: {sorted(sample)}"
                ) from exc
            except (IndexError, ValueError) as exc:
                raise ValueError(f"Invalid {name} format {template!r}: {exc}") from exc
            if "{serial" not in template:
                raise ValueError(f"{name} format {template!r} must include the serial")
            if not rendered:
                raise ValueError(f"{name} format {template!r} renders empty")


DEFAULT_FORMATS = NumberingFormats()


def format_dv_number(
    serial: int, month: int, fiscal_year: int,
    formats: NumberingFormats = DEFAULT_FORMATS,
) -> str:
    return formats.dv_number.format(serial=serial, month=month, year=fiscal_year)


def format_check_number(
    serial: int, fiscal_year: int,
    formats: NumberingFormats = DEFAULT_FORMATS,
) -> str:
    return formats.check_number.format(serial=serial, year=fiscal_year)


def format_ors_number(
    serial: int, fiscal_year: int, month: int, fund_cluster_code: str,
    formats: NumberingFormats = DEFAULT_FORMATS,
) -> str:
    return formats.ors_number.format(
        serial=serial, year=fiscal_year, month=month, fund_cluster=fund_cluster_code,
    )


def format_receipt_number(
    serial: int, series_code: str,
    formats: NumberingFormats = DEFAULT_FORMATS,
) -> str:
    return formats.receipt_number.format(serial=serial, series=series_code)


@dataclass(frozen=True)
class ParsedDVNumber:
    serial: int
    month: int
    year: int


def validate_dv_number(dv_no: str) -> bool:
    """True if ``dv_no`` has the default ``NNNN-MM-YYYY`` shape."""
    return DV_NUMBER_PATTERN.match(dv_no) is not None


def parse_dv_number(dv_no: str) -> ParsedDVNumber | None:
    """Split a default-format DV number into serial, month and year."""
    match = DV_NUMBER_PATTERN.match(dv_no)
    if match is None:
        return None
    serial, month, year = (int(part) for part in match.groups())
    if not 1 <= month <= 12:
        return None
    return ParsedDVNumber(serial=serial, month=month, year=year)
