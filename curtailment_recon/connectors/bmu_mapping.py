"""Wind-farm BMU (balancing mechanism unit) reference mapping.

The mapping file is a JSON list of objects carrying at least
``elexonBmUnit`` and optionally ``leadPartyName``. Only units present in
the mapping count as wind-farm curtailment.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

import structlog

from curtailment_recon.connectors.base import DataParsingError

logger = structlog.get_logger()

UNKNOWN_LEAD_PARTY = "Unknown"


@dataclass(frozen=True)
class BmuMapping:
    """Immutable lookup of wind-farm BMU ids to lead party names."""

    lead_parties: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "lead_parties", MappingProxyType(dict(self.lead_parties)))

    def __contains__(self, farm_id: object) -> bool:
        return farm_id in self.lead_parties

    def __len__(self) -> int:
        return len(self.lead_parties)

    def lead_party(self, farm_id: str) -> str:
        return self.lead_parties.get(farm_id) or UNKNOWN_LEAD_PARTY

    @classmethod
    def from_entries(cls, entries: Iterable[dict[str, Any]]) -> "BmuMapping":
        """Build a mapping from raw JSON entries.

        Raises:
            DataParsingError: If an entry has no ``elexonBmUnit``.
        """
        lead_parties: dict[str, str] = {}
        for entry in entries:
            unit = entry.get("elexonBmUnit")
            if not unit:
                raise DataParsingError(f"BMU mapping entry without elexonBmUnit: {entry}")
            lead_parties[str(unit)] = entry.get("leadPartyName") or UNKNOWN_LEAD_PARTY
        return cls(lead_parties)


def load_bmu_mapping(path: str | Path) -> BmuMapping:
    """Load the BMU mapping JSON file at *path*.

    Raises:
        FileNotFoundError: If the file does not exist.
        DataParsingError: If the file is not a JSON list of unit entries.
    """
    filepath = Path(path)
    with filepath.open("r", encoding="utf-8") as f:
        try:
            raw = json.load(f)
        except json.JSONDecodeError as exc:
            raise DataParsingError(f"Invalid BMU mapping JSON in {filepath}: {exc}") from exc

    if not isinstance(raw, list):
        raise DataParsingError(f"BMU mapping in {filepath} must be a JSON list")

    mapping = BmuMapping.from_entries(raw)
    logger.info("bmu_mapping_loaded", path=str(filepath), units=len(mapping))
    return mapping
