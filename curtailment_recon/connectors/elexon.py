"""Elexon BMRS connector -- balancing mechanism bid/offer settlement stacks.

Fetches the settlement stacks for one (date, period) and keeps the entries
that represent wind-farm curtailment.

Key design decisions:
- Both the bid and the offer stack are queried for every period
- An entry is curtailment iff volume < 0, soFlag is set and the unit is a
  known wind-farm BMU (every unit passes when no mapping is loaded)
- HTTP 404 on a stack means that stack has no data for the period
- Payment is stored as a cost: ``-|volume * originalPrice|``
- Several acceptances for the same unit in one period are merged into one
  row so (date, period, farm) stays unique
"""

from __future__ import annotations

from collections.abc import Collection
from datetime import date
from typing import Any

from curtailment_recon.connectors.base import BaseConnector, DataParsingError
from curtailment_recon.connectors.bmu_mapping import UNKNOWN_LEAD_PARTY, BmuMapping
from curtailment_recon.core.config import settings
from curtailment_recon.core.utils.periods import validate_periods

CURRENCY = "GBP"


def _to_float(entry: dict[str, Any], key: str) -> float:
    try:
        return float(entry[key])
    except (KeyError, TypeError, ValueError) as exc:
        raise DataParsingError(f"Stack entry has invalid {key!r}: {entry}") from exc


def build_record(
    settlement_date: date,
    period: int,
    entry: dict[str, Any],
    lead_party_name: str = UNKNOWN_LEAD_PARTY,
) -> dict[str, Any]:
    """Map one raw stack entry to a curtailment record dict.

    Volume is kept as delivered (negative = reduction). Payment is always
    stored non-positive regardless of the sign of the accepted price.
    """
    farm_id = entry.get("id")
    if not farm_id:
        raise DataParsingError(f"Stack entry without unit id: {entry}")
    volume = _to_float(entry, "volume")
    original_price = _to_float(entry, "originalPrice")
    final_price = _to_float(entry, "finalPrice")
    return {
        "settlement_date": settlement_date,
        "settlement_period": period,
        "farm_id": str(farm_id),
        "lead_party_name": lead_party_name,
        "volume": volume,
        "payment": -abs(volume * original_price),
        "original_price": original_price,
        "final_price": final_price,
        "so_flag": bool(entry.get("soFlag")),
        "cadl_flag": bool(entry.get("cadlFlag")),
        "currency": CURRENCY,
    }


def merge_by_farm(records: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Collapse records sharing a farm id into one row per farm.

    Volume and payment are summed; prices become volume-weighted averages.
    Output is ordered by farm id.
    """
    merged: dict[str, dict[str, Any]] = {}
    for rec in records:
        current = merged.get(rec["farm_id"])
        if current is None:
            merged[rec["farm_id"]] = dict(rec)
            continue
        total_volume = current["volume"] + rec["volume"]
        if total_volume:
            for price in ("original_price", "final_price"):
                current[price] = (
                    current[price] * current["volume"] + rec[price] * rec["volume"]
                ) / total_volume
        current["volume"] = total_volume
        current["payment"] += rec["payment"]
        current["so_flag"] = current["so_flag"] or rec["so_flag"]
        current["cadl_flag"] = current["cadl_flag"] or rec["cadl_flag"]
    return [merged[farm_id] for farm_id in sorted(merged)]


class ElexonConnector(BaseConnector):
    """Connector for the Elexon BMRS settlement bid/offer stacks.

    Usage::

        async with ElexonConnector(bmu_mapping=mapping) as conn:
            records = await conn.fetch_period(date(2025, 3, 28), 17)
    """

    SOURCE_NAME: str = "ELEXON"
    STACKS: tuple[str, ...] = ("bid", "offer")

    def __init__(
        self,
        bmu_mapping: BmuMapping | None = None,
        base_url: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(base_url or settings.elexon_base_url, **kwargs)
        self.bmu_mapping = bmu_mapping

    def _is_curtailment(self, entry: dict[str, Any]) -> bool:
        try:
            volume = float(entry.get("volume", 0))
        except (TypeError, ValueError):
            return False
        if volume >= 0 or not entry.get("soFlag"):
            return False
        if self.bmu_mapping is not None and entry.get("id") not in self.bmu_mapping:
            return False
        return True

    async def _fetch_stack(
        self, stack: str, settlement_date: date, period: int
    ) -> list[dict[str, Any]]:
        url = f"/balancing/settlement/stack/all/{stack}/{settlement_date.isoformat()}/{period}"
        response = await self._request("GET", url)
        if response is None:
            return []
        try:
            payload = response.json()
        except ValueError as exc:
            raise DataParsingError(f"{self.SOURCE_NAME}: non-JSON body for {url}") from exc
        if not isinstance(payload, dict) or not isinstance(payload.get("data", []), list):
            raise DataParsingError(f"{self.SOURCE_NAME}: unexpected payload shape for {url}")
        return payload.get("data", [])

    async def fetch_period(
        self,
        settlement_date: date,
        period: int,
        farm_ids: Collection[str] | None = None,
    ) -> list[dict[str, Any]]:
        """Fetch curtailment records for a single settlement period.

        Args:
            settlement_date: Settlement date.
            period: Settlement period 1..48.
            farm_ids: Optional resource filter; only these units are kept.

        Returns:
            Curtailment record dicts, one per farm. Empty when the period
            legitimately has no curtailment.

        Raises:
            TransientSourceError: If a stack could not be fetched.
            DataParsingError: If a stack payload is malformed.
        """
        validate_periods([period])
        entries: list[dict[str, Any]] = []
        for stack in self.STACKS:
            entries.extend(await self._fetch_stack(stack, settlement_date, period))

        records: list[dict[str, Any]] = []
        for entry in entries:
            if not self._is_curtailment(entry):
                continue
            if farm_ids is not None and entry.get("id") not in farm_ids:
                continue
            lead_party = (
                self.bmu_mapping.lead_party(entry["id"])
                if self.bmu_mapping is not None
                else entry.get("leadPartyName") or UNKNOWN_LEAD_PARTY
            )
            records.append(build_record(settlement_date, period, entry, lead_party))

        records = merge_by_farm(records)
        self.log.info(
            "period_fetched",
            date=str(settlement_date),
            period=period,
            stack_entries=len(entries),
            records=len(records),
            volume=round(sum(r["volume"] for r in records), 3),
        )
        return records
