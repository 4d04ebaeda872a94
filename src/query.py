"""
Redfin PPSF Trends: Query Parameters

Builds the request parameters for Redfin's gis-csv endpoint. The price band
is split into bins because a single query is capped at `num_homes` rows.

Region ids come from redfin.com URLs, e.g.
https://www.redfin.com/city/9641/PA/Jenkintown -> "9641".

Region type:    1 neighborhood, 2 zip, 5 county, 6 city
Status:         "" any, 1 active, 130 pending, 131 pending + active, 9 sold
Property type:  1 house, 2 townhouse, 3 condo, 4 multi-family, 5 land, 6 other
Sold within:    30, 90, 365, 1095 (3yr), 1825 (5yr)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, List, Tuple

GIS_CSV_URL = "https://www.redfin.com/stingray/api/gis-csv"


@dataclass(frozen=True)
class QueryConfig:
    # Geography
    region_ids: Tuple[str, ...] = ("7735",)
    region_type: int = 6

    # Listing filters
    status: str = "9"
    property_types: str = "1,2,3"

    # Price band (DEFAULT: 400000 - 539999 in 7 bins of 20k)
    price_base: int = 400000
    price_bin_width: int = 20000
    price_bin_count: int = 7

    # Beds / baths bounds
    num_beds: int = 3
    max_num_beds: int = 6
    num_baths: int = 2
    max_num_baths: int = 6

    sold_within_days: int = 1825
    num_homes: int = 350

    # Alphabetic prefix stripped from MLS numbers (e.g. "MDFR1234567")
    mls_prefix: str = "MDFR"

    # HTTP
    timeout: float = 60.0
    pause: float = 1.0

    def __post_init__(self):
        if not self.region_ids:
            raise ValueError("At least one region id is required")
        if self.price_bin_count < 1:
            raise ValueError(f"price_bin_count must be >= 1, got {self.price_bin_count}")
        if self.price_bin_width <= 0:
            raise ValueError(f"price_bin_width must be > 0, got {self.price_bin_width}")
        if self.sold_within_days <= 0:
            raise ValueError(f"sold_within_days must be > 0, got {self.sold_within_days}")
        if self.num_beds > self.max_num_beds:
            raise ValueError(f"num_beds ({self.num_beds}) exceeds max_num_beds ({self.max_num_beds})")
        if self.num_baths > self.max_num_baths:
            raise ValueError(f"num_baths ({self.num_baths}) exceeds max_num_baths ({self.max_num_baths})")

    @classmethod
    def from_env(cls, **overrides) -> "QueryConfig":
        """
        Build a config from REDFIN_* environment variables.

        Keyword overrides (e.g. from the CLI) win over the environment, which
        wins over the defaults. Overrides set to None are ignored.
        """
        int_vars = {
            "region_type": "REDFIN_REGION_TYPE",
            "price_base": "REDFIN_PRICE_BASE",
            "price_bin_width": "REDFIN_PRICE_BIN_WIDTH",
            "price_bin_count": "REDFIN_PRICE_BIN_COUNT",
            "num_beds": "REDFIN_NUM_BEDS",
            "max_num_beds": "REDFIN_MAX_NUM_BEDS",
            "num_baths": "REDFIN_NUM_BATHS",
            "max_num_baths": "REDFIN_MAX_NUM_BATHS",
            "sold_within_days": "REDFIN_SOLD_WITHIN_DAYS",
            "num_homes": "REDFIN_NUM_HOMES",
        }
        str_vars = {
            "status": "REDFIN_STATUS",
            "property_types": "REDFIN_PROPERTY_TYPES",
            "mls_prefix": "REDFIN_MLS_PREFIX",
        }
        float_vars = {
            "timeout": "REDFIN_REQUEST_TIMEOUT",
            "pause": "REDFIN_REQUEST_PAUSE",
        }

        kwargs = {}
        region_ids = os.environ.get("REDFIN_REGION_IDS")
        if region_ids:
            kwargs["region_ids"] = tuple(r.strip() for r in region_ids.split(",") if r.strip())

        for field_name, var in int_vars.items():
            value = os.environ.get(var)
            if value:
                kwargs[field_name] = int(value)
        for field_name, var in str_vars.items():
            value = os.environ.get(var)
            if value is not None:
                kwargs[field_name] = value
        for field_name, var in float_vars.items():
            value = os.environ.get(var)
            if value:
                kwargs[field_name] = float(value)

        kwargs.update({k: v for k, v in overrides.items() if v is not None})
        if "region_ids" in kwargs:
            kwargs["region_ids"] = tuple(str(r) for r in kwargs["region_ids"])
        return cls(**kwargs)

    def price_bins(self) -> List[Tuple[int, int]]:
        """Inclusive (min_price, max_price) pairs covering the configured band."""
        return [
            (
                self.price_base + i * self.price_bin_width,
                self.price_base + self.price_bin_width + i * self.price_bin_width - 1,
            )
            for i in range(self.price_bin_count)
        ]

    def request_params(self, region_id: str, min_price: int, max_price: int) -> Dict[str, str]:
        """Query string for one region and one price bin."""
        return {
            "al": "1",
            "has_short_term_lease": "false",
            "isRentals": "false",
            "is_furnished": "false",
            "num_homes": str(self.num_homes),
            "ord": "redfin-recommended-asc",
            "page_number": "1",
            "status": str(self.status),
            "sold_within_days": str(self.sold_within_days),
            "uipt": self.property_types,
            "region_id": str(region_id),
            "region_type": str(self.region_type),
            "min_price": str(min_price),
            "max_price": str(max_price),
            "num_baths": str(self.num_baths),
            "max_num_baths": str(self.max_num_baths),
            "num_beds": str(self.num_beds),
            "max_num_beds": str(self.max_num_beds),
            "v": "8",
        }

    def describe(self) -> Dict[str, str]:
        """Human-readable summary used in logs and the HTML report."""
        low = self.price_base
        high = self.price_base + self.price_bin_width * self.price_bin_count - 1
        return {
            "Regions": ", ".join(self.region_ids),
            "Region type": str(self.region_type),
            "Property types": self.property_types,
            "Price band": f"${low:,} - ${high:,} ({self.price_bin_count} bins)",
            "Beds": f"{self.num_beds} - {self.max_num_beds}",
            "Baths": f"{self.num_baths} - {self.max_num_baths}",
            "Sold within": f"{self.sold_within_days} days",
        }
