"""Weight to dimension bucketing and multi-parcel splitting."""

from __future__ import annotations

import math

from fastapi_parcelflow.config import ParcelflowConfig
from fastapi_parcelflow.exceptions import ValidationError
from fastapi_parcelflow.types import ParcelSpec

# Upper weight bound (kg) -> (length, width, height) in cm.
DIMENSION_BUCKETS: tuple[tuple[float, tuple[int, int, int]], ...] = (
    (1, (15, 15, 15)),
    (2, (18, 18, 18)),
    (3, (20, 20, 20)),
    (5, (25, 25, 20)),
    (7, (30, 25, 20)),
    (10, (35, 30, 25)),
    (15, (40, 35, 30)),
    (20, (50, 40, 30)),
    (25, (55, 45, 35)),
    (30, (60, 50, 40)),
)
OVERSIZE_DIMENSIONS = (60, 50, 40)
EMPTY_CART_PARCEL = ParcelSpec(length=15, width=15, height=15, weight=0.5)
VOLUMETRIC_DIVISOR = 5000


def volumetric_weight(length: int, width: int, height: int) -> float:
    return (length * width * height) / VOLUMETRIC_DIVISOR


def billable_weight(
    actual_weight: float, length: int, width: int, height: int
) -> float:
    return max(actual_weight, volumetric_weight(length, width, height))


def validate_parcel(parcel: ParcelSpec) -> ParcelSpec:
    if min(parcel.length, parcel.width, parcel.height) <= 0:
        raise ValidationError("Parcel dimensions must be positive")
    if parcel.weight <= 0:
        raise ValidationError("Parcel weight must be positive")
    return parcel


class DefaultParcelSizer:
    """Splits a total weight into parcels no heavier than the max weight."""

    def __init__(
        self,
        config: ParcelflowConfig,
        buckets: tuple[
            tuple[float, tuple[int, int, int]], ...
        ] = DIMENSION_BUCKETS,
    ) -> None:
        self.config = config
        self.buckets = buckets

    def dimensions_for_weight(self, weight: float) -> tuple[int, int, int]:
        for max_weight, dimensions in self.buckets:
            if weight <= max_weight:
                return dimensions
        return OVERSIZE_DIMENSIONS

    def parcels_for_weight(self, total_weight: float) -> list[ParcelSpec]:
        total_weight = float(total_weight)
        if total_weight <= 0:
            return [
                ParcelSpec(
                    length=EMPTY_CART_PARCEL.length,
                    width=EMPTY_CART_PARCEL.width,
                    height=EMPTY_CART_PARCEL.height,
                    weight=EMPTY_CART_PARCEL.weight,
                )
            ]

        max_weight = self.config.max_parcel_weight
        count = 1
        if max_weight > 0 and total_weight > max_weight:
            count = math.ceil(total_weight / max_weight)
        per_parcel = total_weight / count

        length, width, height = self.dimensions_for_weight(per_parcel)
        return [
            ParcelSpec(
                length=length,
                width=width,
                height=height,
                weight=round(per_parcel, 3),
            )
            for _ in range(count)
        ]
