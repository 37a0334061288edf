"""
Seat pricing.

The hold manager asks a PriceSource for every seat it reserves and stores
the total on the reservation. Pricing rules live outside the booking core;
the default charges the show's flat ticket price for every seat.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Iterable, Optional

from seathold.models.show import Show


class PriceSource(ABC):
    @abstractmethod
    def price_for(self, show: Show, seat_id: str) -> Decimal:
        """Price of one seat of the show."""

    def amount_for(self, show: Show, seat_ids: Iterable[str]) -> Decimal:
        return sum((self.price_for(show, seat_id) for seat_id in seat_ids), Decimal("0"))


class FlatShowPricing(PriceSource):
    def price_for(self, show: Show, seat_id: str) -> Decimal:
        return Decimal(show.price)


_price_source: Optional[PriceSource] = None


def get_price_source() -> PriceSource:
    global _price_source
    if _price_source is None:
        _price_source = FlatShowPricing()
    return _price_source


def set_price_source(source: Optional[PriceSource]) -> None:
    """Swap the pricing rules; None restores the flat show price."""
    global _price_source
    _price_source = source
