"""
Exchange Rate Store

Holds the known currencies and the current directional rate for each
ordered pair. All lookups are synchronous reads against in-memory state, so
conversions can run concurrently with writes to unrelated accounts.

DESIGN DECISION: Conversion fails closed. When neither the direct pair nor
its inverse is known, `convert` returns the amount unchanged rather than
bridging through a third currency whose rate may be stale. Balances stay
displayable; the degraded path is logged.
"""

from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterable, Optional

import structlog

from money_tracker.models.currency import Currency, ExchangeRate, RateSource

logger = structlog.get_logger(__name__)

ONE = Decimal("1")


class ExchangeRateStore:
    """
    In-memory currency and rate registry.

    Rates are directional: storing EUR->USD says nothing about USD->EUR
    except that `effective_rate` may fall back to `1 / rate` at lookup time.
    Nothing is ever written for the inverse pair.
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        self._clock = clock
        self._currencies: dict[str, Currency] = {}
        self._rates: dict[tuple[str, str], ExchangeRate] = {}

    # -------------------------------------------------------------------------
    # Currencies
    # -------------------------------------------------------------------------

    def add_currency(self, currency: Currency) -> None:
        self._currencies[currency.code] = currency

    def get_currency(self, code: str) -> Optional[Currency]:
        return self._currencies.get(code.upper())

    def list_currencies(self) -> list[Currency]:
        return sorted(self._currencies.values(), key=lambda c: c.code)

    # -------------------------------------------------------------------------
    # Rates
    # -------------------------------------------------------------------------

    def get_rate(self, from_code: str, to_code: str) -> Optional[ExchangeRate]:
        """The directly stored rate for (from, to), if any."""
        return self._rates.get((from_code.upper(), to_code.upper()))

    def effective_rate(self, from_code: str, to_code: str) -> Optional[Decimal]:
        """
        Rate that converts one unit of `from_code` into `to_code`.

        Identity for equal codes, then the direct pair, then the inverse of
        the reverse pair. None when neither pair is known.
        """
        if from_code.upper() == to_code.upper():
            return ONE

        direct = self.get_rate(from_code, to_code)
        if direct is not None:
            return direct.rate

        inverse = self.get_rate(to_code, from_code)
        if inverse is not None:
            return ONE / inverse.rate

        return None

    def convert(self, amount: Decimal, from_code: str, to_code: str) -> Decimal:
        """
        Convert an amount between currencies.

        Returns `amount` unchanged when the codes are equal or when no rate
        is available in either direction.
        """
        if from_code.upper() == to_code.upper():
            return amount

        rate = self.effective_rate(from_code, to_code)
        if rate is None:
            logger.debug("conversion_unavailable", from_code=from_code, to_code=to_code)
            return amount
        return amount * rate

    def build_rate(
        self,
        from_code: str,
        to_code: str,
        rate: Decimal,
        source: RateSource = RateSource.MANUAL,
    ) -> ExchangeRate:
        """
        The rate an update of (from, to) would store, without storing it.

        Keeps the id of the current rate for the pair so storage can upsert.

        Raises:
            ValueError: If the codes are equal or the rate is not positive
        """
        if from_code.upper() == to_code.upper():
            raise ValueError("Cannot set an exchange rate from a currency to itself")

        existing = self.get_rate(from_code, to_code)
        return ExchangeRate(
            from_code=from_code,
            to_code=to_code,
            rate=rate,
            source=source,
            updated_at=self._clock(),
            **({"id": existing.id} if existing else {}),
        )

    def put_rate(self, exchange_rate: ExchangeRate) -> None:
        """Make `exchange_rate` the current rate for its pair."""
        self._rates[exchange_rate.pair] = exchange_rate

    def update_exchange_rate(
        self,
        from_code: str,
        to_code: str,
        rate: Decimal,
        source: RateSource = RateSource.MANUAL,
    ) -> ExchangeRate:
        """
        Upsert the rate for the ordered pair (from, to).

        The inverse pair is left as it is.

        Raises:
            ValueError: If the codes are equal or the rate is not positive
        """
        exchange_rate = self.build_rate(from_code, to_code, rate, source)
        self.put_rate(exchange_rate)
        return exchange_rate

    def plan_cross_rates(
        self,
        base_code: str,
        rates_from_base: dict[str, Decimal],
    ) -> list[ExchangeRate]:
        """
        Default rates for every ordered pair reachable through `base_code`.

        `rates_from_base` maps a currency code to how many units of it one
        unit of the base buys. Pairs that already hold a manual or fetched
        rate are left out. Nothing is stored.
        """
        units = {base_code.upper(): ONE}
        units.update({code.upper(): Decimal(rate) for code, rate in rates_from_base.items()})

        planned = []
        for from_code, from_units in units.items():
            for to_code, to_units in units.items():
                if from_code == to_code:
                    continue
                existing = self.get_rate(from_code, to_code)
                if existing is not None and not existing.is_default:
                    continue
                planned.append(
                    self.build_rate(from_code, to_code, to_units / from_units, RateSource.DEFAULT)
                )
        return planned

    def seed_cross_rates(
        self,
        base_code: str,
        rates_from_base: dict[str, Decimal],
    ) -> list[ExchangeRate]:
        """
        Write the rates `plan_cross_rates` proposes.

        Returns:
            The rates that were written
        """
        written = self.plan_cross_rates(base_code, rates_from_base)
        for exchange_rate in written:
            self.put_rate(exchange_rate)

        logger.info("cross_rates_seeded", base=base_code, count=len(written))
        return written

    def rates(self) -> list[ExchangeRate]:
        return list(self._rates.values())

    def last_updated_at(self) -> Optional[datetime]:
        """When any non-default rate was last changed."""
        stamps = [r.updated_at for r in self._rates.values() if not r.is_default]
        return max(stamps) if stamps else None

    def load(self, currencies: Iterable[Currency], rates: Iterable[ExchangeRate]) -> None:
        """Replace in-memory state with reference data read from storage."""
        self._currencies = {c.code: c for c in currencies}
        self._rates = {r.pair: r for r in rates}
