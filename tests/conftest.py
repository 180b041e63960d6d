"""Shared fixtures: in-memory database, fake venue catalog, recording notifier."""

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

import hedgebot.models  # noqa: F401  registers table metadata
from hedgebot.models.position import OptionKind
from hedgebot.services.deribit_client import OptionInstrument, VenueError, build_instrument_name
from hedgebot.services.position_store import PositionStore


class FakeCatalog:
    """Stands in for DeribitClient with canned instruments and quotes.

    ``asks`` maps instrument name to best ask in units of the underlying;
    ``failing`` holds names whose ticker call raises VenueError.
    """

    def __init__(self, instruments=None, spot=1.0, asks=None):
        self.instruments: list[OptionInstrument] = list(instruments or [])
        self.spot = spot
        self.asks: dict[str, float] = dict(asks or {})
        self.failing: set[str] = set()
        self.fail_catalog = False
        self.ask_calls: list[str] = []

    def add_ladder(self, asset, expiry, strikes, kinds=(OptionKind.PUT, OptionKind.CALL)):
        for strike in strikes:
            for kind in kinds:
                self.instruments.append(OptionInstrument(
                    name=build_instrument_name(asset, expiry, strike, kind),
                    expiry=expiry,
                    strike=float(strike),
                    option_kind=kind,
                    tradable=True,
                ))

    async def list_instruments(self, asset):
        if self.fail_catalog:
            raise VenueError("catalog unavailable")
        return [i for i in self.instruments if i.name.startswith(f"{asset}-")]

    async def list_expiries(self, asset):
        tokens = []
        for ins in await self.list_instruments(asset):
            if ins.expiry not in tokens:
                tokens.append(ins.expiry)
        return tokens

    async def list_strikes(self, asset, expiry):
        return sorted({i.strike for i in await self.list_instruments(asset) if i.expiry == expiry})

    async def spot_price(self, asset):
        if self.fail_catalog:
            raise VenueError("ticker unavailable")
        return self.spot

    async def ask_price(self, instrument_name):
        self.ask_calls.append(instrument_name)
        if instrument_name in self.failing:
            raise VenueError(f"ticker for {instrument_name} unavailable")
        return self.asks.get(instrument_name, 0.0)

    async def option_price_usd(self, asset, instrument_name, spot=None):
        ask = await self.ask_price(instrument_name)
        if ask <= 0:
            return 0.0
        return ask * (spot if spot is not None else self.spot)


class FakeNotifier:
    def __init__(self, fail=False):
        self.sent: list[tuple[str, str, list]] = []
        self.fail = fail

    async def send_alert(self, user_handle, text, buttons):
        if self.fail:
            raise RuntimeError("chat unreachable")
        self.sent.append((user_handle, text, buttons))


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(db_engine):
    return PositionStore(db_engine)


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def notifier():
    return FakeNotifier()
