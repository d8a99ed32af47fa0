import os
import typing

import structlog
from sqlalchemy import Float, ForeignKey, Integer, String, create_engine, event, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from skogsnet.exceptions import StoreOpenError, StoreWriteError
from skogsnet.models import WeatherSample

logger = structlog.get_logger("Database")

BUSY_TIMEOUT_MS = 5000


class Base(DeclarativeBase):  # type: ignore[misc]
    pass


class WeatherRecord(Base):
    __tablename__ = "weather"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[int] = mapped_column(Integer, index=True)
    city: Mapped[str | None] = mapped_column(String, nullable=True)
    temp: Mapped[float | None] = mapped_column(Float, nullable=True)
    humidity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    wind_speed: Mapped[float | None] = mapped_column(Float, nullable=True)
    wind_deg: Mapped[int | None] = mapped_column(Integer, nullable=True)
    clouds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    weather_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    description: Mapped[str | None] = mapped_column(String, nullable=True)


class MeasurementRecord(Base):
    __tablename__ = "measurements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    weather_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("weather.id"), nullable=True
    )
    timestamp: Mapped[int] = mapped_column(Integer, index=True)
    temperature: Mapped[float] = mapped_column(Float)
    humidity: Mapped[float] = mapped_column(Float)


def _set_sqlite_pragma(dbapi_connection: typing.Any, connection_record: typing.Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")
    cursor.close()


class Store:
    """Append-only SQLite store for measurements and weather samples.

    One engine is shared by every producer and by the query engine. WAL mode
    lets readers run while a single-row write is in progress; concurrent
    writers serialise on SQLite's own lock.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self.Session = sessionmaker(bind=engine, expire_on_commit=False)

    @classmethod
    def open(cls, db_path: str) -> "Store":
        """Open (or create) the database file. Raises StoreOpenError."""
        if not db_path:
            raise StoreOpenError("database path is empty")

        try:
            engine = create_engine(
                f"sqlite:///{db_path}", connect_args={"check_same_thread": False}
            )
            event.listen(engine, "connect", _set_sqlite_pragma)

            with engine.connect() as conn:
                mode = conn.exec_driver_sql("PRAGMA journal_mode").scalar()
            if str(mode).lower() != "wal":
                engine.dispose()
                raise StoreOpenError(f"WAL mode verification failed: mode={mode}")

            Base.metadata.create_all(engine)
        except SQLAlchemyError as e:
            raise StoreOpenError(f"Failed to open database {db_path}: {e}") from e

        logger.info(f"Database ready at {os.path.abspath(db_path)} (WAL mode enabled)")
        return cls(engine)

    def connect(self) -> Connection:
        """Get a new read connection."""
        return self.engine.connect()

    def close(self) -> None:
        self.engine.dispose()
        logger.info("Database closed.")

    def append_measurement(
        self,
        timestamp: int,
        temperature: float,
        humidity: float,
        weather_id: int | None = None,
    ) -> int:
        session = self.Session()
        try:
            record = MeasurementRecord(
                timestamp=timestamp,
                temperature=temperature,
                humidity=humidity,
                weather_id=weather_id,
            )
            session.add(record)
            session.commit()
            return record.id
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreWriteError(f"Failed to insert measurement: {e}") from e
        finally:
            session.close()

    def append_weather(self, timestamp: int, sample: WeatherSample) -> int:
        session = self.Session()
        try:
            record = WeatherRecord(
                timestamp=timestamp,
                city=sample.city,
                temp=sample.temp,
                humidity=sample.humidity,
                wind_speed=sample.wind_speed,
                wind_deg=sample.wind_deg,
                clouds=sample.clouds,
                weather_code=sample.weather_code,
                description=sample.description,
            )
            session.add(record)
            session.commit()
            return record.id
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreWriteError(f"Failed to insert weather: {e}") from e
        finally:
            session.close()

    def nearest_weather_id(self, timestamp: int, window_ms: int) -> int | None:
        """Id of the weather row closest to ``timestamp`` within ``window_ms`` (exclusive)."""
        query = text(
            """
            SELECT id FROM weather
            WHERE ABS(timestamp - :ts) < :window
            ORDER BY ABS(timestamp - :ts) ASC, id ASC
            LIMIT 1
            """
        )
        try:
            with self.connect() as conn:
                return conn.execute(query, {"ts": timestamp, "window": window_ms}).scalar()
        except SQLAlchemyError as e:
            raise StoreWriteError(f"Failed to look up nearest weather: {e}") from e
