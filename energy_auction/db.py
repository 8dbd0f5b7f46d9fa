import logging
import threading
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional, Sequence

from mysql.connector import Error, connect

from .config import DB_CONFIG, PRICE_DECIMALS, QUANTITY_DECIMALS
from .errors import RecordStoreError
from .models import Bid, SupplyOffer, TimeslotStatus
from .services.amounts import from_units, price_to_units, quantity_to_units

logger = logging.getLogger(__name__)


def create_database_if_not_exists():
    try:
        connection = connect(**DB_CONFIG)
        connection.close()
        return True
    except Error as e:
        if "Unknown database" not in str(e):
            logger.error("MySQL connection failed: %s", e)
            raise RecordStoreError("Could not connect to the database", details=str(e)) from e
    try:
        base_config = {k: v for k, v in DB_CONFIG.items() if k != "database"}
        base_conn = connect(**base_config)
        cur = base_conn.cursor()
        cur.execute(
            f"CREATE DATABASE IF NOT EXISTS `{DB_CONFIG['database']}` "
            "DEFAULT CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci"
        )
        base_conn.commit()
        logger.info("Database '%s' created", DB_CONFIG['database'])
        cur.close()
        base_conn.close()
        return True
    except Error as create_error:
        logger.error("Database creation failed: %s", create_error)
        raise RecordStoreError("Could not create the database", details=str(create_error)) from create_error


def db_connection():
    try:
        return connect(**DB_CONFIG)
    except Error as e:
        if "Unknown database" in str(e):
            create_database_if_not_exists()
            try:
                return connect(**DB_CONFIG)
            except Error as retry_error:
                raise RecordStoreError("Could not connect to the database after creating it", details=str(retry_error)) from retry_error
        raise RecordStoreError("Could not connect to the database", details=str(e)) from e


def ensure_timeslots_table(connection):
    cursor = connection.cursor()
    try:
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS timeslots (
                id VARCHAR(64) PRIMARY KEY,
                start_time DATETIME NOT NULL,
                end_time DATETIME NOT NULL,
                status ENUM('OPEN','SEALED','SETTLED') NOT NULL DEFAULT 'OPEN',
                total_energy DECIMAL(10,4) NOT NULL DEFAULT 0,
                clearing_price DECIMAL(10,4) NULL,
                cleared_quantity DECIMAL(10,4) NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP,
                INDEX idx_timeslots_status (status),
                INDEX idx_timeslots_start (start_time)
            ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4;
            """
        )
        connection.commit()
    finally:
        cursor.close()


def ensure_bids_table(connection):
    cursor = connection.cursor()
    try:
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS bids (
                id VARCHAR(64) PRIMARY KEY,
                user_id VARCHAR(64) NOT NULL,
                timeslot_id VARCHAR(64) NOT NULL,
                price DECIMAL(10,4) NOT NULL,
                quantity DECIMAL(10,4) NOT NULL,
                status ENUM('PENDING','CONFIRMED','MATCHED','CANCELLED','EXPIRED') NOT NULL DEFAULT 'PENDING',
                allocated_quantity DECIMAL(10,4) NULL,
                created_at TIMESTAMP(3) DEFAULT CURRENT_TIMESTAMP(3),
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP,
                INDEX idx_bids_timeslot_status (timeslot_id, status),
                FOREIGN KEY (timeslot_id) REFERENCES timeslots(id) ON DELETE CASCADE
            ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4;
            """
        )
        connection.commit()
    finally:
        cursor.close()


def ensure_supplies_table(connection):
    cursor = connection.cursor()
    try:
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS supplies (
                id VARCHAR(64) PRIMARY KEY,
                user_id VARCHAR(64) NOT NULL,
                timeslot_id VARCHAR(64) NOT NULL,
                reserve_price DECIMAL(10,4) NOT NULL,
                quantity DECIMAL(10,4) NOT NULL,
                status ENUM('COMMITTED','CONFIRMED','ALLOCATED','DELIVERED','CANCELLED') NOT NULL DEFAULT 'COMMITTED',
                allocated_quantity DECIMAL(10,4) NULL,
                allocation_price DECIMAL(10,4) NULL,
                created_at TIMESTAMP(3) DEFAULT CURRENT_TIMESTAMP(3),
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP,
                INDEX idx_supplies_timeslot_status (timeslot_id, status),
                FOREIGN KEY (timeslot_id) REFERENCES timeslots(id) ON DELETE CASCADE
            ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4;
            """
        )
        connection.commit()
    finally:
        cursor.close()


def init_all_tables():
    try:
        create_database_if_not_exists()
        conn = db_connection()
        try:
            ensure_timeslots_table(conn)
            ensure_bids_table(conn)
            ensure_supplies_table(conn)
        finally:
            conn.close()
        logger.info("All tables created/verified")
        return True
    except (RecordStoreError, Error) as e:
        logger.error("Table initialisation failed: %s", e)
        return False


def _price_param(units: int) -> str:
    return str(from_units(units, PRICE_DECIMALS))


def _quantity_param(units: int) -> str:
    return str(from_units(units, QUANTITY_DECIMALS))


class MySQLRecordStore:
    """RecordStore over the timeslots/bids/supplies tables.

    Reads open a short-lived connection each. Writes are only accepted inside
    ``transaction()``, whose connection is kept per thread so the scheduler
    and request handlers can share one store.
    """

    def __init__(self, connect_fn=db_connection):
        self._connect = connect_fn
        self._local = threading.local()

    @property
    def _tx_conn(self):
        return getattr(self._local, "conn", None)

    def _open(self):
        try:
            return self._connect()
        except Error as e:
            raise RecordStoreError("Could not connect to the database", details=str(e)) from e

    def _query(self, sql: str, params: Sequence[Any] = ()) -> List[dict]:
        conn = self._tx_conn or self._open()
        owned = conn is not self._tx_conn
        try:
            cur = conn.cursor(dictionary=True)
            try:
                cur.execute(sql, tuple(params))
                return cur.fetchall()
            finally:
                cur.close()
        except Error as e:
            raise RecordStoreError("Error reading clearing records", details=str(e)) from e
        finally:
            if owned:
                conn.close()

    def _update_one(self, sql: str, params: Sequence[Any], what: str) -> None:
        conn = self._tx_conn
        if conn is None:
            raise RecordStoreError(f"Cannot update {what} outside a transaction")
        try:
            cur = conn.cursor()
            try:
                cur.execute(sql, tuple(params))
                rowcount = cur.rowcount
            finally:
                cur.close()
        except Error as e:
            raise RecordStoreError(f"Error updating {what}", details=str(e)) from e
        if rowcount != 1:
            raise RecordStoreError(f"{what} was not in the expected state", details={"rowcount": rowcount})

    @staticmethod
    def _rollback(conn) -> None:
        try:
            conn.rollback()
        except Error as e:
            # the original failure is the one re-raised
            logger.error("Rollback failed: %s", e)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if self._tx_conn is not None:
            raise RecordStoreError("Nested clearing transactions are not supported")
        conn = self._open()
        try:
            try:
                conn.start_transaction()
            except Error as e:
                raise RecordStoreError("Could not start a clearing transaction", details=str(e)) from e
            self._local.conn = conn
            try:
                yield
            except BaseException:
                self._rollback(conn)
                raise
            try:
                conn.commit()
            except Error as e:
                self._rollback(conn)
                raise RecordStoreError("Error committing clearing results", details=str(e)) from e
        finally:
            self._local.conn = None
            try:
                conn.close()
            except Error as e:
                logger.warning("Closing the clearing connection failed: %s", e)

    def load_bids(self, timeslot_id: str) -> List[Bid]:
        rows = self._query(
            "SELECT id, user_id, price, quantity, created_at FROM bids "
            "WHERE timeslot_id=%s AND status='PENDING'",
            (timeslot_id,)
        )
        return [
            Bid(
                id=row['id'],
                bidder_id=row['user_id'],
                price=price_to_units(row['price']),
                quantity=quantity_to_units(row['quantity']),
                submitted_at=row['created_at'],
            )
            for row in rows
        ]

    def load_supplies(self, timeslot_id: str) -> List[SupplyOffer]:
        rows = self._query(
            "SELECT id, user_id, reserve_price, quantity, created_at FROM supplies "
            "WHERE timeslot_id=%s AND status='COMMITTED'",
            (timeslot_id,)
        )
        return [
            SupplyOffer(
                id=row['id'],
                supplier_id=row['user_id'],
                reserve_price=price_to_units(row['reserve_price'], field="reservePrice"),
                quantity=quantity_to_units(row['quantity']),
                submitted_at=row['created_at'],
            )
            for row in rows
        ]

    def get_timeslot_status(self, timeslot_id: str) -> Optional[TimeslotStatus]:
        rows = self._query("SELECT status FROM timeslots WHERE id=%s", (timeslot_id,))
        return TimeslotStatus(rows[0]['status']) if rows else None

    def lock_timeslot(self, timeslot_id: str) -> Optional[TimeslotStatus]:
        if self._tx_conn is None:
            raise RecordStoreError("Timeslot row lock requires a transaction")
        rows = self._query("SELECT status FROM timeslots WHERE id=%s FOR UPDATE", (timeslot_id,))
        return TimeslotStatus(rows[0]['status']) if rows else None

    def list_sealed_timeslots(self) -> List[str]:
        rows = self._query("SELECT id FROM timeslots WHERE status='SEALED' ORDER BY start_time ASC")
        return [row['id'] for row in rows]

    def mark_bid_matched(self, bid_id: str, allocated_quantity: int) -> None:
        self._update_one(
            "UPDATE bids SET status='MATCHED', allocated_quantity=%s WHERE id=%s AND status='PENDING'",
            (_quantity_param(allocated_quantity), bid_id),
            f"bid {bid_id}",
        )

    def mark_supply_allocated(self, supply_id: str, allocated_quantity: int, allocation_price: int) -> None:
        self._update_one(
            "UPDATE supplies SET status='ALLOCATED', allocated_quantity=%s, allocation_price=%s "
            "WHERE id=%s AND status='COMMITTED'",
            (_quantity_param(allocated_quantity), _price_param(allocation_price), supply_id),
            f"supply {supply_id}",
        )

    def set_timeslot_clearing_price(self, timeslot_id: str, price: int, quantity: int) -> None:
        self._update_one(
            "UPDATE timeslots SET status='SETTLED', clearing_price=%s, cleared_quantity=%s "
            "WHERE id=%s AND status='SEALED'",
            (_price_param(price), _quantity_param(quantity), timeslot_id),
            f"timeslot {timeslot_id}",
        )


__all__ = [
    'db_connection',
    'create_database_if_not_exists',
    'ensure_timeslots_table',
    'ensure_bids_table',
    'ensure_supplies_table',
    'init_all_tables',
    'MySQLRecordStore',
]
