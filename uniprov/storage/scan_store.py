"""
Scan record persistence - SQLite-backed key-value storage for harvested serials.

Records are keyed by namespace and sanitized MAC address so a device is only
ever scanned once per namespace.
"""
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

import structlog

from uniprov.exceptions import StorageError
from uniprov.models import ScanRecord

logger = structlog.get_logger()


def sanitize_mac(mac_address: str) -> str:
    """Storage key for a MAC address: colons removed, upper-cased."""
    return mac_address.replace(":", "").upper()


class ScanStore:
    """
    Persistent storage for scan records.

    Stores one row per (namespace, sanitized MAC), allowing:
    - Skipping devices already scanned
    - Listing / exporting the harvested serial numbers
    """

    def __init__(self, db_path: Union[str, Path] = "data/scans.db", namespace: str = "unitree_scan"):
        self.db_path = str(db_path)
        self.namespace = namespace
        self._init_database()
        logger.info("scan_store_initialized", db_path=self.db_path, namespace=namespace)

    def _connect(self) -> sqlite3.Connection:
        try:
            return sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise StorageError(
                f"Cannot open scan store at {self.db_path}",
                details={"error": str(e)},
            )

    def _query_failed(self, operation: str, error: sqlite3.Error, **details) -> StorageError:
        logger.error("scan_store_query_failed", operation=operation, error=str(error), **details)
        return StorageError(
            f"Scan store {operation} failed",
            details={"operation": operation, "error": str(error), **details},
        )

    def _init_database(self):
        """Create database schema if it doesn't exist."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        conn = self._connect()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS scan_records (
                    namespace TEXT NOT NULL,
                    key TEXT NOT NULL,
                    mac_address TEXT NOT NULL,
                    serial_number TEXT NOT NULL,
                    device_name TEXT,
                    scanned_at REAL NOT NULL,
                    PRIMARY KEY (namespace, key)
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_scanned_at
                ON scan_records(namespace, scanned_at)
            """)
            conn.commit()
            logger.debug("scan_store_schema_created")
        except sqlite3.Error as e:
            raise self._query_failed("init", e, db_path=self.db_path)
        finally:
            conn.close()

    def is_scanned(self, mac_address: str) -> bool:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT 1 FROM scan_records WHERE namespace = ? AND key = ?",
                (self.namespace, sanitize_mac(mac_address)),
            ).fetchone()
            return row is not None
        except sqlite3.Error as e:
            raise self._query_failed("is_scanned", e, mac_address=mac_address)
        finally:
            conn.close()

    def save(self, record: ScanRecord) -> None:
        """
        Persist a scan record, replacing any earlier one for the same MAC.

        Raises:
            StorageError: the write failed
        """
        conn = self._connect()
        try:
            conn.execute(
                """
                INSERT OR REPLACE INTO scan_records (
                    namespace, key, mac_address, serial_number, device_name, scanned_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    self.namespace,
                    sanitize_mac(record.mac_address),
                    record.mac_address,
                    record.serial_number,
                    record.device_name,
                    record.scanned_at.timestamp(),
                ),
            )
            conn.commit()
            logger.info(
                "scan_record_saved",
                mac_address=record.mac_address,
                serial_number=record.serial_number,
            )
        except sqlite3.Error as e:
            logger.error("scan_record_save_failed", mac_address=record.mac_address, error=str(e))
            raise StorageError(
                f"Failed to save scan record for {record.mac_address}",
                details={"error": str(e)},
            )
        finally:
            conn.close()

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> ScanRecord:
        return ScanRecord(
            mac_address=row["mac_address"],
            serial_number=row["serial_number"],
            device_name=row["device_name"],
            scanned_at=datetime.fromtimestamp(row["scanned_at"]),
        )

    def get(self, mac_address: str) -> Optional[ScanRecord]:
        conn = self._connect()
        conn.row_factory = sqlite3.Row
        try:
            row = conn.execute(
                "SELECT * FROM scan_records WHERE namespace = ? AND key = ?",
                (self.namespace, sanitize_mac(mac_address)),
            ).fetchone()
            return self._row_to_record(row) if row else None
        except sqlite3.Error as e:
            raise self._query_failed("get", e, mac_address=mac_address)
        finally:
            conn.close()

    def list_records(self) -> List[ScanRecord]:
        """All records in this namespace, oldest first."""
        conn = self._connect()
        conn.row_factory = sqlite3.Row
        try:
            rows = conn.execute(
                "SELECT * FROM scan_records WHERE namespace = ? ORDER BY scanned_at, key",
                (self.namespace,),
            ).fetchall()
            records = [self._row_to_record(row) for row in rows]
            logger.debug("scan_records_loaded", count=len(records))
            return records
        except sqlite3.Error as e:
            raise self._query_failed("list_records", e)
        finally:
            conn.close()

    def count(self) -> int:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT COUNT(*) FROM scan_records WHERE namespace = ?",
                (self.namespace,),
            ).fetchone()
            return row[0]
        except sqlite3.Error as e:
            raise self._query_failed("count", e)
        finally:
            conn.close()

    def export_device_list(self) -> str:
        """Plain-text listing, one ``mac|serial`` line per device."""
        return "".join(
            f"{record.mac_address}|{record.serial_number}\n"
            for record in self.list_records()
        )

    def delete(self, mac_address: str) -> bool:
        """Forget a device so the next scan harvests it again."""
        conn = self._connect()
        try:
            cursor = conn.execute(
                "DELETE FROM scan_records WHERE namespace = ? AND key = ?",
                (self.namespace, sanitize_mac(mac_address)),
            )
            conn.commit()
            deleted = cursor.rowcount > 0
            if deleted:
                logger.info("scan_record_deleted", mac_address=mac_address)
            return deleted
        except sqlite3.Error as e:
            raise self._query_failed("delete", e, mac_address=mac_address)
        finally:
            conn.close()
