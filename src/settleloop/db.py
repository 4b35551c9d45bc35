"""SQLite database operations for SettleLoop.

Records are stored as JSON documents, one row each. Missions embed their
members and expenses; rules and bill packs point at their mission by id.
"""

import sqlite3
from datetime import datetime
from pathlib import Path

from .models import AutoSplitRule, BillPack, Mission, utcnow


class Database:
    """SQLite database manager."""

    def __init__(self, db_path: Path):
        """Initialize database connection."""
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path))
        self.conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self):
        """Initialize database schema."""
        cursor = self.conn.cursor()

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS missions (
                id TEXT PRIMARY KEY,
                position INTEGER NOT NULL,
                payload TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS autosplit_rules (
                id TEXT PRIMARY KEY,
                mission_id TEXT NOT NULL,
                position INTEGER NOT NULL,
                payload TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS bill_packs (
                id TEXT PRIMARY KEY,
                mission_id TEXT NOT NULL,
                position INTEGER NOT NULL,
                payload TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )

        # Config table
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS config (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )

        self.conn.commit()

    def close(self):
        """Close database connection."""
        self.conn.close()

    # ========================================================================
    # Config operations
    # ========================================================================

    def get_config(self, key: str) -> str | None:
        """Get a config value by key."""
        cursor = self.conn.cursor()
        cursor.execute("SELECT value FROM config WHERE key = ?", (key,))
        row = cursor.fetchone()
        return str(row["value"]) if row else None

    def set_config(self, key: str, value: str):
        """Set a config value."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            INSERT INTO config (key, value, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                updated_at = excluded.updated_at
            """,
            (key, value, utcnow().isoformat()),
        )
        self.conn.commit()

    def get_last_scan_at(self) -> datetime | None:
        """Get when transactions were last scanned against rules."""
        value = self.get_config("last_scan_at")
        return datetime.fromisoformat(value) if value else None

    def set_last_scan_at(self, scanned_at: datetime):
        """Set when transactions were last scanned against rules."""
        self.set_config("last_scan_at", scanned_at.isoformat())

    # ========================================================================
    # Mission operations
    # ========================================================================

    def save_mission(self, mission: Mission):
        """Insert or replace a mission, keeping its original position."""
        self._upsert("missions", mission.id, mission.model_dump_json())

    def get_mission(self, mission_id: str) -> Mission | None:
        """Get a mission by id."""
        cursor = self.conn.cursor()
        cursor.execute("SELECT payload FROM missions WHERE id = ?", (mission_id,))
        row = cursor.fetchone()
        return Mission.model_validate_json(row["payload"]) if row else None

    def get_all_missions(self) -> list[Mission]:
        """Get all missions in creation order."""
        return [
            Mission.model_validate_json(payload)
            for payload in self._payloads("missions")
        ]

    def delete_mission(self, mission_id: str):
        """Delete a mission along with its rules and bill packs."""
        cursor = self.conn.cursor()
        cursor.execute("DELETE FROM missions WHERE id = ?", (mission_id,))
        cursor.execute(
            "DELETE FROM autosplit_rules WHERE mission_id = ?", (mission_id,)
        )
        cursor.execute("DELETE FROM bill_packs WHERE mission_id = ?", (mission_id,))
        self.conn.commit()

    # ========================================================================
    # AutoSplit rule operations
    # ========================================================================

    def save_rule(self, rule: AutoSplitRule):
        """Insert or replace a rule, keeping its catalog position."""
        self._upsert(
            "autosplit_rules", rule.id, rule.model_dump_json(), rule.mission_id
        )

    def get_all_rules(self) -> list[AutoSplitRule]:
        """Get all rules in catalog order."""
        return [
            AutoSplitRule.model_validate_json(payload)
            for payload in self._payloads("autosplit_rules")
        ]

    def delete_rule(self, rule_id: str):
        """Delete a rule."""
        cursor = self.conn.cursor()
        cursor.execute("DELETE FROM autosplit_rules WHERE id = ?", (rule_id,))
        self.conn.commit()

    # ========================================================================
    # Bill pack operations
    # ========================================================================

    def save_bill_pack(self, pack: BillPack):
        """Insert or replace a bill pack."""
        self._upsert("bill_packs", pack.id, pack.model_dump_json(), pack.mission_id)

    def get_all_bill_packs(self) -> list[BillPack]:
        """Get all bill packs in creation order."""
        return [
            BillPack.model_validate_json(payload)
            for payload in self._payloads("bill_packs")
        ]

    def delete_bill_pack(self, pack_id: str):
        """Delete a bill pack."""
        cursor = self.conn.cursor()
        cursor.execute("DELETE FROM bill_packs WHERE id = ?", (pack_id,))
        self.conn.commit()

    # ========================================================================
    # Helpers
    # ========================================================================

    def _upsert(
        self, table: str, record_id: str, payload: str, mission_id: str | None = None
    ):
        cursor = self.conn.cursor()
        cursor.execute(f"SELECT COALESCE(MAX(position), -1) + 1 FROM {table}")
        next_position = cursor.fetchone()[0]

        if table == "missions":
            cursor.execute(
                """
                INSERT INTO missions (id, position, payload, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    payload = excluded.payload,
                    updated_at = excluded.updated_at
                """,
                (record_id, next_position, payload, utcnow().isoformat()),
            )
        else:
            cursor.execute(
                f"""
                INSERT INTO {table} (id, mission_id, position, payload, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    mission_id = excluded.mission_id,
                    payload = excluded.payload,
                    updated_at = excluded.updated_at
                """,
                (record_id, mission_id, next_position, payload, utcnow().isoformat()),
            )
        self.conn.commit()

    def _payloads(self, table: str) -> list[str]:
        cursor = self.conn.cursor()
        cursor.execute(f"SELECT payload FROM {table} ORDER BY position")
        return [row["payload"] for row in cursor.fetchall()]
