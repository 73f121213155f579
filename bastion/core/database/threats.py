"""
Bastion - Threat Intelligence Database Mixin
============================================

Threat reports (correlation input) and correlations (correlation output).

Author: Bastion Maintainers
"""

import json
import sqlite3
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from bastion.core.database.base import _db_error, _safe_json_loads
from bastion.core.models import Correlation, CorrelationKind, ThreatReport

if TYPE_CHECKING:
    from bastion.core.database.manager import DatabaseManager


def _row_to_report(row: sqlite3.Row) -> ThreatReport:
    return ThreatReport(
        community_id=row["community_id"],
        actor_id=row["actor_id"],
        type=row["type"],
        severity=row["severity"],
        metadata=_safe_json_loads(row["metadata"], default={}),
        timestamp=row["timestamp"],
    )


def _row_to_correlation(row: sqlite3.Row) -> Correlation:
    return Correlation(
        id=row["id"],
        kind=CorrelationKind(row["kind"]),
        threat_type=row["threat_type"],
        affected_communities=frozenset(_safe_json_loads(row["communities"])),
        confidence=row["confidence"],
        detected_at=row["detected_at"],
        actor_id=row["actor_id"],
        signature=row["signature"],
        report_count=row["report_count"],
    )


class ThreatsMixin:
    """Mixin for threat report and correlation storage."""

    # =========================================================================
    # Threat Reports
    # =========================================================================

    def save_threat_report(self: "DatabaseManager", report: ThreatReport) -> bool:
        """
        Append a threat report.

        Returns:
            True if stored. Callers queue the report for retry on False.
        """
        try:
            self.execute(
                """INSERT INTO threat_reports
                   (community_id, actor_id, type, severity, metadata, timestamp)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    report.community_id,
                    report.actor_id,
                    report.type,
                    report.severity,
                    json.dumps(report.metadata, sort_keys=True, default=str),
                    report.timestamp,
                )
            )
            return True
        except sqlite3.Error as e:
            _db_error("Threat Report Save Failed", e,
                      ("Community", str(report.community_id)), ("Type", report.type))
            return False

    def get_threat_reports_since(self: "DatabaseManager", since: float) -> Optional[List[ThreatReport]]:
        """
        Reports newer than `since`, oldest first.

        Returns:
            List of reports, or None if the read failed.
        """
        try:
            rows = self.fetchall(
                "SELECT * FROM threat_reports WHERE timestamp > ? ORDER BY timestamp, id",
                (since,)
            )
        except sqlite3.Error as e:
            _db_error("Threat Report Read Failed", e)
            return None
        return [_row_to_report(row) for row in rows]

    def purge_threat_reports(self: "DatabaseManager", before: float) -> int:
        try:
            cursor = self.execute("DELETE FROM threat_reports WHERE timestamp < ?", (before,))
        except sqlite3.Error as e:
            _db_error("Threat Report Purge Failed", e)
            return 0
        return cursor.rowcount

    # =========================================================================
    # Correlations
    # =========================================================================

    def save_correlation(self: "DatabaseManager", correlation: Correlation) -> Optional[int]:
        """
        Store a correlation.

        Returns:
            Row id, or None if the write failed.
        """
        try:
            cursor = self.execute(
                """INSERT INTO threat_correlations
                   (kind, threat_type, actor_id, signature, communities,
                    confidence, report_count, detected_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    correlation.kind.value,
                    correlation.threat_type,
                    correlation.actor_id,
                    correlation.signature,
                    json.dumps(sorted(correlation.affected_communities)),
                    correlation.confidence,
                    correlation.report_count,
                    correlation.detected_at,
                )
            )
        except sqlite3.Error as e:
            _db_error("Correlation Save Failed", e,
                      ("Kind", correlation.kind.value), ("Type", correlation.threat_type))
            return None
        return cursor.lastrowid

    def get_recent_correlations(self: "DatabaseManager", limit: int = 10) -> List[Correlation]:
        try:
            rows = self.fetchall(
                "SELECT * FROM threat_correlations ORDER BY detected_at DESC, id DESC LIMIT ?",
                (limit,)
            )
        except sqlite3.Error as e:
            _db_error("Correlation Read Failed", e)
            return []
        return [_row_to_correlation(row) for row in rows]

    # =========================================================================
    # Stats
    # =========================================================================

    def get_threat_stats(self: "DatabaseManager", since: float) -> Dict[str, Any]:
        """Report and correlation counts since a timestamp."""
        stats: Dict[str, Any] = {"reports": 0, "communities": 0, "actors": 0, "correlations": {}}
        try:
            row = self.fetchone(
                """SELECT COUNT(*) AS reports,
                          COUNT(DISTINCT community_id) AS communities,
                          COUNT(DISTINCT actor_id) AS actors
                   FROM threat_reports WHERE timestamp >= ?""",
                (since,)
            )
            kinds = self.fetchall(
                """SELECT kind, COUNT(*) AS count FROM threat_correlations
                   WHERE detected_at >= ? GROUP BY kind""",
                (since,)
            )
        except sqlite3.Error as e:
            _db_error("Threat Stats Failed", e)
            return stats

        stats["reports"] = row["reports"] or 0
        stats["communities"] = row["communities"] or 0
        stats["actors"] = row["actors"] or 0
        stats["correlations"] = {r["kind"]: r["count"] for r in kinds}
        return stats


__all__ = ["ThreatsMixin"]
