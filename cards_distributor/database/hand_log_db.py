"""
Hand log database operations for Poker Cards Distributor.
Handles hand starts, phase reveals and showdown outcomes.
"""

import json
import time
from typing import Any, Dict, List, Optional

from cards_distributor.cards import card_str


def _failure_text(failure) -> Optional[str]:
    return None if failure is None else str(failure)


class HandLogDatabaseMixin:
    """Mixin class providing hand log database operations."""

    def record_hand_start(self, session) -> None:
        """Log that a hand was dealt. Re-dealing the same hand_ref replaces it."""
        players = json.dumps(session.identities)
        with self.get_cursor() as cursor:
            cursor.execute("DELETE FROM phase_reveals WHERE table_id = ? AND hand_ref = ?",
                           (session.table_id, session.hand_ref))
            cursor.execute("DELETE FROM showdowns WHERE table_id = ? AND hand_ref = ?",
                           (session.table_id, session.hand_ref))
            cursor.execute("""
                INSERT OR REPLACE INTO hands (table_id, hand_ref, players, started_at, resolved_at, outcome)
                VALUES (?, ?, ?, ?, NULL, NULL)
            """, (session.table_id, session.hand_ref, players, time.time()))

    def _ensure_hand(self, cursor, session) -> None:
        cursor.execute("""
            INSERT OR IGNORE INTO hands (table_id, hand_ref, players, started_at)
            VALUES (?, ?, ?, ?)
        """, (session.table_id, session.hand_ref, json.dumps(session.identities), time.time()))

    def record_phase_report(self, session, report) -> int:
        """Log how a phase was revealed."""
        with self.get_cursor() as cursor:
            self._ensure_hand(cursor, session)
            cursor.execute("""
                INSERT INTO phase_reveals
                (table_id, hand_ref, phase, status, path, cards, error, fallback_reason, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (session.table_id, session.hand_ref, report.phase.value, report.status.value, report.path,
                  json.dumps([card_str(c) for c in report.cards]),
                  _failure_text(report.error), _failure_text(report.fallback_reason), time.time()))
            return cursor.lastrowid or 0

    def record_showdown(self, session, report) -> int:
        """Log a showdown attempt; a resolved one closes the hand."""
        details: Dict[str, Any] = {'missing': report.missing}
        if report.result is not None:
            details['ranking'] = [
                {'identity': h.identity, 'hole_cards': [card_str(c) for c in h.hole_cards],
                 'description': h.description}
                for h in report.result.ranking
            ]
            details['community_cards'] = [card_str(c) for c in report.result.community_cards]
        if report.error is not None:
            details['error'] = str(report.error)

        now = time.time()
        with self.get_cursor() as cursor:
            self._ensure_hand(cursor, session)
            cursor.execute("""
                INSERT INTO showdowns (table_id, hand_ref, status, path, winners, details, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (session.table_id, session.hand_ref, report.status.value, report.path,
                  json.dumps(report.winners), json.dumps(details), now))
            row_id = cursor.lastrowid or 0
            if report.status.value in ('resolved', 'incomplete'):
                cursor.execute("""
                    UPDATE hands SET resolved_at = ?, outcome = ?
                    WHERE table_id = ? AND hand_ref = ?
                """, (now if report.status.value == 'resolved' else None, report.status.value,
                      session.table_id, session.hand_ref))
            return row_id

    def get_hand_history(self, table_id: int, hand_ref: int) -> Dict[str, Any]:
        """Everything logged for one hand."""
        with self.get_cursor() as cursor:
            cursor.execute("SELECT * FROM hands WHERE table_id = ? AND hand_ref = ?", (table_id, hand_ref))
            hand = cursor.fetchone()
            if hand is None:
                return {}
            cursor.execute("""
                SELECT phase, status, path, cards, error, fallback_reason, timestamp
                FROM phase_reveals WHERE table_id = ? AND hand_ref = ?
                ORDER BY id
            """, (table_id, hand_ref))
            reveals = [dict(row) for row in cursor.fetchall()]
            cursor.execute("""
                SELECT status, path, winners, details, timestamp
                FROM showdowns WHERE table_id = ? AND hand_ref = ?
                ORDER BY id
            """, (table_id, hand_ref))
            showdowns = [dict(row) for row in cursor.fetchall()]

        for reveal in reveals:
            reveal['cards'] = json.loads(reveal['cards']) if reveal['cards'] else []
        for showdown in showdowns:
            showdown['winners'] = json.loads(showdown['winners']) if showdown['winners'] else []
            showdown['details'] = json.loads(showdown['details']) if showdown['details'] else {}

        result = dict(hand)
        result['players'] = json.loads(result['players'])
        result['reveals'] = reveals
        result['showdowns'] = showdowns
        return result

    def get_recent_hands(self, limit: int = 10) -> List[Dict[str, Any]]:
        with self.get_cursor() as cursor:
            cursor.execute("""
                SELECT table_id, hand_ref, players, started_at, resolved_at, outcome
                FROM hands
                ORDER BY started_at DESC
                LIMIT ?
            """, (limit,))
            rows = [dict(row) for row in cursor.fetchall()]
        for row in rows:
            row['players'] = json.loads(row['players'])
        return rows

    def fallback_rate(self) -> float:
        """Share of logged phase reveals that needed the execution path."""
        with self.get_cursor() as cursor:
            cursor.execute("""
                SELECT COUNT(*) AS total,
                       SUM(CASE WHEN path = 'execution' THEN 1 ELSE 0 END) AS fallbacks
                FROM phase_reveals
                WHERE path != 'none'
            """)
            row = cursor.fetchone()
        total = row['total'] or 0
        return (row['fallbacks'] or 0) / total if total else 0.0

    def cleanup_old_data(self, days_old: int = 30) -> int:
        """Delete hands (and their reveals) older than the cutoff."""
        cutoff_time = time.time() - (days_old * 24 * 60 * 60)
        with self.get_cursor() as cursor:
            cursor.execute("""
                DELETE FROM phase_reveals WHERE (table_id, hand_ref) IN
                (SELECT table_id, hand_ref FROM hands WHERE started_at < ?)
            """, (cutoff_time,))
            reveals_deleted = cursor.rowcount
            cursor.execute("""
                DELETE FROM showdowns WHERE (table_id, hand_ref) IN
                (SELECT table_id, hand_ref FROM hands WHERE started_at < ?)
            """, (cutoff_time,))
            showdowns_deleted = cursor.rowcount
            cursor.execute("DELETE FROM hands WHERE started_at < ?", (cutoff_time,))
            return reveals_deleted + showdowns_deleted + cursor.rowcount
