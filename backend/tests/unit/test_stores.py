"""
Unit tests for the persistence helpers.

Tests closed update field sets, ordering guarantees and cascading deletes.
"""

import pytest
from datetime import date, datetime, timedelta
import sys
import os

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

import stores
from database import Chat


class TestUserStore:
    """Tests for user persistence."""

    def test_update_user_applies_allowed_fields(self, test_db, test_user):
        """Test that username and birthdate are updated."""
        user = stores.update_user(test_db, test_user.uid, username="alice2", birthdate=date(1999, 1, 2))

        assert user.username == "alice2"
        assert user.birthdate == date(1999, 1, 2)

    def test_update_user_skips_none_values(self, test_db, test_user):
        """Test that None leaves a field untouched."""
        user = stores.update_user(test_db, test_user.uid, username="alice3", birthdate=None)

        assert user.birthdate == date(2000, 6, 15)

    def test_update_user_rejects_unknown_fields(self, test_db, test_user):
        """Test that columns outside the updatable set cannot be written."""
        with pytest.raises(ValueError):
            stores.update_user(test_db, test_user.uid, photo_url="/profiles/other.jpg")
        with pytest.raises(ValueError):
            stores.update_user(test_db, test_user.uid, email="other@example.com")

    def test_update_missing_user_returns_none(self, test_db):
        """Test updating an unknown uid."""
        assert stores.update_user(test_db, "nobody", username="x") is None


class TestScanStore:
    """Tests for scan persistence."""

    def test_list_scans_newest_first(self, test_db, sample_scan, user_named_scan):
        """Test that scans are listed by scan date descending."""
        scans = stores.list_scans(test_db)

        assert [s.scan_id for s in scans] == [user_named_scan.scan_id, sample_scan.scan_id]

    def test_find_latest_scan_for_user_uses_photo_name(self, test_db, sample_scan, user_named_scan, alice_claims):
        """Test that the user's scan is matched through the photo naming convention."""
        scan = stores.find_latest_scan_for_user(test_db, alice_claims.uid)

        assert scan.scan_id == user_named_scan.scan_id
        assert stores.find_latest_scan_for_user(test_db, "uid-nobody") is None

    def test_update_scan_result_changes_verdict_only(self, test_db, sample_scan):
        """Test the legacy correction path."""
        scan = stores.update_scan_result(test_db, sample_scan.scan_id, False)

        assert scan.scan_result is False
        assert scan.confidence == 0.82
        assert scan.result_source == "model"


class TestSessionStore:
    """Tests for chat session and message persistence."""

    def test_messages_returned_in_insertion_order(self, test_db):
        """Test that history order equals insertion order."""
        stores.create_session(test_db, "s1", "u1")
        for i in range(5):
            stores.add_message(test_db, "s1", "user" if i % 2 == 0 else "ai", f"message {i}")

        messages = stores.get_messages(test_db, "s1")

        assert [m.message for m in messages] == [f"message {i}" for i in range(5)]

    def test_touch_session_strictly_advances(self, test_db):
        """Test that updated_at moves forward even when set in the future."""
        session = stores.create_session(test_db, "s2", "u1")
        future = datetime.utcnow() + timedelta(hours=1)
        session.updated_at = future
        test_db.commit()

        session = stores.touch_session(test_db, session)

        assert session.updated_at > future

    def test_update_session_rejects_unknown_fields(self, test_db):
        """Test that only the title can be changed."""
        session = stores.create_session(test_db, "s3", "u1")

        with pytest.raises(ValueError):
            stores.update_session(test_db, session, user_id="u2")

    def test_delete_session_removes_messages(self, test_db):
        """Test that deleting a session deletes its messages first."""
        session = stores.create_session(test_db, "s4", "u1")
        stores.add_message(test_db, "s4", "user", "hello")
        stores.add_message(test_db, "s4", "ai", "hi")
        stores.create_session(test_db, "s5", "u1")
        stores.add_message(test_db, "s5", "user", "other session")

        removed = stores.delete_session(test_db, session)

        assert removed == 2
        assert stores.get_session(test_db, "s4") is None
        assert test_db.query(Chat).filter(Chat.session_id == "s4").count() == 0
        assert test_db.query(Chat).filter(Chat.session_id == "s5").count() == 1

    def test_list_sessions_by_recent_activity(self, test_db):
        """Test that sessions are ordered by updated_at descending."""
        first = stores.create_session(test_db, "s6", "u1")
        second = stores.create_session(test_db, "s7", "u1")
        second.updated_at = datetime(2024, 1, 1)
        test_db.commit()
        stores.create_session(test_db, "s8", "u2")
        stores.touch_session(test_db, first)

        sessions = stores.list_sessions(test_db, "u1")

        assert [s.session_id for s in sessions][0] == "s6"
        assert {s.session_id for s in sessions} == {"s6", "s7"}
