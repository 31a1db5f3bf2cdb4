"""
tests/test_user_store.py -- Unit tests for auth/store.py (the credential store).

Uses the function-scoped stores fixture from conftest.py, so every test
starts with an empty users table.
"""

from __future__ import annotations

import pytest
from sqlalchemy.exc import IntegrityError

from auth.models import ROLE_ADMIN, STATUS_ACTIVE, STATUS_BLOCKED, User


class TestLookups:
    def test_find_by_email_is_case_insensitive(self, stores, make_user) -> None:
        user = make_user("Mixed.Case@Example.com")
        assert user.email == "mixed.case@example.com"
        assert stores.users.find_by_email("MIXED.case@example.COM").id == user.id

    def test_find_missing_returns_none(self, stores) -> None:
        assert stores.users.find_by_email("ghost@example.com") is None
        assert stores.users.find_by_id(999) is None

    def test_find_by_ids_skips_unknown_ids(self, stores, make_user) -> None:
        a = make_user("a@example.com")
        b = make_user("b@example.com")
        found = stores.users.find_by_ids([a.id, b.id, 999, None])
        assert set(found) == {a.id, b.id}
        assert found[b.id].email == "b@example.com"

    def test_find_by_ids_empty(self, stores) -> None:
        assert stores.users.find_by_ids([]) == {}

    def test_ids_matching_email(self, stores, make_user) -> None:
        a = make_user("alpha@acme.io")
        make_user("beta@other.io")
        assert stores.users.ids_matching_email("ACME") == [a.id]


class TestCreate:
    def test_duplicate_email_rejected_regardless_of_case(self, stores, make_user) -> None:
        make_user("dup@example.com")
        with pytest.raises(IntegrityError):
            stores.users.create_user(User(email="DUP@example.com", password_hash="x"))

    def test_explicit_id_is_honoured(self, make_user) -> None:
        assert make_user("seven@example.com", user_id=7).id == 7

    def test_defaults(self, make_user) -> None:
        user = make_user("plain@example.com")
        assert user.role == "user"
        assert user.status == STATUS_ACTIVE
        assert user.created_at

    def test_has_users(self, stores, make_user) -> None:
        assert stores.users.has_users() is False
        make_user("first@example.com")
        assert stores.users.has_users() is True


class TestSetStatus:
    def test_set_status_returns_affected_rows(self, stores, make_user) -> None:
        user = make_user("target@example.com")
        assert stores.users.set_status(user.id, STATUS_BLOCKED) == 1
        assert stores.users.find_by_id(user.id).status == STATUS_BLOCKED

    def test_set_status_on_missing_user_affects_nothing(self, stores) -> None:
        assert stores.users.set_status(404, STATUS_BLOCKED) == 0

    def test_unknown_status_rejected(self, stores, make_user) -> None:
        user = make_user("target@example.com")
        with pytest.raises(ValueError):
            stores.users.set_status(user.id, "deleted")


class TestAdminQueries:
    def test_list_users_paginates_newest_first(self, stores, make_user) -> None:
        for i in range(5):
            make_user(f"user{i}@example.com")
        page1, total = stores.users.list_users(page=1, limit=2)
        page3, _ = stores.users.list_users(page=3, limit=2)
        assert total == 5
        assert [u.email for u in page1] == ["user4@example.com", "user3@example.com"]
        assert [u.email for u in page3] == ["user0@example.com"]

    def test_list_users_searches_email_and_role(self, stores, make_user) -> None:
        make_user("boss@example.com", role=ROLE_ADMIN)
        make_user("worker@example.com")
        by_email, _ = stores.users.list_users(search="WORK")
        by_role, total = stores.users.list_users(search="admin")
        assert [u.email for u in by_email] == ["worker@example.com"]
        assert total == 1 and by_role[0].email == "boss@example.com"

    def test_user_counts(self, stores, make_user) -> None:
        make_user("boss@example.com", role=ROLE_ADMIN)
        make_user("a@example.com")
        make_user("b@example.com", status=STATUS_BLOCKED)
        assert stores.users.get_user_counts() == {
            "total_users": 3,
            "active_users": 2,
            "blocked_users": 1,
            "admin_users": 1,
            "regular_users": 2,
        }

    def test_count_created_since(self, stores, make_user) -> None:
        make_user("new@example.com")
        assert stores.users.count_created_since("2000-01-01T00:00:00+00:00") == 1
        assert stores.users.count_created_since("2999-01-01T00:00:00+00:00") == 0
