"""
tests/test_pipeline.py -- Unit tests for auth/pipeline.py.

The pipeline is exercised directly (no HTTP) so each stage's audit
behaviour can be asserted in isolation:
  - every stage failure writes one fail event naming the stage
  - the delegated callable never runs after a denial
  - success events only for audited operations
  - storage errors become STORE_FAILURE; audit failures never surface
"""

from __future__ import annotations

import pytest
from sqlalchemy.exc import OperationalError

from audit.models import RESULT_FAIL, RESULT_SUCCESS, AuditFilter
from auth import operations
from auth.access import ResourceKind, ResourceRef
from auth.models import ROLE_ADMIN, STATUS_BLOCKED, ClientInfo
from auth.pipeline import Outcome
from auth.tokens import LoginRejected, issue_token, verify_token
from core.errors import ErrorKind, PortalError
from tracker.models import Project

CLIENT = ClientInfo(ip="203.0.113.5", user_agent="pytest")


def _events(stores):
    events, _total = stores.ledger.list_events()
    return events


def _must_not_run():
    raise AssertionError("delegated operation ran after a denial")


class TestAuthenticateStage:
    def test_success_binds_actor(self, stores, make_user) -> None:
        user = make_user("alice@example.com")
        ctx = stores.pipeline.authenticate(issue_token(user), CLIENT, operations.PROJECT_LIST)
        assert ctx.identity.id == user.id
        assert ctx.audit.actor_user_id == user.id
        assert ctx.audit.ip == "203.0.113.5"
        assert _events(stores) == []

    def test_missing_token_is_audited_without_actor(self, stores) -> None:
        with pytest.raises(PortalError) as exc_info:
            stores.pipeline.handle(None, CLIENT, operations.PROJECT_DELETE, _must_not_run)
        assert exc_info.value.kind is ErrorKind.UNAUTHENTICATED

        [event] = _events(stores)
        assert (event.action, event.result, event.actor_user_id) == ("project.delete", RESULT_FAIL, None)
        assert event.details == {"error": "token_missing", "stage": "authenticate"}
        assert event.ip == "203.0.113.5"

    def test_blocked_account_is_audited_with_token_subject(self, stores, make_user) -> None:
        user = make_user("blocked@example.com")
        token = issue_token(user)
        stores.users.set_status(user.id, STATUS_BLOCKED)
        with pytest.raises(PortalError) as exc_info:
            stores.pipeline.authenticate(token, CLIENT, operations.PROJECT_LIST)
        assert exc_info.value.kind is ErrorKind.ACCOUNT_BLOCKED

        [event] = _events(stores)
        assert event.actor_user_id == user.id
        assert event.details["error"] == "account_blocked"


class TestAuthorizeStages:
    def test_role_denial_is_audited_and_short_circuits(self, stores, make_user) -> None:
        user = make_user("plain@example.com")
        with pytest.raises(PortalError) as exc_info:
            stores.pipeline.handle(issue_token(user), CLIENT, operations.ADMIN_STATS_VIEW, _must_not_run)
        assert exc_info.value.kind is ErrorKind.INSUFFICIENT_ROLE

        [event] = _events(stores)
        assert (event.action, event.actor_user_id, event.result) == ("admin.stats.view", user.id, RESULT_FAIL)
        assert event.details == {"error": "insufficient_role", "stage": "authorize"}

    def test_ownership_denial_leaves_storage_untouched(self, stores, make_user) -> None:
        owner = make_user("owner@example.com", user_id=7)
        intruder = make_user("intruder@example.com", user_id=9)
        stores.tracker.create_project(Project(name="p", owner_id=owner.id, id=42))

        with pytest.raises(PortalError) as exc_info:
            stores.pipeline.handle(
                issue_token(intruder),
                CLIENT,
                operations.PROJECT_DELETE,
                lambda: stores.tracker.delete_project(42),
                resource=ResourceRef(ResourceKind.PROJECT, 42),
            )
        assert exc_info.value.kind is ErrorKind.NOT_OWNER
        assert stores.tracker.get_project(42) is not None

        [event] = _events(stores)
        assert (event.actor_user_id, event.entity_id, event.result) == (9, 42, RESULT_FAIL)
        assert event.details == {"error": "not_owner", "stage": "authorize"}

    def test_role_is_checked_before_ownership(self, stores, make_user) -> None:
        """A caller failing both checks hears about the role, and no lookup happens."""
        user = make_user("plain@example.com")

        class _NoLookups:
            def project_owner(self, project_id):
                raise AssertionError("ownership looked up before role check")

            def task_owner(self, task_id, project_id=None):
                raise AssertionError("ownership looked up before role check")

        stores.pipeline.owners = _NoLookups()
        with pytest.raises(PortalError) as exc_info:
            stores.pipeline.handle(
                issue_token(user),
                CLIENT,
                operations.ADMIN_PROJECTS_VIEW,
                _must_not_run,
                resource=ResourceRef(ResourceKind.PROJECT, 1),
            )
        assert exc_info.value.kind is ErrorKind.INSUFFICIENT_ROLE


class TestExecuteStage:
    def test_success_is_audited_with_outcome_details(self, stores, make_user) -> None:
        admin = make_user("admin@example.com", role=ROLE_ADMIN)
        value = stores.pipeline.handle(
            issue_token(admin),
            CLIENT,
            operations.PROJECT_CREATE,
            lambda: Outcome("created", entity_id=11, details={"name": "p"}),
            details={"source": "test"},
        )
        assert value == "created"

        [event] = _events(stores)
        assert (event.action, event.result, event.entity_type, event.entity_id) == (
            "project.create",
            RESULT_SUCCESS,
            "project",
            11,
        )
        assert event.details == {"source": "test", "name": "p"}

    def test_unaudited_success_writes_nothing(self, stores, make_user) -> None:
        user = make_user("reader@example.com")
        assert stores.pipeline.handle(issue_token(user), CLIENT, operations.PROJECT_LIST, lambda: []) == []
        assert _events(stores) == []

    def test_unaudited_operation_failure_is_still_recorded(self, stores) -> None:
        with pytest.raises(PortalError):
            stores.pipeline.handle("garbage", CLIENT, operations.PROJECT_LIST, _must_not_run)
        [event] = _events(stores)
        assert event.details["error"] == "token_invalid"

    def test_portal_error_from_operation_is_audited_and_propagated(self, stores, make_user) -> None:
        admin = make_user("admin@example.com", role=ROLE_ADMIN)

        def _missing():
            raise PortalError(ErrorKind.NOT_FOUND, "Project not found")

        with pytest.raises(PortalError) as exc_info:
            stores.pipeline.handle(issue_token(admin), CLIENT, operations.PROJECT_VIEW, _missing, entity_id=3)
        assert exc_info.value.kind is ErrorKind.NOT_FOUND

        [event] = _events(stores)
        assert (event.entity_id, event.result) == (3, RESULT_FAIL)
        assert event.details == {"error": "not_found", "stage": "execute"}

    def test_storage_error_becomes_store_failure(self, stores, make_user) -> None:
        admin = make_user("admin@example.com", role=ROLE_ADMIN)

        def _broken():
            raise OperationalError("UPDATE projects", {}, Exception("disk I/O error"))

        with pytest.raises(PortalError) as exc_info:
            stores.pipeline.handle(issue_token(admin), CLIENT, operations.PROJECT_UPDATE, _broken)
        assert exc_info.value.kind is ErrorKind.STORE_FAILURE
        assert exc_info.value.status_code == 500
        assert "disk I/O" not in exc_info.value.message
        assert isinstance(exc_info.value.__cause__, OperationalError)
        assert _events(stores)[0].details["error"] == "store_failure"

    def test_audit_failure_never_changes_the_result(self, stores, make_user) -> None:
        admin = make_user("admin@example.com", role=ROLE_ADMIN)
        token = issue_token(admin)
        with stores.ledger.engine.connect() as conn:
            conn.exec_driver_sql("DROP TABLE audit_logs")
            conn.commit()
        assert stores.pipeline.handle(token, CLIENT, operations.PROJECT_CREATE, lambda: "ok") == "ok"


class TestLogin:
    def test_success_issues_token_and_audits_once(self, stores, make_user) -> None:
        user = make_user("login@example.com", password="hunter22")
        logged_in, token = stores.pipeline.login("login@example.com", "hunter22", CLIENT)
        assert logged_in.id == user.id
        assert verify_token(token).id == user.id

        [event] = _events(stores)
        assert (event.action, event.result, event.actor_user_id) == ("login.success", RESULT_SUCCESS, user.id)
        assert event.details == {"email": "login@example.com"}

    @pytest.mark.parametrize(
        "email, password, cause",
        [
            ("nobody@example.com", "hunter22", "User not found"),
            ("login@example.com", "wrong-pass", "Invalid password"),
        ],
    )
    def test_failure_audits_once_with_attempted_email(self, stores, make_user, email, password, cause) -> None:
        make_user("login@example.com", password="hunter22")
        with pytest.raises(LoginRejected) as exc_info:
            stores.pipeline.login(email, password, CLIENT)
        assert exc_info.value.message == "Invalid credentials"

        events, total = stores.ledger.list_events(AuditFilter(action="login"))
        assert total == 1
        assert events[0].result == RESULT_FAIL
        assert events[0].details == {"email": email, "error": cause}

    def test_store_failure_is_audited_once(self, stores, monkeypatch) -> None:
        def _broken(email):
            raise OperationalError("SELECT users", {}, Exception("database is locked"))

        monkeypatch.setattr(stores.users, "find_by_email", _broken)
        with pytest.raises(PortalError) as exc_info:
            stores.pipeline.login("login@example.com", "hunter22", CLIENT)
        assert exc_info.value.kind is ErrorKind.STORE_FAILURE
        assert isinstance(exc_info.value.__cause__, OperationalError)

        events, total = stores.ledger.list_events(AuditFilter(action="login"))
        assert total == 1
        assert events[0].result == RESULT_FAIL
        assert events[0].details == {"email": "login@example.com", "error": "Store failure"}

    def test_reject_login_records_validation_failure(self, stores) -> None:
        stores.pipeline.reject_login("bad", CLIENT, "Validation failed")
        [event] = _events(stores)
        assert (event.action, event.details) == ("login.fail", {"email": "bad", "error": "Validation failed"})
