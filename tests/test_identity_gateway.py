"""
Test file for the Identity Gateway adapter

Tests request construction against the Auth admin API, failure
classification and the bounded email search.
"""

from unittest.mock import Mock

import pytest
import requests

from driver_provisioner.services import IdentityErrorKind, IdentityGateway, IdentityGatewayError
from driver_provisioner.services.identity_gateway import classify_failure

from conftest import make_response


def _user(identity_id, email):
    return {"id": identity_id, "email": email, "user_metadata": {}, "app_metadata": {}}


@pytest.fixture
def session():
    mock_session = Mock()
    mock_session.headers = {}
    return mock_session


@pytest.fixture
def identity_gateway(session):
    return IdentityGateway(
        base_url="https://project.supabase.co/",
        service_role_key="eyJservice",
        timeout=5,
        session=session,
    )


class TestClassifyFailure:

    @pytest.mark.parametrize("status_code,error_code,message,expected", [
        (422, "email_exists", "A user with this email address has already been registered", IdentityErrorKind.CONFLICT),
        (422, None, "User already registered", IdentityErrorKind.CONFLICT),
        (400, None, "A user with this email already exists", IdentityErrorKind.CONFLICT),
        (409, None, "", IdentityErrorKind.CONFLICT),
        (404, "user_not_found", "User not found", IdentityErrorKind.NOT_FOUND),
        (400, None, "User not found", IdentityErrorKind.NOT_FOUND),
        (403, "not_admin", "User not allowed", IdentityErrorKind.NOT_PERMITTED),
        (401, None, "invalid JWT", IdentityErrorKind.NOT_PERMITTED),
        (400, None, "User not allowed", IdentityErrorKind.NOT_PERMITTED),
        (500, None, "Database error creating new user", IdentityErrorKind.TRANSIENT),
        (429, None, "rate limited", IdentityErrorKind.TRANSIENT),
        (None, None, "connection refused", IdentityErrorKind.TRANSIENT),
        (422, "weak_password", "Password should be at least 6 characters", IdentityErrorKind.OTHER),
    ])
    def test_classification(self, status_code, error_code, message, expected):
        assert classify_failure(status_code, error_code, message) == expected


class TestIdentityGatewayRequests:

    def test_auth_headers(self, identity_gateway, session):
        assert session.headers["apikey"] == "eyJservice"
        assert session.headers["Authorization"] == "Bearer eyJservice"
        assert identity_gateway.admin_url == "https://project.supabase.co/auth/v1/admin"

    def test_create_identity(self, identity_gateway, session):
        session.request.return_value = make_response(200, _user("id-1", "d1@x.com"))

        identity = identity_gateway.create_identity(
            email="d1@x.com", password="pw", user_metadata={"role": "driver"},
            app_metadata={"provider": "email"},
        )

        assert identity.id == "id-1"
        method, url = session.request.call_args.args
        assert method == "POST"
        assert url == "https://project.supabase.co/auth/v1/admin/users"
        body = session.request.call_args.kwargs["json"]
        assert body["email_confirm"] is True
        assert body["user_metadata"] == {"role": "driver"}
        assert session.request.call_args.kwargs["timeout"] == 5

    def test_create_identity_wrapped_user(self, identity_gateway, session):
        session.request.return_value = make_response(200, {"user": _user("id-1", "d1@x.com")})

        identity = identity_gateway.create_identity("d1@x.com", "pw", {}, {})

        assert identity.id == "id-1"

    def test_create_conflict(self, identity_gateway, session):
        session.request.return_value = make_response(
            422, {"code": 422, "error_code": "email_exists", "msg": "A user with this email address has already been registered"}
        )

        with pytest.raises(IdentityGatewayError) as exc_info:
            identity_gateway.create_identity("d1@x.com", "pw", {}, {})

        assert exc_info.value.kind == IdentityErrorKind.CONFLICT
        assert exc_info.value.error_code == "email_exists"
        assert exc_info.value.status_code == 422

    def test_error_without_json_body(self, identity_gateway, session):
        session.request.return_value = make_response(502, text="Bad Gateway")

        with pytest.raises(IdentityGatewayError) as exc_info:
            identity_gateway.delete_identity("id-1")

        assert exc_info.value.kind == IdentityErrorKind.TRANSIENT
        assert exc_info.value.message == "Bad Gateway"

    def test_transport_error(self, identity_gateway, session):
        session.request.side_effect = requests.ConnectionError("connection refused")

        with pytest.raises(IdentityGatewayError) as exc_info:
            identity_gateway.create_identity("d1@x.com", "pw", {}, {})

        assert exc_info.value.kind == IdentityErrorKind.TRANSIENT

    def test_update_identity_sends_only_given_fields(self, identity_gateway, session):
        session.request.return_value = make_response(200, _user("id-1", "d1@x.com"))

        identity_gateway.update_identity("id-1", password="new")

        method, url = session.request.call_args.args
        assert method == "PUT"
        assert url.endswith("/auth/v1/admin/users/id-1")
        assert session.request.call_args.kwargs["json"] == {"password": "new"}

    def test_delete_not_found(self, identity_gateway, session):
        session.request.return_value = make_response(
            404, {"code": 404, "error_code": "user_not_found", "msg": "User not found"}
        )

        with pytest.raises(IdentityGatewayError) as exc_info:
            identity_gateway.delete_identity("id-1")

        assert exc_info.value.kind == IdentityErrorKind.NOT_FOUND

    def test_delete_success_empty_body(self, identity_gateway, session):
        session.request.return_value = make_response(200, text="")

        identity_gateway.delete_identity("id-1")

        assert session.request.call_args.args[0] == "DELETE"

    def test_generate_credential_link(self, identity_gateway, session):
        session.request.return_value = make_response(
            200, {"action_link": "https://project.supabase.co/auth/v1/verify?token=t&type=recovery"}
        )

        link = identity_gateway.generate_credential_link("d1@x.com", redirect_to="https://app/reset")

        assert "type=recovery" in link
        body = session.request.call_args.kwargs["json"]
        assert body == {"type": "recovery", "email": "d1@x.com", "redirect_to": "https://app/reset"}

    def test_generate_credential_link_properties_shape(self, identity_gateway, session):
        session.request.return_value = make_response(
            200, {"properties": {"action_link": "https://link"}, "user": {}}
        )

        assert identity_gateway.generate_credential_link("d1@x.com") == "https://link"

    def test_generate_credential_link_missing(self, identity_gateway, session):
        session.request.return_value = make_response(200, {"id": "id-1"})

        with pytest.raises(IdentityGatewayError):
            identity_gateway.generate_credential_link("d1@x.com")

    def test_generate_credential_link_html_body(self, identity_gateway, session):
        session.request.return_value = make_response(200, text="<html>Gateway Timeout</html>")

        with pytest.raises(IdentityGatewayError) as exc_info:
            identity_gateway.generate_credential_link("d1@x.com")

        assert exc_info.value.kind == IdentityErrorKind.OTHER
        assert exc_info.value.status_code == 200

    def test_create_identity_html_body(self, identity_gateway, session):
        session.request.return_value = make_response(200, text="<html></html>")

        with pytest.raises(IdentityGatewayError):
            identity_gateway.create_identity("d1@x.com", "pw", {}, {})


class TestFindByEmail:

    def _pages(self, session, pages):
        session.request.side_effect = [make_response(200, {"users": page}) for page in pages]

    def test_match_is_case_insensitive(self, identity_gateway, session):
        self._pages(session, [[_user("id-1", "Other@x.com"), _user("id-2", "D1@X.COM")]])

        identity = identity_gateway.find_by_email("d1@x.com", page_size=2, max_pages=5)

        assert identity.id == "id-2"
        assert session.request.call_args.kwargs["params"] == {"page": 1, "per_page": 2}

    def test_scans_pages_in_order(self, identity_gateway, session):
        self._pages(session, [
            [_user("a", "a@x.com"), _user("b", "b@x.com")],
            [_user("c", "c@x.com"), _user("d", "d1@x.com")],
        ])

        identity = identity_gateway.find_by_email("d1@x.com", page_size=2, max_pages=5)

        assert identity.id == "d"
        pages = [call.kwargs["params"]["page"] for call in session.request.call_args_list]
        assert pages == [1, 2]

    def test_short_page_stops(self, identity_gateway, session):
        self._pages(session, [
            [_user("a", "a@x.com"), _user("b", "b@x.com")],
            [_user("c", "c@x.com")],
        ])

        assert identity_gateway.find_by_email("d1@x.com", page_size=2, max_pages=5) is None
        assert session.request.call_count == 2

    def test_max_pages_bound(self, identity_gateway, session):
        full_page = [_user("a", "a@x.com"), _user("b", "b@x.com")]
        self._pages(session, [full_page] * 10)

        assert identity_gateway.find_by_email("d1@x.com", page_size=2, max_pages=3) is None
        assert session.request.call_count == 3

    def test_list_failure_propagates(self, identity_gateway, session):
        session.request.return_value = make_response(403, {"msg": "User not allowed"})

        with pytest.raises(IdentityGatewayError) as exc_info:
            identity_gateway.find_by_email("d1@x.com")

        assert exc_info.value.kind == IdentityErrorKind.NOT_PERMITTED

    def test_check_admin_access(self, identity_gateway, session):
        session.request.return_value = make_response(200, {"users": [], "aud": "authenticated"})

        identity_gateway.check_admin_access()

        assert session.request.call_args.kwargs["params"] == {"page": 1, "per_page": 1}
