"""
Unit tests for HttpMarketplaceBackend.

Requests are served by httpx.MockTransport to verify:
- Request paths, bodies and bearer tokens
- Response unwrapping and session parsing
- Status code to domain error mapping
"""

import json
from collections.abc import Callable

import httpx
import pytest

from src.adapters.http.backend import HttpMarketplaceBackend, create_http_client, parse_session
from src.config.settings import Settings
from src.domain.exceptions import (
    ChallengeExpiredError,
    ConflictError,
    DataFormatError,
    InvalidCodeError,
    NetworkError,
    RateLimitedError,
    ServerConfigurationError,
    SubmissionError,
    UnauthenticatedError,
)
from src.domain.models import Attestation, Role
from tests.fakes import CREATION_OPTIONS, CREDENTIAL_PAYLOAD

Handler = Callable[[httpx.Request], httpx.Response]

USER = {"_id": "64f0c0ffee", "firstName": "Ada", "lastName": "Lovelace", "email": "ada@example.com", "role": "freelancer"}


class Recorder:
    """MockTransport handler returning one canned response and recording requests."""

    def __init__(self, status_code: int = 200, body: object = None, headers: dict | None = None) -> None:
        self.status_code = status_code
        self.body = body
        self.headers = headers or {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.body, headers=self.headers)

    @property
    def last_json(self) -> dict:
        return json.loads(self.requests[-1].content)


def backend_for(handler: Handler) -> HttpMarketplaceBackend:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://marketplace.test")
    return HttpMarketplaceBackend(client)


class TestCreateHttpClient:
    def test_uses_settings(self) -> None:
        client = create_http_client(Settings(api_base_url="http://api.test", http_timeout_seconds=3))
        assert client.base_url.host == "api.test"
        assert client.timeout.read == 3


class TestParseSession:
    """Tests for session parsing."""

    def test_parses_user_and_tokens(self) -> None:
        session = parse_session({"user": USER, "accessToken": "at", "refreshToken": "rt"})

        assert session.user_id == "64f0c0ffee"
        assert session.display_name == "Ada Lovelace"
        assert session.role is Role.FREELANCER
        assert session.access_token == "at"

    def test_missing_token_is_submission_error(self) -> None:
        with pytest.raises(SubmissionError):
            parse_session({"user": USER, "accessToken": "at"})

    def test_unknown_role_is_submission_error(self) -> None:
        with pytest.raises(SubmissionError):
            parse_session({"user": {**USER, "role": "admin"}, "accessToken": "at", "refreshToken": "rt"})


class TestAccounts:
    """Tests for registration and OTP calls."""

    @pytest.mark.asyncio
    async def test_create_account(self) -> None:
        recorder = Recorder(201, {"success": True, "data": {"user": USER}})
        backend = backend_for(recorder)

        account_id = await backend.create_account(
            "Ada", "Lovelace", "ada@example.com", "secret1", Role.FREELANCER, location="London"
        )

        assert account_id == "64f0c0ffee"
        assert recorder.requests[0].url.path == "/auth/register"
        assert recorder.last_json == {
            "firstName": "Ada",
            "lastName": "Lovelace",
            "email": "ada@example.com",
            "password": "secret1",
            "role": "freelancer",
            "location": "London",
        }

    @pytest.mark.asyncio
    async def test_create_account_conflict(self) -> None:
        backend = backend_for(Recorder(409, {"message": "User already exists"}))

        with pytest.raises(ConflictError) as exc_info:
            await backend.create_account("Ada", "Lovelace", "ada@example.com", "secret1", Role.CLIENT)
        assert exc_info.value.field == "email"

    @pytest.mark.asyncio
    async def test_create_account_server_message(self) -> None:
        backend = backend_for(Recorder(400, {"message": "Phone number is invalid"}))

        with pytest.raises(SubmissionError) as exc_info:
            await backend.create_account("Ada", "Lovelace", "ada@example.com", "secret1", Role.CLIENT)
        assert exc_info.value.message == "Phone number is invalid"

    @pytest.mark.asyncio
    async def test_server_error_is_network_error(self) -> None:
        backend = backend_for(Recorder(503, None))

        with pytest.raises(NetworkError):
            await backend.send_otp("ada@example.com")

    @pytest.mark.asyncio
    async def test_transport_failure_is_network_error(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(NetworkError):
            await backend_for(refuse).send_otp("ada@example.com")

    @pytest.mark.asyncio
    async def test_send_and_resend_paths(self) -> None:
        recorder = Recorder(200, {"success": True})
        backend = backend_for(recorder)

        await backend.send_otp("ada@example.com")
        await backend.resend_otp("ada@example.com")

        assert [r.url.path for r in recorder.requests] == ["/auth/send-otp", "/auth/resend-otp"]
        assert recorder.last_json == {"email": "ada@example.com"}

    @pytest.mark.asyncio
    async def test_rate_limited_uses_retry_after(self) -> None:
        backend = backend_for(Recorder(429, {"message": "Too many requests"}, {"Retry-After": "42"}))

        with pytest.raises(RateLimitedError) as exc_info:
            await backend.resend_otp("ada@example.com")
        assert exc_info.value.retry_after == 42.0

    @pytest.mark.asyncio
    async def test_verify_returns_session(self) -> None:
        recorder = Recorder(200, {"verified": True, "user": USER, "accessToken": "at", "refreshToken": "rt"})
        backend = backend_for(recorder)

        outcome = await backend.verify_otp("ada@example.com", "123456")

        assert outcome.verified is True
        assert outcome.session.email == "ada@example.com"
        assert recorder.last_json == {"email": "ada@example.com", "otp": "123456"}

    @pytest.mark.asyncio
    async def test_verify_wrapped_response(self) -> None:
        body = {"success": True, "data": {"user": USER, "accessToken": "at", "refreshToken": "rt"}}
        outcome = await backend_for(Recorder(200, body)).verify_otp("ada@example.com", "123456")

        assert outcome.session.access_token == "at"

    @pytest.mark.asyncio
    async def test_verify_false(self) -> None:
        outcome = await backend_for(Recorder(200, {"verified": False})).verify_otp("ada@example.com", "000000")

        assert outcome.verified is False
        assert outcome.session is None

    @pytest.mark.asyncio
    async def test_verify_rejected_code(self) -> None:
        backend = backend_for(Recorder(400, {"message": "OTP expired"}))

        with pytest.raises(InvalidCodeError) as exc_info:
            await backend.verify_otp("ada@example.com", "123456")
        assert exc_info.value.message == "OTP expired"


class TestSkills:
    """Tests for skills endpoints."""

    @pytest.mark.asyncio
    async def test_list_skills(self) -> None:
        body = {"data": [{"_id": "s1", "name": "Go", "category": "Backend"}, {"name": "Rust"}, {"bogus": 1}]}

        skills = await backend_for(Recorder(200, body)).list_skills()

        assert [(s.id, s.name, s.category) for s in skills] == [("s1", "Go", "Backend"), ("Rust", "Rust", "Other")]

    @pytest.mark.asyncio
    async def test_list_skills_bad_shape(self) -> None:
        with pytest.raises(SubmissionError):
            await backend_for(Recorder(200, {"data": {"name": "Go"}})).list_skills()

    @pytest.mark.asyncio
    async def test_add_skill(self) -> None:
        recorder = Recorder(201, {"id": "s9", "name": "Rust", "category": "Other"})

        skill = await backend_for(recorder).add_skill("Rust", "Other")

        assert skill.id == "s9"
        assert recorder.last_json == {"name": "Rust", "category": "Other"}

    @pytest.mark.asyncio
    async def test_update_skills_sends_bearer(self) -> None:
        recorder = Recorder(200, {"success": True})

        await backend_for(recorder).update_skills(["Go", "Rust"], "at")

        request = recorder.requests[0]
        assert request.method == "PATCH"
        assert request.url.path == "/freelancers/me/skills"
        assert request.headers["Authorization"] == "Bearer at"
        assert recorder.last_json == {"skills": ["Go", "Rust"]}


class TestPasskeys:
    """Tests for passkey endpoints and error mapping."""

    @pytest.mark.asyncio
    async def test_initiate_returns_options(self) -> None:
        recorder = Recorder(200, {"success": True, "data": CREATION_OPTIONS})

        options = await backend_for(recorder).initiate_enrollment("Work laptop", "at")

        assert options == CREATION_OPTIONS
        assert recorder.requests[0].url.path == "/auth/passkeys/register/initiate"
        assert recorder.last_json == {"deviceName": "Work laptop"}
        assert recorder.requests[0].headers["Authorization"] == "Bearer at"

    @pytest.mark.asyncio
    async def test_complete_sends_credential(self) -> None:
        recorder = Recorder(200, {"success": True})

        await backend_for(recorder).complete_enrollment(
            Attestation.from_payload(CREDENTIAL_PAYLOAD), "Work laptop", "at"
        )

        assert recorder.requests[0].url.path == "/auth/passkeys/register/complete"
        assert recorder.last_json == {"credential": CREDENTIAL_PAYLOAD, "deviceName": "Work laptop"}

    @pytest.mark.asyncio
    async def test_complete_reported_failure(self) -> None:
        backend = backend_for(Recorder(200, {"success": False, "message": "Invalid attestation"}))

        with pytest.raises(DataFormatError) as exc_info:
            await backend.complete_enrollment(Attestation.from_payload(CREDENTIAL_PAYLOAD), "Laptop", "at")
        assert exc_info.value.message == "Invalid attestation"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status_code", "body", "expected"),
        [
            (401, {"message": "Unauthorized"}, UnauthenticatedError),
            (410, None, ChallengeExpiredError),
            (400, {"message": "Challenge has expired"}, ChallengeExpiredError),
            (409, None, ServerConfigurationError),
            (500, None, ServerConfigurationError),
            (422, {"message": "Bad device name"}, DataFormatError),
        ],
    )
    async def test_error_mapping(self, status_code: int, body: object, expected: type) -> None:
        backend = backend_for(Recorder(status_code, body))

        with pytest.raises(expected):
            await backend.initiate_enrollment("Laptop", "at")
