"""
Marketplace HTTP adapter - Implements AccountGateway, SkillsGateway and
PasskeyGateway protocols over the marketplace REST API.

Status mapping
--------------
- Transport failures and 5xx on account calls  -> NetworkError
- 409 on /auth/register                         -> ConflictError
- 429 on code requests                          -> RateLimitedError
- 400/401/422 on /auth/verify-otp               -> InvalidCodeError
- Passkey calls: 401 -> UnauthenticatedError, 410 or an "expired challenge"
  message -> ChallengeExpiredError, 400/422 -> DataFormatError,
  409 and 5xx -> ServerConfigurationError

Request and response bodies are camelCase JSON. Authenticated calls send
the session's access token as a bearer token.
"""

import logging
from typing import Any

import httpx

from src.config.settings import Settings
from src.domain.exceptions import (
    ChallengeExpiredError,
    ConflictError,
    DataFormatError,
    EnrollmentError,
    InvalidCodeError,
    NetworkError,
    RateLimitedError,
    ServerConfigurationError,
    SubmissionError,
    UnauthenticatedError,
)
from src.domain.models import Attestation, Role, Session, Skill, VerifyOutcome

logger = logging.getLogger(__name__)


def create_http_client(settings: Settings) -> httpx.AsyncClient:
    """Create the shared AsyncClient for the marketplace API."""
    return httpx.AsyncClient(
        base_url=settings.api_base_url,
        timeout=settings.http_timeout_seconds,
        headers={"Content-Type": "application/json"},
    )


def _bearer(access_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {access_token}"}


def _json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _server_message(response: httpx.Response) -> str | None:
    body = _json(response)
    if isinstance(body, dict):
        message = body.get("message") or body.get("detail")
        if isinstance(message, str) and message:
            return message
    return None


def _unwrap(body: Any) -> Any:
    """Responses are either bare or wrapped as {"success": ..., "data": ...}."""
    if isinstance(body, dict) and "data" in body and body["data"] is not None:
        return body["data"]
    return body


def _retry_after(response: httpx.Response, default: float = 60.0) -> float:
    try:
        return float(response.headers.get("Retry-After", default))
    except ValueError:
        return default


def parse_session(data: dict[str, Any]) -> Session:
    """
    Build a Session from {"user": {...}, "accessToken": ..., "refreshToken": ...}.

    Raises:
        SubmissionError: Required fields missing or malformed
    """
    try:
        user = data["user"]
        email = user["email"]
        name = " ".join(p for p in (user.get("firstName"), user.get("lastName")) if p)
        return Session(
            user_id=str(user.get("_id") or user["id"]),
            display_name=name or user.get("name") or email,
            email=email,
            role=Role(user["role"]),
            access_token=data["accessToken"],
            refresh_token=data["refreshToken"],
        )
    except (KeyError, TypeError, ValueError) as e:
        raise SubmissionError("Unexpected response from server. Please sign in.") from e


def _parse_skill(item: dict[str, Any]) -> Skill:
    return Skill(
        id=str(item.get("id") or item.get("_id") or item["name"]),
        name=item["name"],
        category=item.get("category") or "Other",
    )


class HttpMarketplaceBackend:
    """
    Implements the remote gateway protocols via httpx.

    Uses structural subtyping - no explicit inheritance from Protocol.
    The AsyncClient is owned by the caller.
    """

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    # -- accounts --------------------------------------------------------

    async def create_account(
        self,
        first_name: str,
        last_name: str,
        email: str,
        password: str,
        role: Role,
        location: str | None = None,
        phone: str | None = None,
    ) -> str:
        payload: dict[str, Any] = {
            "firstName": first_name,
            "lastName": last_name,
            "email": email,
            "password": password,
            "role": role.value,
        }
        if location:
            payload["location"] = location
        if phone:
            payload["phoneNumber"] = phone

        response = await self._send("POST", "/auth/register", json=payload)
        if response.status_code == 409:
            raise ConflictError()
        self._raise_for_status(response, "Registration failed. Please try again.")

        data = _unwrap(_json(response))
        user = data.get("user", data) if isinstance(data, dict) else None
        account_id = (user or {}).get("_id") or (user or {}).get("id")
        if not account_id:
            raise SubmissionError("Unexpected response from server. Please try again.")
        return str(account_id)

    async def send_otp(self, email: str) -> None:
        await self._request_code("/auth/send-otp", email)

    async def resend_otp(self, email: str) -> None:
        await self._request_code("/auth/resend-otp", email)

    async def verify_otp(self, email: str, code: str) -> VerifyOutcome:
        response = await self._send("POST", "/auth/verify-otp", json={"email": email, "otp": code})
        if response.status_code in (400, 401, 422):
            raise InvalidCodeError(message=_server_message(response))
        self._raise_for_status(response, "Verification failed. Please try again.")

        body = _json(response)
        if not isinstance(body, dict):
            raise SubmissionError("Unexpected response from server. Please try again.")

        verified = bool(body.get("verified", body.get("success", False)))
        if not verified:
            return VerifyOutcome(verified=False)

        data = _unwrap(body)
        session = parse_session(data) if isinstance(data, dict) and "accessToken" in data else None
        return VerifyOutcome(verified=True, session=session)

    # -- skills ----------------------------------------------------------

    async def list_skills(self) -> list[Skill]:
        response = await self._send("GET", "/skills")
        self._raise_for_status(response, "Failed to load skills.")
        items = _unwrap(_json(response))
        if not isinstance(items, list):
            raise SubmissionError("Unexpected skill catalog format.")
        return [_parse_skill(item) for item in items if isinstance(item, dict) and item.get("name")]

    async def add_skill(self, name: str, category: str | None = None) -> Skill:
        payload = {"name": name}
        if category:
            payload["category"] = category
        response = await self._send("POST", "/skills", json=payload)
        self._raise_for_status(response, "Failed to add skill.")
        item = _unwrap(_json(response))
        if not isinstance(item, dict) or not item.get("name"):
            return Skill(id=name, name=name, category=category or "Other")
        return _parse_skill(item)

    async def update_skills(self, skills: list[str], access_token: str) -> None:
        response = await self._send(
            "PATCH",
            "/freelancers/me/skills",
            json={"skills": skills},
            headers=_bearer(access_token),
        )
        self._raise_for_status(response, "Failed to save your skills. Please try again.")

    # -- passkeys --------------------------------------------------------

    async def initiate_enrollment(self, device_label: str, access_token: str) -> dict[str, Any]:
        response = await self._send(
            "POST",
            "/auth/passkeys/register/initiate",
            json={"deviceName": device_label},
            headers=_bearer(access_token),
        )
        self._raise_for_passkey_status(response)

        options = _unwrap(_json(response))
        if not isinstance(options, dict):
            raise DataFormatError("No registration options received from server.")
        return options

    async def complete_enrollment(
        self, attestation: Attestation, device_label: str, access_token: str
    ) -> None:
        response = await self._send(
            "POST",
            "/auth/passkeys/register/complete",
            json={"credential": attestation.to_payload(), "deviceName": device_label},
            headers=_bearer(access_token),
        )
        self._raise_for_passkey_status(response)

        body = _json(response)
        if isinstance(body, dict) and body.get("success") is False:
            raise self._passkey_error(400, body.get("message"))

    # -- internals -------------------------------------------------------

    async def _request_code(self, path: str, email: str) -> None:
        response = await self._send("POST", path, json={"email": email})
        if response.status_code == 429:
            raise RateLimitedError(_retry_after(response))
        self._raise_for_status(response, "Failed to send code. Please try again.")

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            logger.warning("%s %s failed: %s", method, path, type(e).__name__)
            raise NetworkError() from e

    def _raise_for_status(self, response: httpx.Response, default_message: str) -> None:
        if response.is_success:
            return
        logger.warning(
            "%s %s -> %s", response.request.method, response.request.url.path, response.status_code
        )
        if response.is_server_error:
            raise NetworkError("Server error. Please try again.")
        raise SubmissionError(_server_message(response) or default_message)

    def _raise_for_passkey_status(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        logger.warning(
            "%s %s -> %s", response.request.method, response.request.url.path, response.status_code
        )
        raise self._passkey_error(response.status_code, _server_message(response))

    def _passkey_error(self, status: int, message: str | None) -> EnrollmentError:
        lowered = (message or "").lower()
        if status == 401:
            return UnauthenticatedError()
        if status == 410 or ("challenge" in lowered and "expired" in lowered):
            return ChallengeExpiredError()
        if status == 409:
            return ServerConfigurationError("A passkey is already registered for this device.")
        if status >= 500:
            return ServerConfigurationError("Server error during passkey registration. Please try again.")
        return DataFormatError(message or "Invalid device name or registration parameters.")
