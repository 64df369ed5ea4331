"""
API v1 routes.

Defines REST endpoints that let a browser drive an onboarding flow.
"""

import asyncio
import logging
import math
from collections.abc import Callable
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from src.api.dependencies import get_flow, get_flow_factory, get_registry
from src.api.flows import FlowRegistry, OnboardingFlow
from src.api.models import (
    CompleteResponse,
    DetailsRequest,
    ErrorModel,
    ErrorResponse,
    FlowStateResponse,
    NotificationModel,
    PasskeyAbortRequest,
    PasskeyBeginRequest,
    PasskeyBeginResponse,
    PasskeyFinishRequest,
    RoleRequest,
    SkillCatalogResponse,
    SkillModel,
    SkillsRequest,
    VerifyRequest,
)
from src.domain.exceptions import (
    ConflictError,
    DataFormatError,
    EnrollmentError,
    InvalidCodeError,
    InvalidTransitionError,
    OnboardingError,
    OperationInProgressError,
    RateLimitedError,
    SessionStorageError,
    SubmissionError,
    UnauthenticatedError,
    ValidationError,
)
from src.domain.models import Attestation, Step

logger = logging.getLogger(__name__)

router = APIRouter(tags=["v1"])

# First match wins, so subclasses come before their bases
_ERROR_STATUS: list[tuple[type[OnboardingError], int]] = [
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ConflictError, status.HTTP_409_CONFLICT),
    (RateLimitedError, status.HTTP_429_TOO_MANY_REQUESTS),
    (InvalidCodeError, status.HTTP_400_BAD_REQUEST),
    (OperationInProgressError, status.HTTP_409_CONFLICT),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (UnauthenticatedError, status.HTTP_401_UNAUTHORIZED),
    (EnrollmentError, status.HTTP_400_BAD_REQUEST),
    (SessionStorageError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (SubmissionError, status.HTTP_502_BAD_GATEWAY),
]

_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    404: {"model": ErrorResponse, "description": "Onboarding flow not found"},
    409: {"model": ErrorResponse, "description": "Not allowed on the current step"},
    422: {"model": ErrorResponse, "description": "Validation error"},
}


def _snapshot(flow: OnboardingFlow) -> FlowStateResponse:
    """Build the flow state and drain pending notifications into it."""
    controller = flow.controller
    state = controller.state
    draft = state.draft
    error = None
    if state.error is not None:
        error = ErrorModel(
            kind=type(state.error).__name__,
            message=state.error.message,
            field=state.error.field,
        )

    return FlowStateResponse(
        flow_id=flow.id,
        step=state.step,
        role=draft.role,
        step_number=controller.step_number,
        total_steps=controller.total_steps,
        progress=controller.progress,
        in_flight=controller.in_flight,
        email=draft.email,
        account_id=state.account_id,
        authenticated=state.session is not None,
        selected_skills=sorted(draft.selected_skills),
        custom_skills=sorted(draft.custom_skills),
        resend_available_in=controller.seconds_until_resend(),
        passkey_phase=controller.enrollment.phase,
        passkey_enrolled=state.passkey_enrolled,
        error=error,
        notifications=[
            NotificationModel(level=n.level, message=n.message) for n in flow.notifications.drain()
        ],
    )


def _http_error(error: OnboardingError, flow: OnboardingFlow) -> HTTPException:
    """Translate a domain error into an HTTP error carrying the flow state."""
    status_code = next(
        (code for kind, code in _ERROR_STATUS if isinstance(error, kind)),
        status.HTTP_400_BAD_REQUEST,
    )
    detail: dict[str, Any] = {
        "message": error.message,
        "field": error.field,
        "state": _snapshot(flow).model_dump(mode="json"),
    }
    if isinstance(error, ValidationError):
        detail["errors"] = error.errors

    headers = None
    if isinstance(error, RateLimitedError):
        headers = {"Retry-After": str(math.ceil(error.retry_after))}

    logger.info("Flow %s: %s -> %d", flow.id, type(error).__name__, status_code)
    return HTTPException(status_code=status_code, detail=detail, headers=headers)


@router.post(
    "/onboarding",
    response_model=FlowStateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start an onboarding flow",
)
async def start_onboarding(
    registry: FlowRegistry = Depends(get_registry),
    factory: Callable[[str], OnboardingFlow] = Depends(get_flow_factory),
) -> FlowStateResponse:
    """Create a new flow positioned on the role step."""
    flow = registry.create(factory)
    return _snapshot(flow)


@router.get(
    "/onboarding/{flow_id}",
    response_model=FlowStateResponse,
    responses={404: _ERROR_RESPONSES[404]},
    summary="Get onboarding state",
)
async def get_onboarding(flow: OnboardingFlow = Depends(get_flow)) -> FlowStateResponse:
    return _snapshot(flow)


@router.post(
    "/onboarding/{flow_id}/role",
    response_model=FlowStateResponse,
    responses=_ERROR_RESPONSES,
    summary="Select the marketplace role",
    description="Choose client or freelancer and move on to the account details step.",
)
async def select_role(
    request_data: RoleRequest,
    flow: OnboardingFlow = Depends(get_flow),
) -> FlowStateResponse:
    try:
        flow.controller.select_role(request_data.role)
        await flow.controller.advance()
    except OnboardingError as e:
        raise _http_error(e, flow) from None
    return _snapshot(flow)


@router.post(
    "/onboarding/{flow_id}/details",
    response_model=FlowStateResponse,
    responses={
        **_ERROR_RESPONSES,
        502: {"model": ErrorResponse, "description": "Marketplace backend unavailable"},
    },
    summary="Submit account details",
    description="Create the account and send the first verification code to the email.",
)
async def submit_details(
    request_data: DetailsRequest,
    flow: OnboardingFlow = Depends(get_flow),
) -> FlowStateResponse:
    """
    Submit the details form.

    - **first_name**, **last_name**: Required
    - **email**: Valid email address, trimmed and lowercased
    - **password**, **confirm_password**: Must match

    On an already-submitted draft the fields are ignored and the flow
    returns to the verification step.
    """
    controller = flow.controller
    try:
        if controller.state.step is not Step.DETAILS:
            raise InvalidTransitionError(f"Not available on the {controller.state.step.value} step.")
        if not controller.state.draft.submitted:
            controller.update_details(**request_data.model_dump())
        await controller.advance()
    except OnboardingError as e:
        raise _http_error(e, flow) from None
    return _snapshot(flow)


@router.post(
    "/onboarding/{flow_id}/otp/verify",
    response_model=FlowStateResponse,
    responses={
        **_ERROR_RESPONSES,
        400: {"model": ErrorResponse, "description": "Invalid or expired code"},
        503: {"model": ErrorResponse, "description": "Session could not be stored; retry with the same code"},
    },
    summary="Verify the emailed code",
)
async def verify_code(
    request_data: VerifyRequest,
    flow: OnboardingFlow = Depends(get_flow),
) -> FlowStateResponse:
    try:
        await flow.controller.verify_code(request_data.code)
    except OnboardingError as e:
        raise _http_error(e, flow) from None
    return _snapshot(flow)


@router.post(
    "/onboarding/{flow_id}/otp/resend",
    response_model=FlowStateResponse,
    responses={
        **_ERROR_RESPONSES,
        429: {"model": ErrorResponse, "description": "A code was sent too recently"},
    },
    summary="Resend the verification code",
)
async def resend_code(flow: OnboardingFlow = Depends(get_flow)) -> FlowStateResponse:
    try:
        await flow.controller.resend_code()
    except OnboardingError as e:
        raise _http_error(e, flow) from None
    return _snapshot(flow)


@router.get(
    "/onboarding/{flow_id}/skills/catalog",
    response_model=SkillCatalogResponse,
    responses=_ERROR_RESPONSES,
    summary="List selectable skills",
)
async def skills_catalog(
    category: str | None = Query(None, description="Category name, or 'all'"),
    search: str | None = Query(None, max_length=100),
    flow: OnboardingFlow = Depends(get_flow),
) -> SkillCatalogResponse:
    """Skills from the marketplace, or a built-in list when it is unreachable."""
    controller = flow.controller
    try:
        await controller.load_skill_catalog()
    except OnboardingError as e:
        raise _http_error(e, flow) from None

    catalog = controller.catalog
    return SkillCatalogResponse(
        categories=catalog.categories(),
        skills=[
            SkillModel(id=s.id, name=s.name, category=s.category, custom=s.custom)
            for s in catalog.filter(category, search)
        ],
    )


@router.post(
    "/onboarding/{flow_id}/skills",
    response_model=FlowStateResponse,
    responses=_ERROR_RESPONSES,
    summary="Save selected skills",
    description="Replace the skill selection, add any custom skills and move on to the passkey step.",
)
async def submit_skills(
    request_data: SkillsRequest,
    flow: OnboardingFlow = Depends(get_flow),
) -> FlowStateResponse:
    controller = flow.controller
    try:
        wanted = {name.strip() for name in request_data.skills if name.strip()}
        for name in set(controller.state.draft.selected_skills) - wanted:
            controller.deselect_skill(name)
        for name in sorted(wanted):
            controller.select_skill(name)
        for name in request_data.custom_skills:
            await controller.add_custom_skill(name)
        await controller.advance()
    except OnboardingError as e:
        raise _http_error(e, flow) from None
    return _snapshot(flow)


@router.post(
    "/onboarding/{flow_id}/passkey/begin",
    response_model=PasskeyBeginResponse,
    responses={
        **_ERROR_RESPONSES,
        400: {"model": ErrorResponse, "description": "Passkey enrollment failed"},
        401: {"model": ErrorResponse, "description": "Session missing"},
    },
    summary="Start passkey enrollment",
    description="Returns the creation options the browser passes to navigator.credentials.create().",
)
async def begin_passkey(
    request_data: PasskeyBeginRequest,
    request: Request,
    flow: OnboardingFlow = Depends(get_flow),
) -> PasskeyBeginResponse:
    controller = flow.controller
    try:
        if flow.ceremony_task is not None and not flow.ceremony_task.done():
            raise OperationInProgressError()

        flow.relay.arm(request_data.supports_webauthn)
        flow.ceremony_task = asyncio.create_task(
            controller.enroll_passkey(request_data.device_label, request.headers.get("user-agent"))
        )
        options = await flow.relay.wait_for_options(flow.ceremony_task)
        if options is None:
            raise InvalidTransitionError("The passkey ceremony ended before the browser prompt.")
    except OnboardingError as e:
        raise _http_error(e, flow) from None

    return PasskeyBeginResponse(
        device_label=controller.enrollment.context.device_label,
        options=options,
        state=_snapshot(flow),
    )


async def _settle_ceremony(flow: OnboardingFlow) -> None:
    if flow.ceremony_task is None:
        raise InvalidTransitionError("No passkey ceremony has been started.")
    await flow.ceremony_task


@router.post(
    "/onboarding/{flow_id}/passkey/finish",
    response_model=FlowStateResponse,
    responses={
        **_ERROR_RESPONSES,
        400: {"model": ErrorResponse, "description": "Passkey enrollment failed"},
    },
    summary="Submit the created credential",
)
async def finish_passkey(
    request_data: PasskeyFinishRequest,
    flow: OnboardingFlow = Depends(get_flow),
) -> FlowStateResponse:
    try:
        try:
            attestation = Attestation.from_payload(request_data.credential)
        except DataFormatError as e:
            flow.relay.abort("DataError", e.message)
        else:
            flow.relay.submit(attestation)
        await _settle_ceremony(flow)
    except OnboardingError as e:
        raise _http_error(e, flow) from None
    return _snapshot(flow)


@router.post(
    "/onboarding/{flow_id}/passkey/abort",
    response_model=FlowStateResponse,
    responses={
        **_ERROR_RESPONSES,
        400: {"model": ErrorResponse, "description": "Passkey enrollment failed"},
    },
    summary="Report a browser-side failure",
    description="Forward the DOMException the browser raised (e.g. NotAllowedError when the user cancels).",
)
async def abort_passkey(
    request_data: PasskeyAbortRequest,
    flow: OnboardingFlow = Depends(get_flow),
) -> FlowStateResponse:
    try:
        flow.relay.abort(request_data.error_name, request_data.message)
        await _settle_ceremony(flow)
    except OnboardingError as e:
        raise _http_error(e, flow) from None
    return _snapshot(flow)


@router.post(
    "/onboarding/{flow_id}/advance",
    response_model=FlowStateResponse,
    responses=_ERROR_RESPONSES,
    summary="Continue to the next step",
)
async def advance(flow: OnboardingFlow = Depends(get_flow)) -> FlowStateResponse:
    try:
        await flow.controller.advance()
    except OnboardingError as e:
        raise _http_error(e, flow) from None
    return _snapshot(flow)


@router.post(
    "/onboarding/{flow_id}/back",
    response_model=FlowStateResponse,
    responses=_ERROR_RESPONSES,
    summary="Return to the previous step",
)
async def back(flow: OnboardingFlow = Depends(get_flow)) -> FlowStateResponse:
    try:
        flow.controller.retreat()
    except OnboardingError as e:
        raise _http_error(e, flow) from None
    flow.release_ceremony()
    return _snapshot(flow)


@router.post(
    "/onboarding/{flow_id}/skip",
    response_model=FlowStateResponse,
    responses=_ERROR_RESPONSES,
    summary="Skip an optional step",
)
async def skip(flow: OnboardingFlow = Depends(get_flow)) -> FlowStateResponse:
    try:
        flow.controller.skip()
    except OnboardingError as e:
        raise _http_error(e, flow) from None
    flow.release_ceremony()
    return _snapshot(flow)


@router.post(
    "/onboarding/{flow_id}/complete",
    response_model=CompleteResponse,
    responses=_ERROR_RESPONSES,
    summary="Finish onboarding",
    description="Returns the landing page for the chosen role.",
)
async def complete(
    flow: OnboardingFlow = Depends(get_flow),
    registry: FlowRegistry = Depends(get_registry),
) -> CompleteResponse:
    try:
        destination = flow.controller.complete()
    except OnboardingError as e:
        raise _http_error(e, flow) from None
    registry.discard(flow.id)
    return CompleteResponse(destination=destination, state=_snapshot(flow))
