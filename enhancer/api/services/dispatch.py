"""
Dispatch orchestrator.

Runs one processing job through its lifecycle::

    CREATED -> DEBITED -> CALLING_BACKEND -> COMPLETED
                                          -> FAILED -> REFUNDED

A job that cannot be debited stays CREATED and carries the error. Every
job that reaches DEBITED ends COMPLETED or REFUNDED; the refund is attempted
exactly once with the debited amount and the same job id, and a refund
failure is logged without replacing the original error.
"""

import time
from dataclasses import dataclass, field
from typing import List, Optional

import structlog

from enhancer.core.config import JobState, ProcessingMode
from enhancer.core.exceptions import ModelNotAvailableError, ProcessingError
from enhancer.core.monitoring import (
    increment_credits_debited,
    increment_job_counter,
    increment_provider_error,
    increment_refund,
    observe_job_latency,
)
from enhancer.core.settings import Settings, settings as app_settings
from enhancer.worker.adapters import build_backend_input
from enhancer.worker.normalizers import normalize_error, normalize_output
from enhancer.worker.providers import ProviderRegistry
from enhancer.worker.providers.base import IProvider, ProcessingRequest
from enhancer.api.services.catalog import BackendDescriptor, CapabilityCatalog
from enhancer.api.services.ledger import CreditLedger, generate_job_id
from enhancer.api.services.selector import ModelSelector, SelectionCriteria

logger = structlog.get_logger(__name__)

ALLOWED_TRANSITIONS = {
    JobState.CREATED: {JobState.DEBITED},
    JobState.DEBITED: {JobState.CALLING_BACKEND},
    JobState.CALLING_BACKEND: {JobState.COMPLETED, JobState.FAILED},
    JobState.FAILED: {JobState.REFUNDED},
    JobState.COMPLETED: set(),
    JobState.REFUNDED: set(),
}


class InvalidTransitionError(RuntimeError):
    pass


@dataclass
class ProcessingJob:
    """One processing attempt; lives only for the request."""
    job_id: str
    user_id: str
    backend_id: str
    credit_cost: int
    state: JobState = JobState.CREATED
    history: List[JobState] = field(default_factory=lambda: [JobState.CREATED])
    error: Optional[ProcessingError] = None
    refund_error: Optional[str] = None

    def transition(self, new_state: JobState) -> None:
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransitionError(f"{self.job_id}: {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)


@dataclass(frozen=True)
class CanonicalResult:
    image_url: str
    mime_type: str
    credits_remaining: int
    backend_id: str
    job_id: str
    credits_charged: int
    expires_at: Optional[int] = None

    def to_dict(self):
        return {
            "image_url": self.image_url,
            "mime_type": self.mime_type,
            "expires_at": self.expires_at,
            "credits_remaining": self.credits_remaining,
            "credits_charged": self.credits_charged,
            "backend_id": self.backend_id,
            "job_id": self.job_id,
        }


@dataclass(frozen=True)
class DispatchOutcome:
    """Either a result or a canonical error, plus the finished job."""
    job: ProcessingJob
    result: Optional[CanonicalResult] = None
    error: Optional[ProcessingError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> CanonicalResult:
        if self.error is not None:
            raise self.error
        return self.result


class DispatchOrchestrator:
    """Ties selection, input building, billing and the backend call together."""

    def __init__(
        self,
        catalog: CapabilityCatalog,
        ledger: CreditLedger,
        providers: ProviderRegistry,
        selector: Optional[ModelSelector] = None,
        settings: Optional[Settings] = None,
    ):
        self.catalog = catalog
        self.ledger = ledger
        self.providers = providers
        self.settings = settings or app_settings
        self.selector = selector or ModelSelector(catalog, self.settings)

    def resolve_backend(
        self,
        request: ProcessingRequest,
        backend_id: Optional[str] = None,
        criteria: Optional[SelectionCriteria] = None,
    ) -> BackendDescriptor:
        """Backend for the request, explicit or selected; raises when unusable."""
        if backend_id:
            descriptor = self.catalog.get_backend(backend_id)
            if descriptor is None or not descriptor.enabled:
                raise ModelNotAvailableError(f"Model {backend_id} is not available", backend_id)
        elif criteria is not None:
            descriptor = self.selector.select_best(criteria)
            if descriptor is None:
                raise ModelNotAvailableError("No model matches the requested tier, capabilities and scale")
        else:
            raise ModelNotAvailableError("Either a model id or selection criteria is required")

        mode = ProcessingMode(request.mode)
        if not descriptor.supports_mode(mode):
            raise ModelNotAvailableError(
                f"Model {descriptor.id} does not support {mode.value} mode", descriptor.id
            )
        if mode in (ProcessingMode.UPSCALE, ProcessingMode.BOTH) and not descriptor.supports_scale(request.scale):
            raise ModelNotAvailableError(
                f"Model {descriptor.id} does not support {request.scale}x", descriptor.id
            )
        return descriptor

    def _provider_for(self, descriptor: BackendDescriptor, mode: ProcessingMode) -> IProvider:
        provider = self.providers.get(descriptor.provider_kind)
        if provider is None or not provider.supports_mode(mode):
            raise ModelNotAvailableError(
                f"No provider can run {descriptor.id} in {ProcessingMode(mode).value} mode", descriptor.id
            )
        return provider

    async def process(
        self,
        user_id: str,
        request: ProcessingRequest,
        backend_id: Optional[str] = None,
        criteria: Optional[SelectionCriteria] = None,
    ) -> DispatchOutcome:
        """
        Run one job end to end.

        Selection and validation problems raise ``ModelNotAvailableError``
        before anything is billed. From the debit on, failures come back in
        the outcome as a canonical ``ProcessingError``.
        """
        descriptor = self.resolve_backend(request, backend_id, criteria)
        provider = self._provider_for(descriptor, request.mode)
        cost = self.selector.cost(descriptor, request.mode)
        backend_input = build_backend_input(descriptor.id, request)

        job = ProcessingJob(
            job_id=generate_job_id(descriptor.provider_kind),
            user_id=user_id,
            backend_id=descriptor.id,
            credit_cost=cost,
        )
        log = logger.bind(job_id=job.job_id, user_id=user_id, backend_id=descriptor.id, credit_cost=cost)
        started = time.monotonic()

        try:
            receipt = await self.ledger.debit(
                user_id, cost, job.job_id,
                f"{ProcessingMode(request.mode).value} with {descriptor.display_name}"
            )
        except ProcessingError as e:
            job.error = e
            log.info("Job rejected at debit", error_code=e.code.value, error=e.message)
            increment_job_counter(descriptor.id, "rejected")
            return DispatchOutcome(job=job, error=e)

        job.transition(JobState.DEBITED)
        increment_credits_debited(descriptor.id, cost)

        job.transition(JobState.CALLING_BACKEND)
        log.info("Calling backend", model_version=descriptor.model_version, mode=ProcessingMode(request.mode).value)
        try:
            raw = await provider.call(descriptor.model_version, backend_input)
            output = normalize_output(raw)
        except Exception as e:
            error = normalize_error(e, details={"job_id": job.job_id, "backend_id": descriptor.id})
            job.error = error
            job.transition(JobState.FAILED)
            increment_provider_error(descriptor.id, error.code.value)
            log.warning("Backend call failed", error_code=error.code.value, error=error.message)

            await self._refund(job, log)
            job.transition(JobState.REFUNDED)

            increment_job_counter(descriptor.id, "failed")
            observe_job_latency(descriptor.id, "failed", time.monotonic() - started)
            return DispatchOutcome(job=job, error=error)

        job.transition(JobState.COMPLETED)
        result = CanonicalResult(
            image_url=output.image_url,
            mime_type=output.mime_type,
            expires_at=output.expires_at,
            credits_remaining=receipt.new_balance,
            backend_id=descriptor.id,
            job_id=job.job_id,
            credits_charged=cost,
        )
        duration = time.monotonic() - started
        increment_job_counter(descriptor.id, "completed")
        observe_job_latency(descriptor.id, "completed", duration)
        log.info("Job completed", mime_type=output.mime_type, duration=duration)
        return DispatchOutcome(job=job, result=result)

    async def _refund(self, job: ProcessingJob, log) -> None:
        try:
            await self.ledger.credit(job.user_id, job.credit_cost, job.job_id)
            increment_refund(job.backend_id, "succeeded")
        except Exception as e:
            # The caller sees the processing error, not this one
            job.refund_error = str(e)
            increment_refund(job.backend_id, "failed")
            log.error("Refund failed", error=str(e), error_type=type(e).__name__)

    async def process_or_raise(
        self,
        user_id: str,
        request: ProcessingRequest,
        backend_id: Optional[str] = None,
        criteria: Optional[SelectionCriteria] = None,
    ) -> CanonicalResult:
        outcome = await self.process(user_id, request, backend_id, criteria)
        return outcome.unwrap()
