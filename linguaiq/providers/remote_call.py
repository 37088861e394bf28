"""
Remote Call Executor

Every call to an external AI service (transcription, rubric evaluation)
runs through ``RemoteCallExecutor.execute``, which adds:
1. A deadline timer (skipped when the deadline is 0 or negative)
2. Cooperative cancellation: the caller's ``CancellationSignal`` is forwarded
   to an internal controller, and the unit of work is cancelled when it fires
3. A normalized error taxonomy (``ProviderErrorCode``) with the original
   exception preserved as the cause

The executor never retries. Retry policy belongs to the calling use case.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, TypeVar, Union

from linguaiq.common.error_handling import ProviderError, ProviderErrorCode
from linguaiq.common.logger import app_logger

module_logger = app_logger.getChild("providers.remote_call")

T = TypeVar('T')

Listener = Callable[[Any], None]
LoggerLike = Union[logging.Logger, logging.LoggerAdapter]


class OperationAborted(Exception):
    """Raised by units of work that observe a cancelled signal."""

    def __init__(self, reason: Any = None):
        super().__init__(str(reason) if reason is not None else "operation aborted")
        self.reason = reason


class CancellationSignal:
    """
    Read side of a cancellation controller.

    Listeners run synchronously, once, when the signal is cancelled.
    """

    def __init__(self):
        self._cancelled = False
        self._reason: Any = None
        self._listeners: List[Listener] = []
        self._event: Optional[asyncio.Event] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> Any:
        return self._reason

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OperationAborted(self._reason)

    async def wait(self) -> Any:
        """Wait until the signal is cancelled and return the reason."""
        if not self._cancelled:
            if self._event is None:
                self._event = asyncio.Event()
            await self._event.wait()
        return self._reason

    def _trigger(self, reason: Any) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            listener(reason)
        if self._event is not None:
            self._event.set()


class CancellationController:
    """Owns a ``CancellationSignal`` and is the only way to cancel it."""

    def __init__(self):
        self.signal = CancellationSignal()

    def cancel(self, reason: Any = None) -> None:
        self.signal._trigger(reason)


@dataclass
class RemoteCallOptions:
    """Per-call overrides: deadline, caller cancellation and log metadata."""
    timeout_ms: Optional[int] = None
    signal: Optional[CancellationSignal] = None
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass
class RemoteCallContext:
    """What a unit of work receives: the internal signal and the caller's options."""
    signal: CancellationSignal
    options: Optional[RemoteCallOptions] = None


@dataclass
class _CallState:
    timed_out: bool = False
    externally_aborted: bool = False


class ClientError(Exception):
    """
    Error raised by a vendor client at the SDK boundary.

    Adapters classify anything exposing ``status`` (or ``status_code``) and/or
    ``code`` the same way, so third-party SDK errors need no wrapping.
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        code: Optional[str] = None,
        retryable: Optional[bool] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.status = status
        self.code = code
        self.retryable = retryable
        self.details = details or {}


def client_error_status(error: BaseException) -> Optional[int]:
    for attribute in ("status", "status_code"):
        value = getattr(error, attribute, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def client_error_code(error: BaseException) -> Optional[str]:
    code = getattr(error, "code", None)
    return code if isinstance(code, str) else None


def is_client_error_like(error: BaseException) -> bool:
    """Whether ``error`` looks like an SDK client error (HTTP status and/or code)."""
    return client_error_status(error) is not None or client_error_code(error) is not None


def is_abort_error(error: BaseException) -> bool:
    return isinstance(error, (OperationAborted, asyncio.CancelledError))


def map_standard_client_error_code(error: BaseException) -> ProviderErrorCode:
    """
    Map a client error to the provider taxonomy.

    The error code is inspected first (substring match), then the HTTP status.
    """
    code = client_error_code(error)
    if code:
        normalized = code.lower()
        if "rate" in normalized or "limit" in normalized:
            return ProviderErrorCode.TOO_MANY_REQUESTS
        if "auth" in normalized:
            return ProviderErrorCode.UNAUTHORIZED
        if "forbidden" in normalized:
            return ProviderErrorCode.FORBIDDEN
        if "timeout" in normalized:
            return ProviderErrorCode.TIMEOUT
        if "invalid_response" in normalized:
            return ProviderErrorCode.INVALID_RESPONSE
        if "validation" in normalized or "invalid_request" in normalized:
            return ProviderErrorCode.BAD_REQUEST

    status = client_error_status(error)
    if status is None:
        return ProviderErrorCode.UNKNOWN
    if status == 401:
        return ProviderErrorCode.UNAUTHORIZED
    if status == 403:
        return ProviderErrorCode.FORBIDDEN
    if status == 408:
        return ProviderErrorCode.TIMEOUT
    if status == 429:
        return ProviderErrorCode.TOO_MANY_REQUESTS
    if status in (400, 404, 422):
        return ProviderErrorCode.BAD_REQUEST
    if 500 <= status < 600:
        return ProviderErrorCode.SERVICE_UNAVAILABLE
    if 400 <= status < 500:
        return ProviderErrorCode.BAD_REQUEST
    return ProviderErrorCode.UNKNOWN


def default_client_error_details(error: BaseException) -> Dict[str, Any]:
    details = {
        "status": client_error_status(error),
        "client_code": client_error_code(error),
        "retryable": getattr(error, "retryable", None),
    }
    extra = getattr(error, "details", None)
    if isinstance(extra, dict):
        details.update(extra)
    return details


class RemoteCallExecutor:
    """
    Deadline, cancellation and error classification for one external service.

    The error classification is the only provider-specific part and is
    injected: the provider error class to raise, how to recognise a client
    error, how to map it to a code and which details to keep.
    """

    def __init__(
        self,
        service_name: str,
        error_class: Type[ProviderError] = ProviderError,
        is_client_error: Callable[[BaseException], bool] = is_client_error_like,
        map_client_error_to_code: Callable[[BaseException], ProviderErrorCode] = map_standard_client_error_code,
        get_client_error_details: Callable[[BaseException], Dict[str, Any]] = default_client_error_details
    ):
        self.service_name = service_name
        self.error_class = error_class
        self.is_client_error = is_client_error
        self.map_client_error_to_code = map_client_error_to_code
        self.get_client_error_details = get_client_error_details

    async def execute(
        self,
        method_name: str,
        default_timeout_ms: int,
        perform: Callable[[RemoteCallContext], Awaitable[T]],
        options: Optional[RemoteCallOptions] = None,
        logger: Optional[LoggerLike] = None
    ) -> T:
        """
        Run ``perform`` under a deadline and the caller's cancellation signal.

        Args:
            method_name: Provider method name, used in log records
            default_timeout_ms: Deadline used when ``options.timeout_ms`` is unset
            perform: Unit of work; receives a ``RemoteCallContext``
            options: Per-call overrides
            logger: Logger for classification records (module logger when None)

        Returns:
            Whatever ``perform`` returns

        Raises:
            ProviderError: (of ``error_class``) for every failure of the unit of work
            asyncio.CancelledError: if the task awaiting ``execute`` is itself cancelled
        """
        log = logger or module_logger
        timeout_ms = options.timeout_ms if options and options.timeout_ms is not None else default_timeout_ms
        loop = asyncio.get_running_loop()

        controller = CancellationController()
        state = _CallState()
        task = asyncio.ensure_future(perform(RemoteCallContext(signal=controller.signal, options=options)))
        controller.signal.add_listener(lambda _reason: task.cancel())

        timer: Optional[asyncio.TimerHandle] = None
        remove_external_listener: Optional[Callable[[], None]] = None

        external = options.signal if options else None
        if external is not None:
            if external.cancelled:
                state.externally_aborted = True
                controller.cancel(external.reason)
            else:
                def forward_abort(reason: Any) -> None:
                    if controller.signal.cancelled:
                        return
                    state.externally_aborted = True
                    controller.cancel(reason)

                external.add_listener(forward_abort)
                remove_external_listener = lambda: external.remove_listener(forward_abort)

        if timeout_ms > 0:
            def on_timeout() -> None:
                if controller.signal.cancelled:
                    return
                state.timed_out = True
                controller.cancel(OperationAborted(f"{method_name} timed out after {timeout_ms} ms"))

            timer = loop.call_later(timeout_ms / 1000, on_timeout)

        try:
            try:
                await asyncio.wait({task})
            except asyncio.CancelledError:
                task.cancel()
                raise

            if task.cancelled():
                error: BaseException = OperationAborted(controller.signal.reason)
            else:
                error = task.exception()
                if error is None:
                    return task.result()

            translated = self._translate_error(error, state, method_name, options, log)
            if translated is error:
                raise translated
            raise translated from error
        finally:
            if timer is not None:
                timer.cancel()
            if remove_external_listener is not None:
                remove_external_listener()

    def _translate_error(
        self,
        error: BaseException,
        state: _CallState,
        method_name: str,
        options: Optional[RemoteCallOptions],
        log: LoggerLike
    ) -> ProviderError:
        context = {"service": self.service_name, "method": method_name}
        if options and options.metadata:
            context.update(options.metadata)

        if isinstance(error, ProviderError):
            return error

        if state.timed_out:
            log.warning(f"{self.service_name} call timed out", extra={"data": context})
            return self.error_class(
                f"{self.service_name} call timed out",
                provider_code=ProviderErrorCode.TIMEOUT,
                cause=error,
            )

        if state.externally_aborted or is_abort_error(error):
            log.info(f"{self.service_name} call was cancelled", extra={"data": context})
            return self.error_class(
                f"{self.service_name} call was cancelled",
                provider_code=ProviderErrorCode.CANCELLED,
                cause=error,
            )

        if self.is_client_error(error):
            code = self.map_client_error_to_code(error)
            details = self.get_client_error_details(error)
            log.error(
                f"{self.service_name} call failed",
                extra={"data": {**context, "code": code.value, **details}}
            )
            return self.error_class(
                str(error) or f"{self.service_name} call failed",
                provider_code=code,
                cause=error,
                details=details,
            )

        log.error(
            f"Unexpected error from {self.service_name}",
            extra={"data": {**context, "error": str(error)}}
        )
        return self.error_class(
            f"Unexpected error from {self.service_name}",
            provider_code=ProviderErrorCode.UNKNOWN,
            cause=error,
        )
