"""
ConversionDispatcherService - client-side conversion delivery

Reports funnel events (view_item, add_to_cart, begin_checkout,
add_payment_info, purchase) through the direct tag transport with
exponential-backoff retries, then fans the same payload out to the
tag-manager queue sinks. Every outcome lands in the attempt log and
failures are reported to the monitor. Nothing here ever raises to the
booking flow: each track_* call returns a bool.
"""

from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import nullcontext
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError

from logging_config import get_logger
from services.common.exceptions import ConfigurationError, TrackingError, TrackingFailure, ValidationError
from services.conversion_event import ConversionEvent, ValidationResult, validate
from services.enums import ConversionAction, ConversionType
from services.tracking_settings import TrackingSettings
from utils.clock import Clock, system_clock

logger = get_logger(__name__)


def compute_backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """
    Delay to wait after failed attempt number `attempt` (1-based).

    min(base * 2^(attempt-1), max_delay); no jitter.
    """
    if attempt < 1:
        raise ValueError("attempt is 1-based")
    return min(base_delay * (2 ** (attempt - 1)), max_delay)


@dataclass
class TrackingOptions:
    """Per-call options supplied by the booking flow"""
    marketing_consent: bool = False
    booking_id: Optional[str] = None
    session_id: Optional[str] = None

    @classmethod
    def from_value(cls, value: Any) -> 'TrackingOptions':
        if isinstance(value, cls):
            return value
        if not value:
            return cls()
        if isinstance(value, Mapping):
            consent = value.get('marketing_consent', value.get('consent', False))
            if isinstance(consent, Mapping):
                consent = consent.get('marketing', False)
            return cls(
                marketing_consent=bool(consent),
                booking_id=value.get('booking_id'),
                session_id=value.get('session_id'),
            )
        raise TypeError(f"Unsupported tracking options: {type(value).__name__}")


class ConversionDispatcherService:
    """Client-path dispatcher with retry, fan-out and attempt logging"""

    def __init__(
        self,
        settings: TrackingSettings,
        tag_transport,
        attempt_repository,
        monitor=None,
        event_sinks: Optional[List] = None,
        clock: Clock = system_clock,
        context_factory: Optional[Callable[[], Any]] = None,
        max_workers: int = 4
    ):
        """
        Args:
            settings: Labels, retry policy and timeout
            tag_transport: Primary transport (HttpTagTransport or a test double)
            attempt_repository: ConversionAttemptRepository
            monitor: TrackingMonitorService receiving errors and call timings
            event_sinks: Secondary best-effort channels (tag-manager queue)
            clock: Time source; sleep() is used between retries
            context_factory: Returns a context manager wrapping background work
                (the Flask app context in production)
            max_workers: Background executor size for submit()
        """
        self.settings = settings
        self.tag_transport = tag_transport
        self.attempt_repository = attempt_repository
        self.monitor = monitor
        self.event_sinks = list(event_sinks or [])
        self.clock = clock
        self.context_factory = context_factory or nullcontext
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='conversion-dispatch')
        self._closed = False

    # Public tracking operations

    def track_view_item(self, event_input: Mapping[str, Any], options=None) -> bool:
        return self.track(ConversionAction.VIEW_ITEM, event_input, options)

    def track_add_to_cart(self, event_input: Mapping[str, Any], options=None) -> bool:
        return self.track(ConversionAction.ADD_TO_CART, event_input, options)

    def track_begin_checkout(self, event_input: Mapping[str, Any], options=None) -> bool:
        return self.track(ConversionAction.BEGIN_CHECKOUT, event_input, options)

    def track_add_payment_info(self, event_input: Mapping[str, Any], options=None) -> bool:
        return self.track(ConversionAction.ADD_PAYMENT_INFO, event_input, options)

    def track_purchase(self, event_input: Mapping[str, Any], options=None) -> bool:
        return self.track(ConversionAction.PURCHASE, event_input, options)

    def track(self, action, event_input: Mapping[str, Any], options=None) -> bool:
        """Run the full client-path algorithm for one event. Never raises."""
        try:
            return self._track(ConversionAction(action), event_input, TrackingOptions.from_value(options))
        except Exception as e:
            logger.exception("Unexpected error while tracking conversion", action=str(action), error=str(e))
            return False

    def submit(self, action, event_input: Mapping[str, Any], options=None) -> Future:
        """Fire-and-forget variant: run track() on the background executor"""
        if self._closed:
            raise RuntimeError("Dispatcher is closed")
        payload = dict(event_input)

        def run():
            with self.context_factory():
                return self.track(action, payload, options)

        return self._executor.submit(run)

    def close(self, wait: bool = True) -> None:
        """Stop accepting background work; in-flight attempts may be abandoned when wait=False"""
        self._closed = True
        self._executor.shutdown(wait=wait)

    # Algorithm

    def _track(self, action: ConversionAction, event_input: Mapping[str, Any],
               options: TrackingOptions) -> bool:
        # 1. Consent gate: policy no-op, no network call and no attempt row
        if not options.marketing_consent:
            logger.debug("Marketing consent absent, skipping conversion", action=action.value)
            return False

        raw = dict(event_input)
        raw['action'] = action.value
        log_key = self._log_key(raw, options)

        # 2. Validate
        validation = validate(raw, default_currency=self.settings.default_currency)
        if not validation.is_valid:
            error = ValidationError(f"Invalid {action.value} event", validation.core_issues)
            self._log_attempt(log_key, action, False, error.to_dict(), error)
            self._report(error, action, log_key)
            return False
        if validation.degraded:
            logger.warning("Enhanced conversion data dropped", action=action.value,
                           issues=[i.to_dict() for i in validation.issues if not i.core])

        event = validation.event

        # 3. Resolve conversion label
        label = self.settings.resolve_label(action.value)
        if label is None:
            error = ConfigurationError(f"No conversion label configured for {action.value}")
            self._log_attempt(log_key, action, False, error.to_dict(), error)
            self._report(error, action, log_key)
            return False

        # 4. Dispatch with retry
        payload = event.to_payload()
        return self._dispatch_with_retry(action, label, event, payload, validation, log_key)

    def _dispatch_with_retry(self, action: ConversionAction, label: str, event: ConversionEvent,
                             payload: Dict[str, Any], validation: ValidationResult,
                             log_key: str) -> bool:
        max_attempts = max(1, self.settings.max_attempts)
        last_error: Optional[TrackingError] = None

        for attempt in range(1, max_attempts + 1):
            started = self.clock.monotonic()
            try:
                self.tag_transport.send(label, payload, timeout=self.settings.request_timeout)
                error = None
            except TrackingError as e:
                error = e
            except Exception as e:
                logger.exception("Unexpected tag transport error", action=action.value, attempt=attempt)
                error = TrackingFailure(f"Unexpected transport error: {e}",
                                        {'exception': type(e).__name__})

            duration = self.clock.monotonic() - started
            if error is not None:
                last_error = error
                self._record_call(duration, False)
                self._log_attempt(log_key, action, False, {
                    'attempt': attempt,
                    'max_attempts': max_attempts,
                    **error.to_dict(),
                }, error)
                logger.warning("Conversion tracking attempt failed", action=action.value,
                               attempt=attempt, max_attempts=max_attempts, error=error.message)
                if not error.retryable or attempt == max_attempts:
                    break
                self.clock.sleep(compute_backoff_delay(
                    attempt, self.settings.retry_base_delay, self.settings.max_retry_delay
                ))
                continue

            self._record_call(duration, True)

            # 5. Best-effort fan-out to the tag-manager queue
            sink_outcomes = self._fan_out(payload)

            # 6. The successful try is the one success row
            self._log_attempt(log_key, action, True, {
                'attempt': attempt,
                'label': label,
                'enhanced': event.is_enhanced,
                'degraded': validation.degraded,
                'sinks': sink_outcomes,
            })
            logger.info("Conversion tracked", action=action.value, attempt=attempt,
                        transaction_id=event.transaction_id)
            return True

        if last_error is not None:
            self._report(last_error, action, log_key)
        return False

    def _fan_out(self, payload: Dict[str, Any]) -> Dict[str, str]:
        outcomes: Dict[str, str] = {}
        for sink in self.event_sinks:
            try:
                sink.push(payload)
                outcomes[sink.name] = 'delivered'
            except Exception as e:
                outcomes[sink.name] = f"failed: {e}"
                logger.warning("Event sink push failed", sink=sink.name, error=str(e))
        return outcomes

    # Helpers

    @staticmethod
    def _log_key(raw: Mapping[str, Any], options: TrackingOptions) -> str:
        """Attempt-log key: the booking/transaction id when there is one"""
        for candidate in (raw.get('transaction_id'), options.booking_id, options.session_id):
            if candidate:
                return str(candidate)
        return 'anonymous'

    def _log_attempt(self, log_key: str, action: ConversionAction, success: bool,
                     details: Dict[str, Any], error: Optional[TrackingError] = None) -> None:
        try:
            self.attempt_repository.append(
                booking_id=log_key,
                conversion_type=ConversionType.CLIENT.value,
                success=success,
                details=details,
                action=action.value,
                error_type=error.error_type.value if error else None,
            )
        except SQLAlchemyError as e:
            logger.error("Failed to write conversion attempt", booking_id=log_key, error=str(e))

    def _record_call(self, duration: float, success: bool) -> None:
        if self.monitor is not None:
            self.monitor.record_tracking_call(duration, success)

    def _report(self, error: TrackingError, action: ConversionAction, log_key: str) -> None:
        if self.monitor is None:
            return
        try:
            self.monitor.report_error(error, {'action': action.value, 'booking_id': log_key,
                                              'path': ConversionType.CLIENT.value})
        except Exception as e:
            logger.error("Failed to report tracking error", error=str(e))
