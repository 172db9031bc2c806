"""
Outbound notification collaborator.

Email composition and delivery live in another service; the engine only tells
a Notifier that something happened. A failing notifier is logged and ignored,
it never affects grading or a workflow transition.
"""
import logging

logger = logging.getLogger(__name__)


class Notifier:
    def registration_confirmed(self, registration) -> None:
        pass

    def screening_test_sent(self, registration, screening_test) -> None:
        pass

    def screening_completed(self, registration, attempt) -> None:
        pass


class LoggingNotifier(Notifier):
    def registration_confirmed(self, registration) -> None:
        logger.info(f"Registration {registration.id} confirmed for event {registration.event_id}")

    def screening_test_sent(self, registration, screening_test) -> None:
        logger.info(f"Screening test {screening_test.id} sent to registration {registration.id}")

    def screening_completed(self, registration, attempt) -> None:
        logger.info(
            f"Registration {registration.id} completed screening: "
            f"score={attempt.score} passed={attempt.passed} status={attempt.status.value}"
        )


_notifier: Notifier = LoggingNotifier()


def get_notifier() -> Notifier:
    return _notifier


def set_notifier(notifier: Notifier) -> None:
    global _notifier
    _notifier = notifier


def notify(event_name: str, *args) -> None:
    """Call one notifier hook, logging (never raising) on failure."""
    try:
        getattr(_notifier, event_name)(*args)
    except Exception:
        logger.exception(f"Notifier hook {event_name} failed")
