import warnings
from types import MappingProxyType
from typing import Any, Callable, Optional

import structlog

# Default global registry for semantic context extractors
_DEFAULT_EXTRACTORS: dict[str, Callable[[Any], dict[str, Any]]] = {}


def _register_default_extractor(
    context_key: str, extractor_function: Callable[[Any], dict[str, Any]]
):
    _DEFAULT_EXTRACTORS[context_key] = extractor_function


def get_logging_user_id(user) -> str:
    if user is None or not getattr(user, "is_authenticated", False):
        return "anonymous"
    return str(user.pk)


_register_default_extractor("user", lambda user: {"user_id": get_logging_user_id(user)})

_register_default_extractor(
    "job",
    lambda job: {
        "job_id": getattr(job, "pk", None),
        "session_id": getattr(job, "session_id", None),
    },
)

_register_default_extractor(
    "entity",
    lambda entity: {
        "entity_id": getattr(entity, "pk", None),
        "entity_kind": getattr(entity, "kind", None),
    },
)

_register_default_extractor(
    "term",
    lambda term: {
        "term_id": getattr(term, "pk", None),
        "taxonomy": getattr(term, "taxonomy", None),
    },
)

# Freeze default extractors to prevent mutation
_DEFAULT_EXTRACTORS = MappingProxyType(_DEFAULT_EXTRACTORS)


class SiteportLogger:
    """
    A structured logging wrapper around structlog that enforces the event
    conventions used by the importer.

    Every event requires a message and an ``event_code``; warnings and errors
    additionally require ``reason`` and ``reason_code``.

    Context objects passed by name are expanded into flat fields:

    - ``user`` -> ``user_id``
    - ``job`` -> ``job_id``, ``session_id``
    - ``entity`` -> ``entity_id``, ``entity_kind``
    - ``term`` -> ``term_id``, ``taxonomy``

    Explicit values (e.g. ``session_id=...``) override extracted ones and
    fields with ``None`` values are omitted.

    Usage:
        ```python
        structured_logger = SiteportLogger.get_logger(__name__)
        structured_logger.info(
            "Import chunk finished.",
            event_code="import_chunk_finished",
            job=job,
        )
        ```
    """

    def __init__(self, logger, context: Optional[dict[str, Any]] = None):
        self._logger = logger
        self._context = context or {}
        self._extractors = _DEFAULT_EXTRACTORS.copy()

    @classmethod
    def get_logger(cls, name: str) -> "SiteportLogger":
        """
        Create a SiteportLogger which logs through ``structlog.{name}``.
        """
        return cls(structlog.get_logger(f"structlog.{name}"))

    def register_extractor(
        self, key: str, extractor: Callable[[Any], dict[str, Any]]
    ) -> None:
        """
        Register a custom context extractor for this logger instance only.
        """
        self._extractors[key] = extractor
        if key in _DEFAULT_EXTRACTORS:
            warnings.warn(
                f"Extractor for '{key}' overrides a default extractor for this "
                f"logger only.",
                UserWarning,
                stacklevel=2,
            )

    def unregister_extractor(self, key: str) -> None:
        self._extractors.pop(key, None)

    def log(
        self,
        level: str,
        message: str,
        *,
        event_code: str,
        reason: Optional[str] = None,
        reason_code: Optional[str] = None,
        **context: Any,
    ) -> None:
        """
        Emit a structured log. Use one of the level methods instead of calling
        this directly.

        Raises:
            ValueError: If required fields are missing for the given log level.
        """
        if not message:
            raise ValueError("Log message is required.")
        if not event_code:
            raise ValueError("Structured logs must include an 'event_code' field.")
        if level in ("warning", "error") and (not reason or not reason_code):
            raise ValueError(
                "Warnings and errors must include both 'reason' and 'reason_code'."
            )

        context_data = {"event_code": event_code}
        if reason:
            context_data["reason"] = reason
        if reason_code:
            context_data["reason_code"] = reason_code

        bound_context = self._context

        for context_key, extractor_function in self._extractors.items():
            context_object = context.pop(context_key, bound_context.get(context_key))
            if context_object:
                extracted_fields = extractor_function(context_object)
                for key, value in extracted_fields.items():
                    if value is not None:
                        context_data.setdefault(key, value)

        for key, value in bound_context.items():
            if key not in self._extractors and key not in context and value is not None:
                context_data[key] = value

        # Explicit values win over extracted and bound ones
        for key, value in context.items():
            if value is not None:
                context_data[key] = value

        getattr(self._logger, level)(message, **context_data)

    def debug(self, message: str, *, event_code: str, **kwargs):
        self.log("debug", message, event_code=event_code, **kwargs)

    def info(self, message: str, *, event_code: str, **kwargs):
        self.log("info", message, event_code=event_code, **kwargs)

    def warning(
        self, message: str, *, event_code: str, reason: str, reason_code: str, **kwargs
    ):
        self.log(
            "warning",
            message,
            event_code=event_code,
            reason=reason,
            reason_code=reason_code,
            **kwargs,
        )

    def error(
        self, message: str, *, event_code: str, reason: str, reason_code: str, **kwargs
    ):
        self.log(
            "error",
            message,
            event_code=event_code,
            reason=reason,
            reason_code=reason_code,
            **kwargs,
        )

    def bind(self, **kwargs: Any) -> "SiteportLogger":
        """
        Return a new SiteportLogger with additional context permanently bound.
        Bound context objects are expanded by extractors at log time.
        """
        new_context = self._context.copy()
        new_context.update(kwargs)
        return SiteportLogger(self._logger, context=new_context)
