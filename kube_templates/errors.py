"""Exception hierarchy for template resolution.

Every error raised by the engine derives from :class:`TemplateError`, so
callers can catch the whole family at once while still telling the kinds
apart::

    TemplateError
    ├── TemplateParseError          malformed input or template syntax
    ├── TemplateExecutionError      a function failed while rendering
    ├── TemplateValidationError     bad config, context or encryption setup
    ├── ResourceLookupError         not found / missing type / restricted
    ├── CryptoError                 key, IV, base64 or padding problems
    ├── CacheError                  caching mode misuse
    └── DenylistedFunctionError     a blocked function was invoked
"""

from __future__ import annotations

from typing import Any, Dict, Mapping


class TemplateError(Exception):
    """Base exception for template resolution."""

    context: Dict[str, Any]

    def __init__(self, message: str = "", *, context: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        if context is not None:
            self.context = dict(context)
        else:
            self.context = {}

    def to_json_error(self) -> Dict[str, Any]:
        """Return a JSON-serializable error payload."""
        return {
            "message": str(self),
            "code": self.__class__.__name__,
            "context": self.context,
        }


# ---------------------------------------------------------------------------
# Parse / execute
# ---------------------------------------------------------------------------


class TemplateParseError(TemplateError):
    """Raised when the structured input or the template syntax is malformed."""


class TemplateExecutionError(TemplateError):
    """Raised when evaluating the template fails.

    The failing function's exception is chained as ``__cause__``.
    """

    def __init__(
        self,
        message: str,
        *,
        lineno: int | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        ctx = dict(context or {})
        if lineno is not None:
            ctx["lineno"] = lineno
        super().__init__(message, context=ctx)
        self.lineno = lineno


class DenylistedFunctionError(TemplateError):
    """Raised when a denylisted template function is invoked."""

    def __init__(self, name: str, *, security_risk: bool = False) -> None:
        if security_risk:
            reason = "is considered a security risk"
        else:
            reason = "is not allowed"
        super().__init__(
            f"use of denylisted template function: function '{name}' {reason}",
            context={"function": name, "security_risk": security_risk},
        )
        self.name = name


class NewLinesNotAllowedError(TemplateError, ValueError):
    """Raised by ``toLiteral`` when the input spans several lines."""

    def __init__(self) -> None:
        TemplateError.__init__(
            self, "new lines are not allowed in the string passed to the toLiteral function"
        )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TemplateValidationError(TemplateError, ValueError):
    """Raised when configuration or caller input is invalid."""


class InvalidInputError(TemplateValidationError):
    """Raised when a ResolveTemplate argument is not acceptable."""


class InvalidContextError(TemplateValidationError):
    """Raised when the template context does not recurse to primitive values."""

    def __init__(self, kind: str) -> None:
        super().__init__(
            "the input context must be a record that recurses to kinds bool, int, "
            f"float, or string, but found a value of kind {kind}",
            context={"kind": kind},
        )
        self.kind = kind


class ContextTransformerError(TemplateValidationError):
    """Raised when a context transformer fails."""


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


class ResourceLookupError(TemplateError):
    """Base class for failures while looking up cluster resources."""


class ObjectNotFoundError(ResourceLookupError):
    """Raised when a single named object does not exist."""

    def __init__(self, kind: str, namespace: str, name: str) -> None:
        where = f"{namespace}/{name}" if namespace else name
        super().__init__(
            f"{kind} '{where}' not found",
            context={"kind": kind, "namespace": namespace, "name": name},
        )
        self.kind = kind
        self.namespace = namespace
        self.name = name


class MissingAPIResourceError(ResourceLookupError):
    """Raised when the API resource type itself is not installed."""

    default_message = "one or more API resources are not installed on the API server"

    def __init__(self, message: str = "", *, context: Mapping[str, Any] | None = None) -> None:
        super().__init__(message or self.default_message, context=context)


class RestrictedNamespaceError(ResourceLookupError):
    """Raised when a lookup targets a namespace outside the restriction."""

    def __init__(self, caller: str, restriction: str) -> None:
        super().__init__(
            f"the namespace argument passed to {caller} is restricted to {restriction}",
            context={"caller": caller, "namespace": restriction},
        )
        self.caller = caller
        self.restriction = restriction


class ClusterScopedLookupRestrictedError(ResourceLookupError):
    """Raised when a cluster-scoped lookup is not on the allowlist."""

    def __init__(self, kind: str, name: str) -> None:
        super().__init__(
            f"lookup of cluster-scoped resource '{kind}/{name}' is not allowed",
            context={"kind": kind, "name": name},
        )
        self.kind = kind
        self.name = name


# ---------------------------------------------------------------------------
# Crypto
# ---------------------------------------------------------------------------


class CryptoError(TemplateError):
    """Base class for encryption and decryption failures."""


class AESKeyNotSetError(CryptoError, TemplateValidationError):
    def __init__(self) -> None:
        CryptoError.__init__(self, "AESKey must be set to use this encryption mode")


class InvalidAESKeyError(CryptoError, TemplateValidationError):
    def __init__(self, detail: str = "") -> None:
        msg = "the AES key is invalid"
        if detail:
            msg = f"{msg}: {detail}"
        CryptoError.__init__(self, msg)


class IVNotSetError(CryptoError, TemplateValidationError):
    def __init__(self) -> None:
        CryptoError.__init__(
            self, "initialization vector must be set to use this encryption mode"
        )


class InvalidIVError(CryptoError, TemplateValidationError):
    def __init__(self) -> None:
        CryptoError.__init__(self, "initialization vector must be 128 bits")


class InvalidBase64Error(CryptoError):
    """Raised when the text after the encryption marker is not valid base64."""


class InvalidPKCS7PaddingError(CryptoError):
    """Raised when decrypted data does not carry valid PKCS7 padding."""


class ProtectNotEnabledError(CryptoError):
    def __init__(self) -> None:
        CryptoError.__init__(self, "the protect template function is not enabled in this mode")


# ---------------------------------------------------------------------------
# Caching
# ---------------------------------------------------------------------------


class CacheError(TemplateError):
    """Base class for caching mode errors."""


class CacheDisabledError(CacheError):
    def __init__(self) -> None:
        super().__init__("cannot perform this action because the cache is not enabled")


class NoCacheEntryError(CacheError):
    def __init__(self, what: str = "") -> None:
        msg = "there is no populated cache entry"
        if what:
            msg = f"{msg} for {what}"
        super().__init__(msg)


class QueryBatchInProgressError(CacheError):
    def __init__(self, watcher: Any) -> None:
        super().__init__(
            f"a query batch is already in progress for {watcher}",
            context={"watcher": str(watcher)},
        )
        self.watcher = watcher
