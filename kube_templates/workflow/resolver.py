"""Orchestrator for template resolution.

``TemplateResolver.resolve_template`` runs these steps, in order:

1. validate the encryption config
2. check caching mode inputs (watcher required; transformers only with caching)
3. validate the template context
4. convert JSON input to the YAML text the rewrites work on
5. decrypt ``$ocm_encrypted:`` markers and rewrite them into ``decrypt`` calls
6. strip quotes around typed output, expand ``autoindent``, escape hub templates
7. build the function table
8. parse with the configured delimiters
9. render, routing lookups and decryption through a per-call session
10. convert the rendered YAML back to compact JSON

A resolver holds no per-call state, so one instance can serve concurrent
calls.  In caching mode each call is wrapped in a query batch for the
caller's watcher so stale watches are cleaned up when the batch ends.
"""

from __future__ import annotations

import json
import logging
import traceback
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from jinja2 import ChainableUndefined, Template, TemplateSyntaxError
from jinja2.sandbox import SandboxedEnvironment

from kube_templates.client.cache import DiscoveryCache, ObjectCache
from kube_templates.client.protocols import DiscoveryClient, DynamicClient, DynamicWatcher
from kube_templates.client.types import GroupVersionKind, ObjectIdentifier
from kube_templates.client.watcher import BoundQueryAPI, CachingWatcher
from kube_templates.config.context import validate_context
from kube_templates.config.models import Config, ResolveOptions
from kube_templates.crypto.encryption import (
    AESCipher,
    decrypt_tokens,
    find_encrypted_tokens,
    rewrite_encrypted_markers,
    validate_encryption_config,
)
from kube_templates.errors import (
    CacheDisabledError,
    CacheError,
    ContextTransformerError,
    InvalidInputError,
    MissingAPIResourceError,
    QueryBatchInProgressError,
    TemplateError,
    TemplateExecutionError,
    TemplateParseError,
)
from kube_templates.lookup.functions import LookupFunctions
from kube_templates.render.functions import builtin_functions
from kube_templates.render.processors import (
    block_delimiters,
    escape_hub_templates,
    expand_autoindent,
    json_to_yaml,
    strip_type_quotes,
    yaml_to_json,
)
from kube_templates.render.registry import FunctionRegistry
from kube_templates.render.utilities import utility_functions
from kube_templates.state.session import ResolutionSession, TemplateResult

logger = logging.getLogger(__name__)

_TEMPLATE_FILENAME = "<template>"


def _finalize(value: Any) -> Any:
    """Render values the way YAML expects them.

    Mappings and lists are written as compact JSON, which is also a YAML
    flow collection.  Single quotes are escaped so the text can sit inside a
    single-quoted scalar.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (Mapping, list, tuple)):
        text = json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)
        return text.replace("'", "\\u0027")
    return value


class _ManifestEnvironment(SandboxedEnvironment):
    """Sandbox where ``obj.key`` on a mapping reads the key before any attribute.

    Manifests use field names such as ``items`` and ``values`` that would
    otherwise resolve to ``dict`` methods.
    """

    def getattr(self, obj: Any, attribute: str) -> Any:
        if isinstance(obj, Mapping):
            try:
                return obj[attribute]
            except (KeyError, TypeError):
                pass
        return super().getattr(obj, attribute)


def _template_lineno(exc: BaseException) -> Optional[int]:
    """Line in the template source where *exc* was raised, if known."""
    lineno = None
    for frame in traceback.extract_tb(exc.__traceback__):
        if frame.filename == _TEMPLATE_FILENAME:
            lineno = frame.lineno
    return lineno


class TemplateResolver:
    """Resolve templates in policy manifests.

    Args:
        dynamic_client: Uncached get/list access to cluster objects.
        discovery_client: Maps kinds to resources; unused when
            ``config.kube_api_resources`` is set.
        config: Resolver-wide settings.
        local_resources: Manifests consulted before the cluster (dry runs).
        dynamic_watcher: Enables caching mode; lookups then go through the
            watcher and every call needs ``options.watcher``.

    Raises:
        TemplateValidationError: The delimiter pair is only half set.
    """

    def __init__(
        self,
        dynamic_client: Optional[DynamicClient] = None,
        discovery_client: Optional[DiscoveryClient] = None,
        config: Optional[Config] = None,
        *,
        local_resources: Iterable[Dict[str, Any]] = (),
        dynamic_watcher: Optional[DynamicWatcher] = None,
    ) -> None:
        self.config = config or Config()
        self.start_delim, self.stop_delim = self.config.delimiters()
        self._client = dynamic_client
        self._watcher_api = dynamic_watcher
        self._local_resources: List[Dict[str, Any]] = list(local_resources)
        self._discovery: Optional[DiscoveryCache] = None
        if dynamic_watcher is None:
            self._discovery = DiscoveryCache(
                discovery_client,
                api_resources=self.config.kube_api_resources,
                missing_ttl=self.config.missing_api_resource_cache_ttl,
            )
        logger.debug(
            "Using the delimiters of %s and %s (caching %s)",
            self.start_delim,
            self.stop_delim,
            "enabled" if self.caching_enabled else "disabled",
        )

    @classmethod
    def with_dynamic_watcher(
        cls, dynamic_watcher: DynamicWatcher, config: Optional[Config] = None
    ) -> "TemplateResolver":
        """Build a resolver in caching mode around an existing watcher."""
        return cls(config=config, dynamic_watcher=dynamic_watcher)

    @classmethod
    def with_caching(
        cls,
        dynamic_client: DynamicClient,
        discovery_client: Optional[DiscoveryClient] = None,
        config: Optional[Config] = None,
    ) -> "TemplateResolver":
        """Build a resolver in caching mode backed by a :class:`CachingWatcher`.

        The watcher's discovery honours ``config.kube_api_resources`` and
        ``config.missing_api_resource_cache_ttl``.
        """
        config = config or Config()
        discovery = DiscoveryCache(
            discovery_client,
            api_resources=config.kube_api_resources,
            missing_ttl=config.missing_api_resource_cache_ttl,
        )
        return cls(config=config, dynamic_watcher=CachingWatcher(dynamic_client, discovery))

    @property
    def caching_enabled(self) -> bool:
        return self._watcher_api is not None

    # ------------------------------------------------------------------
    # resolve_template
    # ------------------------------------------------------------------

    def resolve_template(
        self,
        raw: Union[bytes, str],
        context: Any = None,
        options: Optional[ResolveOptions] = None,
    ) -> TemplateResult:
        """Resolve every template expression in *raw*.

        *raw* is JSON unless ``options.input_is_yaml`` is set.  *context* is
        a mapping, dataclass or pydantic model whose fields are available to
        the template by name (``None`` for none).
        """
        options = options or ResolveOptions()
        raw_text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        logger.debug("resolve_template for: %s", raw_text)

        validate_encryption_config(options.encryption)

        if self.caching_enabled:
            if options.watcher is None:
                raise InvalidInputError("options.watcher cannot be None if caching is enabled")
        elif options.context_transformers:
            raise InvalidInputError(
                "options.context_transformers cannot be set if caching is disabled"
            )

        ctx = validate_context(context)

        text = raw_text if options.input_is_yaml else json_to_yaml(raw_text)
        logger.debug("Initial template str to resolve: %s", text)

        session = ResolutionSession(object_cache=None if self.caching_enabled else ObjectCache())
        cipher = AESCipher.from_config(options.encryption) if options.encryption.enabled else None
        try:
            if options.encryption.decryption_enabled and cipher is not None:
                text = self._decrypt_markers(text, cipher, options, session)

            text = self._preprocess(text)
            template = self._parse(text, session, options, cipher, raw_text)

            if self._watcher_api is not None and options.watcher is not None:
                query_api = BoundQueryAPI(self._watcher_api, options.watcher)
                rendered = self._render_in_batch(
                    query_api, template, ctx, options, session, raw_text
                )
            else:
                rendered = self._render(template, ctx, session, raw_text)

            logger.debug("Resolved template str: %s", rendered)
            return session.to_result(yaml_to_json(rendered))
        finally:
            session.close()

    # -- steps ------------------------------------------------------------

    def _decrypt_markers(
        self,
        text: str,
        cipher: AESCipher,
        options: ResolveOptions,
        session: ResolutionSession,
    ) -> str:
        tokens = find_encrypted_tokens(text)
        if not tokens:
            return text
        session.decrypted.update(
            decrypt_tokens(cipher, tokens, options.encryption.decryption_concurrency)
        )
        return rewrite_encrypted_markers(text, self.start_delim, self.stop_delim)

    def _preprocess(self, text: str) -> str:
        text = strip_type_quotes(text, self.start_delim, self.stop_delim)
        text = expand_autoindent(
            text, self.start_delim, self.stop_delim, self.config.additional_indentation
        )
        # Last, so the raw block markers are not mistaken for expressions
        return escape_hub_templates(text, self.start_delim, self.stop_delim)

    def _environment(self) -> SandboxedEnvironment:
        block_start, block_end, comment_start, comment_end = block_delimiters(
            self.start_delim, self.stop_delim
        )
        return _ManifestEnvironment(
            variable_start_string=self.start_delim,
            variable_end_string=self.stop_delim,
            block_start_string=block_start,
            block_end_string=block_end,
            comment_start_string=comment_start,
            comment_end_string=comment_end,
            autoescape=False,
            keep_trailing_newline=True,
            undefined=ChainableUndefined,
            finalize=_finalize,
        )

    def _function_registry(
        self,
        session: ResolutionSession,
        options: ResolveOptions,
        cipher: Optional[AESCipher],
    ) -> FunctionRegistry:
        lookups = LookupFunctions(
            options,
            session,
            dynamic_client=self._client,
            discovery=self._discovery,
            dynamic_watcher=self._watcher_api,
            local_resources=self._local_resources,
            cipher=cipher,
        )
        builtins = builtin_functions(self.config.additional_indentation)
        builtins.update(lookups.functions())
        return FunctionRegistry.build(
            builtins,
            utility_functions(),
            disabled=self.config.disabled_functions,
            custom=options.custom_functions,
            denylist=options.denylist_functions,
        )

    def _parse(
        self,
        text: str,
        session: ResolutionSession,
        options: ResolveOptions,
        cipher: Optional[AESCipher],
        raw_text: str,
    ) -> Template:
        env = self._environment()
        self._function_registry(session, options, cipher).install(env)
        try:
            return env.from_string(text)
        except TemplateSyntaxError as exc:
            logger.error(
                "error parsing template string %s,\n template str %s,\n error: %s",
                raw_text,
                text,
                exc,
            )
            raise TemplateParseError(
                f"failed to parse the template JSON string {raw_text}: {exc}",
                context={"lineno": exc.lineno},
            ) from exc

    def _render_in_batch(
        self,
        query_api: BoundQueryAPI,
        template: Template,
        ctx: Dict[str, Any],
        options: ResolveOptions,
        session: ResolutionSession,
        raw_text: str,
    ) -> str:
        dynamic_watcher = query_api.dynamic_watcher
        watcher = query_api.watcher
        manage_batch = not self.config.skip_batch_management

        if manage_batch:
            try:
                dynamic_watcher.start_query_batch(watcher)
            except QueryBatchInProgressError as exc:
                raise CacheError(
                    "resolve_template cannot be called with the same watched object in "
                    f"parallel: {exc}",
                    context={"watcher": str(watcher)},
                ) from exc

        try:
            ctx = self._apply_context_transformers(ctx, options, query_api)
            return self._render(template, ctx, session, raw_text)
        finally:
            if manage_batch:
                try:
                    dynamic_watcher.end_query_batch(watcher)
                except Exception as exc:
                    logger.error("failed to end the query batch for %s: %s", watcher, exc)

    def _apply_context_transformers(
        self, ctx: Dict[str, Any], options: ResolveOptions, query_api: BoundQueryAPI
    ) -> Dict[str, Any]:
        current: Any = ctx
        for index, transformer in enumerate(options.context_transformers):
            try:
                current = transformer(query_api, current)
            except Exception as exc:
                raise ContextTransformerError(
                    f"the context transformer failed at options.context_transformers[{index}]: "
                    f"{exc}",
                    context={"index": index},
                ) from exc
        return validate_context(current)

    def _render(
        self,
        template: Template,
        ctx: Dict[str, Any],
        session: ResolutionSession,
        raw_text: str,
    ) -> str:
        try:
            return template.render(ctx)
        except Exception as exc:
            lineno = _template_lineno(exc)
            logger.error("error resolving the template %s,\n error: %s", raw_text, exc)
            if session.missing_api_resource:
                raise MissingAPIResourceError(
                    f"{MissingAPIResourceError.default_message}, which could have led to the "
                    f"templating error: {exc}",
                    context={"lineno": lineno},
                ) from exc
            if isinstance(exc, TemplateError):
                if lineno is not None:
                    exc.context.setdefault("lineno", lineno)
                raise
            raise TemplateExecutionError(
                f"failed to resolve the template {raw_text}: {exc}", lineno=lineno
            ) from exc

    # ------------------------------------------------------------------
    # Caching mode
    # ------------------------------------------------------------------

    def _require_watcher(self) -> DynamicWatcher:
        if self._watcher_api is None:
            raise CacheDisabledError()
        return self._watcher_api

    def start_query_batch(self, watcher: ObjectIdentifier) -> None:
        """Open a query batch; only allowed with ``skip_batch_management``."""
        dynamic_watcher = self._require_watcher()
        if not self.config.skip_batch_management:
            raise CacheError(
                "the TemplateResolver must have skip_batch_management set to True to manage "
                "the batches explicitly"
            )
        dynamic_watcher.start_query_batch(watcher)

    def end_query_batch(self, watcher: ObjectIdentifier) -> None:
        """Close the batch and drop watches the batch no longer references."""
        self._require_watcher().end_query_batch(watcher)

    def uncache_watcher(self, watcher: ObjectIdentifier) -> None:
        """Remove every watch and cache entry held for *watcher*."""
        self._require_watcher().remove_watcher(watcher)

    def list_watched_from_cache(self, watcher: ObjectIdentifier) -> List[Dict[str, Any]]:
        return self._require_watcher().list_watched_from_cache(watcher)

    def get_from_cache(
        self, gvk: GroupVersionKind, namespace: str, name: str
    ) -> Optional[Dict[str, Any]]:
        return self._require_watcher().get_from_cache(gvk, namespace, name)

    def get_watch_count(self) -> int:
        """Number of active watches; ``0`` when caching is disabled."""
        if self._watcher_api is None:
            return 0
        return self._watcher_api.get_watch_count()

    @property
    def local_resources(self) -> Sequence[Dict[str, Any]]:
        return tuple(self._local_resources)
