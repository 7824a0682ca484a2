"""Template functions that read cluster objects.

:class:`LookupFunctions` is bound to one resolution call: the resolver's
collaborators, the caller's :class:`ResolveOptions`, and the call's
:class:`ResolutionSession`.  Every object served is recorded on the session,
and every lookup target (found or not) is recorded as referenced so callers
can watch for objects that do not exist yet.

Namespace restrictions are policy guards: a violation always raises.
A lookup of an API type that is not installed is not fatal for ``lookup``;
it marks the session and resolves to an empty value.
"""

from __future__ import annotations

import copy
import json
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from kube_templates.client.cache import DiscoveryCache
from kube_templates.client.protocols import DynamicClient, DynamicWatcher
from kube_templates.client.selectors import LabelSelector
from kube_templates.client.types import (
    GroupVersionKind,
    ObjectIdentifier,
    ScopedGVR,
    object_identity,
    object_labels,
)
from kube_templates.config.models import ClusterScopedObjectIdentifier, ResolveOptions
from kube_templates.crypto.encryption import AESCipher
from kube_templates.errors import (
    ClusterScopedLookupRestrictedError,
    InvalidInputError,
    MissingAPIResourceError,
    NoCacheEntryError,
    ObjectNotFoundError,
    ProtectNotEnabledError,
    RestrictedNamespaceError,
)
from kube_templates.state.session import ResolutionSession

logger = logging.getLogger(__name__)

CLUSTER_CLAIM_API_VERSION = "cluster.open-cluster-management.io/v1alpha1"
NODE_ROLE_PREFIX = "node-role.kubernetes.io"


def on_allowlist(
    allowlist: Iterable[ClusterScopedObjectIdentifier], group: str, kind: str, name: str
) -> bool:
    """Return whether any entry matches; each field is ``*`` or exact."""
    return any(entry.matches(group, kind, name) for entry in allowlist)


def get_namespace(caller: str, requested: str, restriction: str) -> str:
    """Return the namespace a lookup should use under *restriction*.

    No restriction passes *requested* through.  An empty *requested*
    defaults to the restriction.  Anything else must equal it.
    """
    if not restriction:
        return requested
    if not requested:
        return restriction
    if requested != restriction:
        raise RestrictedNamespaceError(caller, restriction)
    return requested


class LookupFunctions:
    """Cluster-reading template functions bound to one call.

    Exactly one of *dynamic_client* (with *discovery*) or *dynamic_watcher*
    is used.  In caching mode every query goes through the watcher on
    behalf of ``options.watcher``; otherwise results are cached in the
    session's call-scoped object cache.
    """

    def __init__(
        self,
        options: ResolveOptions,
        session: ResolutionSession,
        *,
        dynamic_client: Optional[DynamicClient] = None,
        discovery: Optional[DiscoveryCache] = None,
        dynamic_watcher: Optional[DynamicWatcher] = None,
        local_resources: Sequence[Dict[str, Any]] = (),
        cipher: Optional[AESCipher] = None,
    ) -> None:
        self.options = options
        self.session = session
        self._client = dynamic_client
        self._discovery = discovery
        self._watcher_api = dynamic_watcher
        self._local = list(local_resources)
        self._cipher = cipher

    # -- namespace and scope ----------------------------------------------

    def get_namespace(self, caller: str, requested: str) -> str:
        return get_namespace(caller, requested, self.options.lookup_namespace)

    def _resolve_gvr(self, gvk: GroupVersionKind) -> ScopedGVR:
        if self._watcher_api is not None:
            return self._watcher_api.gvk_to_gvr(gvk)
        if self._discovery is None:
            raise MissingAPIResourceError(context={"gvk": str(gvk)})
        return self._discovery.gvk_to_gvr(gvk)

    # -- core query -------------------------------------------------------

    def get_or_list(
        self,
        caller: str,
        api_version: str,
        kind: str,
        namespace: str = "",
        name: str = "",
        *label_selectors: str,
    ) -> Dict[str, Any]:
        """Fetch one object, or ``{"items": [...]}`` when *name* is empty.

        Raises:
            InvalidInputError: Missing apiVersion/kind or a bad selector.
            RestrictedNamespaceError, ClusterScopedLookupRestrictedError
            MissingAPIResourceError: The API type is not installed.
            ObjectNotFoundError: A named object does not exist.
        """
        if not api_version or not kind:
            raise InvalidInputError("the apiVersion and kind are required")

        ns = self.get_namespace(caller, namespace)
        gvk = GroupVersionKind.from_api_version(api_version, kind)
        selector = LabelSelector.from_parts(label_selectors)

        local = self._from_local(api_version, kind, ns, name, selector)
        if local is not None:
            return local

        gvr = self._resolve_gvr(gvk)
        if not gvr.namespaced:
            if self.options.lookup_namespace and not on_allowlist(
                self.options.cluster_scoped_allow_list, gvr.group, kind, name
            ):
                raise ClusterScopedLookupRestrictedError(kind, name)
            ns = ""

        ident = ObjectIdentifier.from_gvk(gvk, namespace=ns, name=name, selector=str(selector))
        if name:
            self.session.add_referenced(ident)
            items = self._query(ident, gvr, selector)
            if not items:
                raise ObjectNotFoundError(kind, ns, name)
        else:
            items = self._query(ident, gvr, selector)
            for item in items:
                item_ident = object_identity(item)
                if item_ident is not None:
                    self.session.add_referenced(item_ident)

        if kind == "Secret" and items:
            self.session.mark_sensitive()
        for item in items:
            self.session.add_used(item, is_remote=True)

        if name:
            return items[0]
        return {"items": items}

    def _query(
        self, ident: ObjectIdentifier, gvr: ScopedGVR, selector: LabelSelector
    ) -> List[Dict[str, Any]]:
        if self._watcher_api is not None:
            watcher = self.options.watcher
            if watcher is None:
                raise InvalidInputError("options.watcher cannot be None if caching is enabled")
            if ident.name:
                obj = self._watcher_api.get(watcher, ident.gvk, ident.namespace, ident.name)
                return [] if obj is None else [obj]
            return self._watcher_api.list(watcher, ident.gvk, ident.namespace, selector)

        cache = self.session.object_cache
        if cache is not None:
            try:
                return cache.from_object_identifier(ident)
            except NoCacheEntryError:
                pass

        if self._client is None:
            raise MissingAPIResourceError(context={"gvk": str(ident.gvk)})
        logger.debug("Querying the API for %s", ident)
        if ident.name:
            try:
                items = [self._client.get(gvr, ident.namespace, ident.name)]
            except ObjectNotFoundError:
                items = []
        else:
            items = self._client.list(gvr, ident.namespace, selector)

        if cache is not None:
            cache.cache_from_object_identifier(ident, items)
        return items

    def _from_local(
        self, api_version: str, kind: str, namespace: str, name: str, selector: LabelSelector
    ) -> Optional[Dict[str, Any]]:
        """Serve a lookup from local resources, or ``None`` to go remote."""
        if not self._local:
            return None
        matches = []
        for obj in self._local:
            metadata = obj.get("metadata") or {}
            if obj.get("apiVersion") != api_version or obj.get("kind") != kind:
                continue
            if (metadata.get("namespace") or "") != namespace:
                continue
            if name and metadata.get("name") != name:
                continue
            if not selector.matches(object_labels(obj)):
                continue
            matches.append(obj)
        if not matches:
            return None

        for obj in matches:
            self.session.add_used(obj, is_remote=False)
        if kind == "Secret":
            self.session.mark_sensitive()
        if name:
            return copy.deepcopy(matches[0])
        return {"items": copy.deepcopy(matches)}

    # -- lookup -----------------------------------------------------------

    def lookup(
        self,
        api_version: str,
        kind: str,
        namespace: str = "",
        name: str = "",
        *label_selectors: str,
    ) -> Dict[str, Any]:
        """Generic lookup; not-found and missing API types resolve to ``{}``."""
        logger.debug("lookup: %s, %s, %s, %s", api_version, kind, namespace, name)
        try:
            return self.get_or_list("lookup", api_version, kind, namespace, name, *label_selectors)
        except ObjectNotFoundError:
            return {}
        except MissingAPIResourceError:
            logger.debug("lookup of %s %s: the API resource is not installed", api_version, kind)
            self.session.mark_missing_api_resource()
            return {}

    def _get_required(
        self, caller: str, api_version: str, kind: str, namespace: str, name: str
    ) -> Dict[str, Any]:
        try:
            return self.get_or_list(caller, api_version, kind, namespace, name)
        except MissingAPIResourceError:
            self.session.mark_missing_api_resource()
            raise

    # -- Secrets and ConfigMaps -------------------------------------------

    def from_secret(self, namespace: str, name: str, key: str) -> str:
        """Return the base64 value of *key* in the Secret (``""`` if absent)."""
        logger.debug("fromSecret for namespace: %s, secret name: %s, key: %s", namespace, name, key)
        secret = self._get_required("fromSecret", "v1", "Secret", namespace, name)
        self.session.mark_sensitive()
        return str((secret.get("data") or {}).get(key, ""))

    def from_secret_protected(self, namespace: str, name: str, key: str) -> str:
        return self.protect(self.from_secret(namespace, name, key))

    def copy_secret_data(self, namespace: str, name: str) -> str:
        """Return the Secret's ``data`` as a JSON object string."""
        secret = self._get_required("copySecretData", "v1", "Secret", namespace, name)
        self.session.mark_sensitive()
        return json.dumps(secret.get("data") or {}, sort_keys=True)

    def copy_secret_data_protected(self, namespace: str, name: str) -> str:
        secret = self._get_required("copySecretData", "v1", "Secret", namespace, name)
        self.session.mark_sensitive()
        data = {k: self.protect(str(v)) for k, v in (secret.get("data") or {}).items()}
        return json.dumps(data, sort_keys=True)

    def from_config_map(self, namespace: str, name: str, key: str) -> str:
        logger.debug("fromConfigMap for namespace: %s, name: %s, key: %s", namespace, name, key)
        configmap = self._get_required("fromConfigMap", "v1", "ConfigMap", namespace, name)
        return str((configmap.get("data") or {}).get(key, ""))

    def copy_config_map_data(self, namespace: str, name: str) -> str:
        configmap = self._get_required("copyConfigMapData", "v1", "ConfigMap", namespace, name)
        return json.dumps(configmap.get("data") or {}, sort_keys=True)

    # -- ClusterClaims ----------------------------------------------------

    def from_cluster_claim(self, name: str) -> str:
        """Return ``spec.value`` of the ClusterClaim; a missing claim raises."""
        claim = self._get_required(
            "fromClusterClaim", CLUSTER_CLAIM_API_VERSION, "ClusterClaim", "", name
        )
        return _claim_value(claim, name)

    def lookup_cluster_claim(self, name: str) -> str:
        """Like ``fromClusterClaim`` but a missing claim yields ``""``."""
        claim = self.lookup(CLUSTER_CLAIM_API_VERSION, "ClusterClaim", "", name)
        if not claim:
            return ""
        return _claim_value(claim, name)

    # -- Nodes ------------------------------------------------------------

    def get_nodes_with_exact_roles(self, *roles: str) -> Dict[str, Any]:
        """List nodes carrying exactly *roles* (the worker role is ignored)."""
        search = [f"{NODE_ROLE_PREFIX}/{r.strip()}" for r in roles if r.strip()]
        if not search:
            raise InvalidInputError("at least one name must be specified")

        nodes = self.get_or_list("getNodesWithExactRoles", "v1", "Node", "", "", *search)
        allowed = set(search) | {f"{NODE_ROLE_PREFIX}/worker"}
        matched = [
            node
            for node in nodes.get("items", [])
            if all(
                key in allowed
                for key in object_labels(node)
                if key.startswith(NODE_ROLE_PREFIX)
            )
        ]
        return {"items": matched}

    def has_nodes_with_exact_roles(self, *roles: str) -> bool:
        return bool(self.get_nodes_with_exact_roles(*roles)["items"])

    # -- encryption -------------------------------------------------------

    def protect(self, value: Any) -> str:
        if self._cipher is None or not self.options.encryption.encryption_enabled:
            raise ProtectNotEnabledError()
        return self._cipher.protect(str(value))

    def decrypt(self, token: str) -> str:
        """Plaintext for an encrypted marker, with new lines escaped.

        Each new line comes back as the two characters ``\\n`` so the value
        cannot break the YAML line the marker sat on.  A multi-line secret
        therefore does not round-trip: ``line1\\nline2`` is what a template
        sees for a protected ``"line1" + newline + "line2"``.
        """
        plaintext = self.session.decrypted.get(token)
        if plaintext is None:
            if self._cipher is None:
                raise ProtectNotEnabledError()
            plaintext = self._cipher.decrypt(token)
        self.session.mark_sensitive()
        return plaintext.replace("\n", "\\n")

    # -- table ------------------------------------------------------------

    def functions(self) -> Dict[str, Callable[..., Any]]:
        """Return the cluster-reading built-ins keyed by template name.

        With encryption enabled the Secret readers encrypt their output and
        ``protect`` works; otherwise ``protect`` always fails.
        """
        table: Dict[str, Callable[..., Any]] = {
            "copyConfigMapData": self.copy_config_map_data,
            "copySecretData": self.copy_secret_data,
            "fromSecret": self.from_secret,
            "fromConfigMap": self.from_config_map,
            "fromClusterClaim": self.from_cluster_claim,
            "lookupClusterClaim": self.lookup_cluster_claim,
            "getNodesWithExactRoles": self.get_nodes_with_exact_roles,
            "hasNodesWithExactRoles": self.has_nodes_with_exact_roles,
            "lookup": self.lookup,
        }
        encryption = self.options.encryption
        if encryption.encryption_enabled:
            table["fromSecret"] = self.from_secret_protected
            table["copySecretData"] = self.copy_secret_data_protected
            table["protect"] = self.protect
        else:
            table["protect"] = _protect_not_enabled
        if encryption.decryption_enabled:
            table["decrypt"] = self.decrypt
        return table


def _protect_not_enabled(_value: Any = None) -> str:
    raise ProtectNotEnabledError()


def _claim_value(claim: Dict[str, Any], name: str) -> str:
    spec = claim.get("spec")
    if not isinstance(spec, dict):
        raise InvalidInputError(f"unexpected cluster claim format: {name}")
    value = spec.get("value")
    return "" if value is None else str(value)
