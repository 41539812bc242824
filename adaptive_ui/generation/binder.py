"""
Post-hoc binding of interactive UI components to Thing actions.

Generated documents reference actions loosely (an id, an intent, or just a
label). The binder walks the tree and attaches the concrete descriptor each
interactive component should invoke, so devices never guess transports.
"""

from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from adaptive_ui.actions.models import ActionDescriptor
from adaptive_ui.adui_logging import get_logger

logger = logging.getLogger(__name__)
log = get_logger("ADUI.Binder")

INTERACTIVE_TYPES = frozenset({"button", "toggle", "slider", "dropdown"})

ACTION_KEYWORD_RULES = (
    (re.compile(r"\bturn\s*on\b|\bpower\s*on\b|\benable\b|\bstart\b"), "turnon"),
    (re.compile(r"\bturn\s*off\b|\bpower\s*off\b|\bdisable\b|\bstop\b"), "turnoff"),
    (re.compile(r"\btoggle\b|\bswitch\b"), "toggle"),
    (re.compile(r"\bdrive\b|\bwheel\b|\bmove\b|\btractor\b"), "setwheelcontrol"),
)

# Loose intent names the model tends to produce → canonical alias
INTENT_SYNONYMS = {
    "quickalloff": "lights.off.all",
    "lights.off": "lights.off.all",
    "lights.off.all": "lights.off.all",
    "lights.turnoff": "lights.off.all",
    "lights.turnoff.all": "lights.off.all",
    "alllightsoff": "lights.off.all",
    "alloff": "lights.off.all",
    "all.lights.off": "lights.off.all",
    "poweroff": "lights.off.all",
    "lights.on": "lights.on.device",
    "lights.turnon": "lights.on.device",
    "lights.on.device": "lights.on.device",
    "poweron": "lights.on.device",
    "lights.toggle": "lights.toggle.device",
    "switch.toggle": "lights.toggle.device",
    "toggle": "lights.toggle.device",
}

_TOKEN_SPLIT = re.compile(r"[^a-z0-9]+")


def canonicalize_intent(value: Any) -> Optional[str]:
    if value is None:
        return None
    normalized = str(value).strip().lower()
    if not normalized:
        return None
    return INTENT_SYNONYMS.get(normalized, normalized)


def derive_thing_id(action_id: Any) -> Optional[str]:
    if not isinstance(action_id, str) or "::" not in action_id:
        return None
    return action_id.split("::", 1)[0] or None


def _tokens(value: str) -> List[str]:
    return [t for t in _TOKEN_SPLIT.split(value.lower()) if t]


def _non_empty(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def has_executable_hints(candidate: Any) -> bool:
    if not isinstance(candidate, dict):
        return False
    if any(candidate.get(k) for k in ("url", "href", "path", "service", "transport")):
        return True
    if candidate.get("baseUrl") and candidate.get("method"):
        return True
    forms = candidate.get("forms")
    return isinstance(forms, list) and len(forms) > 0


def to_wire_descriptor(action: Dict[str, Any]) -> Dict[str, Any]:
    """Deep-copied wire shape {type, id, thingId, name, title, description, metadata, transport, forms}."""
    descriptor: Dict[str, Any] = {
        "type": "thingAction" if action.get("type") in (None, "action") else action["type"],
        "id": action.get("id"),
        "thingId": action.get("thingId") or derive_thing_id(action.get("id")),
    }
    for key in ("name", "title", "description", "metadata", "transport", "forms", "headers"):
        if action.get(key):
            descriptor[key] = copy.deepcopy(action[key])
    return descriptor


@dataclass
class BindingReport:
    bound: List[str] = field(default_factory=list)
    enriched: List[str] = field(default_factory=list)
    unresolved: List[str] = field(default_factory=list)


class _ActionView:
    """Precomputed match keys for one action dict."""

    __slots__ = ("action", "fields", "keywords", "aliases", "id_lower")

    def __init__(self, action: Dict[str, Any]):
        self.action = action
        aliases = (action.get("metadata") or {}).get("intentAliases") or []
        aliases = [a for a in aliases if isinstance(a, str)]
        self.fields = [
            f.lower() for f in (action.get("id"), action.get("name"), action.get("title"), *aliases)
            if isinstance(f, str)
        ]
        self.keywords = {t for f in self.fields for t in _tokens(f)}
        self.aliases = [canonicalize_intent(a) for a in aliases]
        self.id_lower = str(action.get("id") or "").lower()

    def contains(self, fragment: str) -> bool:
        return any(fragment in f for f in self.fields)


class ActionBinder:
    def __init__(self) -> None:
        self.last_report = BindingReport()

    def bind(
        self,
        ui: Any,
        actions: Iterable[Any],
        fallback_thing_id: Optional[str] = None,
    ) -> Any:
        """
        Attach action descriptors to interactive components, in place.

        Returns the same tree. Components that already carry an action keep
        it (enriched from the catalog when it lacks transport details);
        components nothing matches stay unbound.
        """
        report = BindingReport()
        self.last_report = report

        pool = [self._as_dict(a) for a in actions]
        pool = [a for a in pool if a and a.get("id")]
        if not isinstance(ui, (dict, list)) or not pool:
            return ui

        views = [_ActionView(a) for a in pool]
        by_thing: Dict[str, List[_ActionView]] = {}
        for view in views:
            thing_id = view.action.get("thingId") or derive_thing_id(view.action.get("id")) or fallback_thing_id
            if thing_id:
                by_thing.setdefault(thing_id, []).append(view)

        for component in self._walk(ui):
            kind = component.get("component") or component.get("type")
            if kind not in INTERACTIVE_TYPES:
                continue
            props = component["props"] if isinstance(component.get("props"), dict) else component

            if props.get("action"):
                self._keep_attached(component, props, views, by_thing, fallback_thing_id, report)
                continue

            ctx = component.get("context") if isinstance(component.get("context"), dict) else {}
            thing_id = props.get("thingId") or component.get("thingId") or ctx.get("thingId") or fallback_thing_id
            scoped = by_thing.get(thing_id) if thing_id else None
            candidates = scoped or views

            resolved = self._resolve(component, props, kind, candidates, views, thing_id)
            label = self._label(component, props) or kind
            if resolved is None:
                log.warning(
                    "ADUI.Binder.Unbound",
                    extra={"fields": {"component": kind, "label": label}},
                )
                report.unresolved.append(label)
                continue

            descriptor = to_wire_descriptor(resolved)
            props["action"] = descriptor
            component.setdefault("action", descriptor)
            if not props.get("thingId") and descriptor.get("thingId"):
                props["thingId"] = descriptor["thingId"]
            report.bound.append(descriptor["id"])

        if report.unresolved:
            logger.info(f"Bound {len(report.bound)} components, {len(report.unresolved)} left unbound")
        return ui

    # ------------------------------------------------------------------

    @staticmethod
    def _as_dict(action: Any) -> Optional[Dict[str, Any]]:
        if isinstance(action, ActionDescriptor):
            return action.to_dict()
        return action if isinstance(action, dict) else None

    @staticmethod
    def _walk(root: Any):
        """Pre-order traversal guarded by a visited set of object ids."""
        seen = set()
        stack = [root]
        while stack:
            node = stack.pop()
            if not isinstance(node, (dict, list)) or id(node) in seen:
                continue
            seen.add(id(node))
            if isinstance(node, list):
                stack.extend(reversed(node))
                continue
            yield node

            collections: List[Any] = [node.get("components"), node.get("children")]
            props = node.get("props")
            if isinstance(props, dict):
                collections += [props.get("components"), props.get("children")]
            for collection in reversed(collections):
                if collection:
                    stack.append(collection)

    @staticmethod
    def _label(component: Dict[str, Any], props: Dict[str, Any]) -> Optional[str]:
        for value in (
            props.get("label"), props.get("text"), props.get("title"), props.get("name"),
            component.get("label"), component.get("text"), component.get("title"),
        ):
            label = _non_empty(value)
            if label:
                return label
        return None

    def _resolve(
        self,
        component: Dict[str, Any],
        props: Dict[str, Any],
        kind: str,
        candidates: List[_ActionView],
        all_views: List[_ActionView],
        thing_id: Optional[str],
    ) -> Optional[Dict[str, Any]]:
        # 1. explicit action id
        explicit = next(
            (v.strip() for v in (
                props.get("actionId"), component.get("actionId"),
                props.get("targetActionId"), component.get("targetActionId"),
            ) if _non_empty(v)),
            None,
        )
        if explicit:
            for pool in (candidates, all_views):
                match = next((v for v in pool if v.action["id"] == explicit), None) or next(
                    (v for v in pool if v.id_lower == explicit.lower()), None
                )
                if match:
                    return match.action
            return {"id": explicit, "thingId": thing_id or derive_thing_id(explicit)}

        # 2. intent / command hints
        for hint in (props.get("intent"), component.get("intent"), props.get("command"), component.get("command")):
            match = self._match_hint(hint, candidates)
            if match:
                return match.action

        # 3. keyword scoring over the visible label
        label = self._label(component, props)
        if label:
            label_lower = label.lower()
            label_tokens = _tokens(label_lower)
            best, best_score = None, 0
            for view in candidates:
                score = self._score(view, label_lower, label_tokens, kind)
                if score > best_score:
                    best, best_score = view, score
            if best is not None:
                return best.action

        # 4. a single candidate in scope
        if len(candidates) == 1:
            return candidates[0].action
        return None

    @staticmethod
    def _match_hint(hint: Any, candidates: List[_ActionView]) -> Optional[_ActionView]:
        canonical = canonicalize_intent(hint)
        if not canonical:
            return None
        for view in candidates:
            if canonical in view.aliases:
                return view
        raw = str(hint).strip().lower()
        return next((v for v in candidates if v.contains(raw)), None)

    @staticmethod
    def _score(view: _ActionView, label_lower: str, label_tokens: List[str], kind: str) -> int:
        score = 0
        for pattern, fragment in ACTION_KEYWORD_RULES:
            if pattern.search(label_lower) and view.contains(fragment):
                score += 5
        score += sum(1 for token in label_tokens if token in view.keywords)
        if kind == "toggle" and "toggle" in view.id_lower:
            score += 2
        if kind == "slider" and "wheelcontrol" in view.id_lower:
            score += 2
        return score

    def _keep_attached(
        self,
        component: Dict[str, Any],
        props: Dict[str, Any],
        views: List[_ActionView],
        by_thing: Dict[str, List[_ActionView]],
        fallback_thing_id: Optional[str],
        report: BindingReport,
    ) -> None:
        attached = props["action"]
        if isinstance(attached, dict) and not has_executable_hints(attached):
            thing_id = attached.get("thingId") or props.get("thingId") or component.get("thingId") or fallback_thing_id
            match = self._match_attached(attached, by_thing.get(thing_id) if thing_id else None, views)
            if match is not None:
                merged = to_wire_descriptor(match.action)
                merged.update({k: v for k, v in attached.items() if v is not None and k not in ("transport", "forms")})
                merged["id"] = match.action["id"]
                merged["thingId"] = match.action.get("thingId") or merged.get("thingId")
                props["action"] = merged
                attached = merged
                report.enriched.append(merged["id"])
        component.setdefault("action", attached)

    def _match_attached(
        self,
        attached: Dict[str, Any],
        scoped: Optional[List[_ActionView]],
        views: List[_ActionView],
    ) -> Optional[_ActionView]:
        keys = []
        for key in ("id", "actionId", "name", "actionName", "command", "intent", "action", "title"):
            value = _non_empty(attached.get(key))
            if value and value.lower() not in keys:
                keys.append(value.lower())
        if not keys:
            return None
        for pool in (scoped or [], views):
            for view in pool:
                exact = [f for f in (view.action.get("id"), view.action.get("name"), view.action.get("title"))
                         if isinstance(f, str)]
                if any(k in (f.lower() for f in exact) for k in keys):
                    return view
        for key in (attached.get("intent"), attached.get("command"), attached.get("action")):
            if isinstance(key, str):
                match = self._match_hint(key, scoped or views)
                if match:
                    return match
        return None
