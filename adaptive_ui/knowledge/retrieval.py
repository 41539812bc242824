"""
Lexical retrieval over the document corpus.

Term-frequency vectors compared with cosine similarity. Used for both UI
generation grounding and device-selection grounding; only the query
context differs.
"""

from __future__ import annotations

import json
import math
import re
from collections import Counter
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping

if TYPE_CHECKING:
    from adaptive_ui.knowledge.store import Document

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")

DEFAULT_LIMIT = 5


def tokenize(text: str) -> List[str]:
    if not text:
        return []
    return _NON_ALNUM.sub(" ", text.lower()).split()


def build_term_frequency(tokens: Iterable[str]) -> Dict[str, int]:
    return dict(Counter(tokens))


def cosine_similarity(a: Mapping[str, float], b: Mapping[str, float]) -> float:
    if not a or not b:
        return 0.0
    dot = sum(weight * b.get(token, 0) for token, weight in a.items())
    magnitude_a = math.sqrt(sum(w * w for w in a.values()))
    magnitude_b = math.sqrt(sum(w * w for w in b.values()))
    if magnitude_a == 0 or magnitude_b == 0:
        return 0.0
    return dot / (magnitude_a * magnitude_b)


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


def build_query(context: Mapping[str, Any]) -> str:
    """Concatenate the query context into one newline-separated string."""
    segments: List[str] = []

    prompt = context.get("prompt")
    if prompt:
        segments.append(str(prompt))

    td = context.get("thingDescription")
    if td:
        segments.append(td if isinstance(td, str) else _dumps(td))

    capability_data = context.get("capabilityData")
    if capability_data:
        segments.append(_dumps(capability_data))

    capabilities = context.get("capabilities")
    if isinstance(capabilities, list) and capabilities:
        segments.append(f"capabilities: {', '.join(map(str, capabilities))}")

    missing = context.get("missingCapabilities")
    if isinstance(missing, list) and missing:
        segments.append(f"missing: {', '.join(map(str, missing))}")

    if context.get("device"):
        segments.append(_dumps({"device": context["device"]}))
    if context.get("uiContext"):
        segments.append(_dumps(context["uiContext"]))

    thing_actions = context.get("thingActions")
    if isinstance(thing_actions, list) and thing_actions:
        segments.append(_dumps({"thingActions": thing_actions}))

    available_things = context.get("availableThings")
    if isinstance(available_things, list) and available_things:
        segments.append(_dumps({"availableThings": available_things}))

    tags = context.get("tags")
    if isinstance(tags, list) and tags:
        segments.append(f"tags: {', '.join(map(str, tags))}")

    return "\n".join(s for s in segments if s)


def retrieve_relevant_documents(
    documents: Iterable["Document"],
    context: Mapping[str, Any],
    limit: int = DEFAULT_LIMIT,
) -> List[Dict[str, Any]]:
    """
    Score the corpus against the query context.

    Returns:
        Up to `limit` document dicts with a "score" key, scores > 0,
        descending; ties keep corpus order
    """
    corpus = list(documents)
    if not corpus:
        return []

    query_vector = build_term_frequency(tokenize(build_query(context)))
    if not query_vector:
        return []

    scored = []
    for doc in corpus:
        score = cosine_similarity(query_vector, doc.term_frequency)
        if score > 0:
            scored.append((score, doc))

    # sorted() is stable, so equal scores keep corpus order
    scored.sort(key=lambda entry: entry[0], reverse=True)
    return [{**doc.to_dict(), "score": score} for score, doc in scored[:limit]]
