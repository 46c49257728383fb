"""
Classification of queued items into knowledge.

Every queued item carries a content type; each known type maps to exactly one
handler and anything unrecognized falls into OTHER, which is acknowledged
without touching the knowledge store.
"""

import json
import logging
import re
from enum import Enum
from typing import Any, Dict, List, Tuple

from .dedup import fingerprint
from .knowledge import ExternalDataCache, KnowledgeStore
from .models import KnowledgeEntry, RawItem


logger = logging.getLogger(__name__)


class ContentType(str, Enum):
    DOCUMENTATION = "documentation"
    TUTORIAL = "tutorial"
    CURRICULUM = "curriculum"
    NEWS = "news"
    DOCUMENTATION_SECTION = "documentation_section"
    OTHER = "other"

    @classmethod
    def parse(cls, value: str) -> "ContentType":
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER


# Order matters: first match wins.
CATEGORY_RULES: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("react",), "react"),
    (("typescript", "javascript"), "javascript"),
    (("node",), "nodejs"),
    (("next",), "nextjs"),
    (("css", "tailwind"), "css"),
    (("html", "dom"), "html"),
    (("postgre", "sql"), "database"),
    (("python",), "python"),
)
DEFAULT_CATEGORY = "programming"

STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "by", "is", "are", "was", "were", "be", "been", "being", "have",
    "has", "had", "do", "does", "did", "this", "that", "these", "those", "it", "its",
})
MAX_KEYWORDS = 10
_DELIMITERS = re.compile(r"[\s\-_.,()\[\]{}]+")


def infer_category(doc: str) -> str:
    doc_lower = (doc or "").lower()
    for needles, category in CATEGORY_RULES:
        if any(needle in doc_lower for needle in needles):
            return category
    return DEFAULT_CATEGORY


def extract_keywords(*texts: str) -> List[str]:
    """Distinct lowercase tokens longer than two characters, first-seen order, at most ten."""
    combined = " ".join(t for t in texts if t).lower()
    keywords: List[str] = []
    seen = set()
    for word in _DELIMITERS.split(combined):
        if len(word) <= 2 or word in STOP_WORDS or word in seen:
            continue
        seen.add(word)
        keywords.append(word)
        if len(keywords) == MAX_KEYWORDS:
            break
    return keywords


class Classifier:
    """Turns one RawItem into a knowledge write (or a cache write) and an outcome."""

    def __init__(self, knowledge: KnowledgeStore, external: ExternalDataCache):
        self.knowledge = knowledge
        self.external = external
        self._handlers = {
            ContentType.DOCUMENTATION: self._documentation,
            ContentType.TUTORIAL: self._tutorial,
            ContentType.CURRICULUM: self._tutorial,
            ContentType.NEWS: self._news,
            ContentType.DOCUMENTATION_SECTION: self._documentation_section,
            ContentType.OTHER: self._other,
        }

    async def classify(self, item: RawItem) -> Dict[str, Any]:
        """Dispatch by content type; errors propagate to the caller's per-item handler."""
        content_type = ContentType.parse(item.content_type)
        if content_type is ContentType.OTHER:
            return await self._other(item.source, item.content_type, {})
        content = json.loads(item.raw_content)
        if not isinstance(content, dict):
            raise ValueError(f"Expected a JSON object for {content_type.value}, got {type(content).__name__}")
        return await self._handlers[content_type](item.source, item.content_type, content)

    async def _documentation(self, source: str, content_type: str, content: Dict[str, Any]) -> Dict[str, Any]:
        doc = content.get("doc") or content.get("section") or ""
        title = content.get("title") or content.get("slug") or ""
        kind = content.get("type") or "reference"
        url = content.get("url")
        category = infer_category(doc)

        await self.knowledge.upsert(KnowledgeEntry(
            category=category,
            topic=f"{source}:{doc}:{title}",
            question=f"How to use {title} in {doc}?",
            answer=f"Documentation reference for {title} ({kind}) in {doc}. See: {url}",
            short_answer=f"{title} - {kind}",
            source=source,
            source_url=url,
            confidence_score=0.9,
            keywords=extract_keywords(title, kind),
        ))
        return {"action": "knowledge_created", "category": category, "topic": title}

    async def _tutorial(self, source: str, content_type: str, content: Dict[str, Any]) -> Dict[str, Any]:
        name = content.get("name") or content.get("section") or ""
        curriculum = content.get("curriculum") or content.get("name") or ""
        section = content.get("section") or ""
        url = content.get("url")

        await self.knowledge.upsert(KnowledgeEntry(
            category="tutorials",
            topic=f"{source}:{curriculum}:{section}",
            question=f"What is taught in {name}?",
            answer=f"Tutorial from {source}: {name}. Type: {content.get('type')}. See: {url}",
            short_answer=name or "Tutorial",
            source=source,
            source_url=url,
            confidence_score=0.85,
            keywords=extract_keywords(name, content.get("curriculum") or ""),
        ))
        return {"action": "tutorial_indexed", "curriculum": curriculum}

    async def _documentation_section(self, source: str, content_type: str, content: Dict[str, Any]) -> Dict[str, Any]:
        section = content.get("section") or ""
        url = content.get("url")

        await self.knowledge.upsert(KnowledgeEntry(
            category=infer_category(section),
            topic=f"{source}:section:{section}",
            question=f"Where is the {section} documentation?",
            answer=f"Documentation section {section} from {source}. See: {url}",
            short_answer=section,
            source=source,
            source_url=url,
            confidence_score=0.8,
            keywords=extract_keywords(section),
        ))
        return {"action": "section_logged", "section": section}

    async def _news(self, source: str, content_type: str, content: Dict[str, Any]) -> Dict[str, Any]:
        item_key = str(content.get("id") or fingerprint(json.dumps(content, sort_keys=True)))
        await self.external.put(source, "news", item_key, content)
        return {"action": "news_stored", "title": content.get("title")}

    async def _other(self, source: str, content_type: str, content: Dict[str, Any]) -> Dict[str, Any]:
        return {"action": "stored", "type": content_type}
