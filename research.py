"""
Research pipeline: topic -> grounded facts, an image prompt and citations.

The backend is asked to answer in a two-section template::

    FACTS:
    - ...
    IMAGE_PROMPT:
    ...

Parsing never fails; a reply without an ``IMAGE_PROMPT:`` section falls
back to a prompt assembled from the topic and the composed instructions.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Optional, Tuple

from system_prompt import FALLBACK_IMAGE_PROMPT, RESEARCH_PROMPT, compose_instructions

logger = logging.getLogger(__name__)

MAX_FACTS = 5

FACTS_RE = re.compile(r"FACTS:\s*(.*?)(?=IMAGE_PROMPT:|\Z)", re.IGNORECASE | re.DOTALL)
PROMPT_RE = re.compile(r"IMAGE_PROMPT:\s*(.*)\Z", re.IGNORECASE | re.DOTALL)
BULLET_RE = re.compile(r"^\s*[-*•]\s*")


@dataclass(frozen=True)
class Citation:
    title: str
    url: str

    def to_dict(self):
        return {"title": self.title, "url": self.url}


@dataclass(frozen=True)
class ResearchResult:
    image_prompt: str
    facts: Tuple[str, ...] = ()
    citations: Tuple[Citation, ...] = field(default_factory=tuple)

    def to_dict(self):
        return {
            "image_prompt": self.image_prompt,
            "facts": list(self.facts),
            "citations": [c.to_dict() for c in self.citations],
        }


def build_research_prompt(topic, level, style, language):
    level_instr, style_instr = compose_instructions(level, style)
    return RESEARCH_PROMPT.format(
        topic=topic,
        level_instruction=level_instr,
        style_instruction=style_instr,
        language=getattr(language, "value", language),
    )


def parse_facts(text):
    match = FACTS_RE.search(text or "")
    if not match:
        return []
    facts = []
    for line in match.group(1).strip().splitlines():
        fact = BULLET_RE.sub("", line).strip()
        if fact:
            facts.append(fact)
    return facts[:MAX_FACTS]


def parse_image_prompt(text) -> Optional[str]:
    match = PROMPT_RE.search(text or "")
    if not match:
        return None
    return match.group(1).strip() or None


def fallback_image_prompt(topic, level, style):
    level_instr, style_instr = compose_instructions(level, style)
    return FALLBACK_IMAGE_PROMPT.format(
        topic=topic, level_instruction=level_instr, style_instruction=style_instr,
    )


def extract_citations(grounding_chunks):
    """Turn grounding chunks into citations, unique by url in first-seen order.

    Map results get a ``Map: `` title prefix; chunks without both a title and
    a url are dropped.
    """
    citations = []
    seen_urls = set()
    for chunk in grounding_chunks or []:
        web = chunk.get("web") or {}
        maps = chunk.get("maps") or {}
        if web.get("uri") and web.get("title"):
            citation = Citation(title=web["title"], url=web["uri"])
        elif maps.get("uri") and maps.get("title"):
            citation = Citation(title=f"Map: {maps['title']}", url=maps["uri"])
        else:
            continue
        if citation.url in seen_urls:
            continue
        seen_urls.add(citation.url)
        citations.append(citation)
    return citations


async def lookup_location(locate, timeout):
    """Best-effort location lookup; any failure or timeout yields None."""
    if locate is None:
        return None
    try:
        return await asyncio.wait_for(locate(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Location lookup timed out after %.1fs; continuing without maps bias", timeout)
    except Exception as e:
        logger.warning("Location lookup failed (%s); continuing without maps bias", e)
    return None


async def research(backend, topic, level, style, language, locate=None, location_timeout=5.0) -> ResearchResult:
    """Research ``topic`` with search and maps grounding.

    Args:
        backend: object exposing ``generate_grounded_text(prompt, location)``
        topic: user topic
        level: audience level
        style: visual style
        language: output language
        locate: optional coroutine function returning ``(latitude, longitude)``
        location_timeout: seconds to wait for ``locate``

    Backend errors propagate to the caller.
    """
    location = await lookup_location(locate, location_timeout)
    prompt = build_research_prompt(topic, level, style, language)

    reply = await backend.generate_grounded_text(prompt, location=location)

    facts = parse_facts(reply.text)
    image_prompt = parse_image_prompt(reply.text)
    if image_prompt is None:
        logger.warning("Research reply had no IMAGE_PROMPT section; using fallback prompt")
        image_prompt = fallback_image_prompt(topic, level, style)

    citations = extract_citations(reply.grounding_chunks)
    logger.info("Research for %r: %d facts, %d citations", topic, len(facts), len(citations))
    return ResearchResult(image_prompt=image_prompt, facts=tuple(facts), citations=tuple(citations))
