"""
Content pre-filter for the newest user turn.

Runs before the model is called. Block patterns short-circuit the session with a
reframing reply; flag patterns let the request through and add a note to the system
prompt.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class PrefilterResult:
    blocked: bool
    reframe: Optional[str] = None
    flag: Optional[str] = None


BLOCK_PATTERNS: List[Tuple[re.Pattern, str]] = [
    (
        re.compile(r"rank.{0,20}(?:best|worst|top|bottom).{0,20}school", re.I),
        "I can't rank schools 'best to worst' because school quality depends on what you're looking for. "
        "I can help you find schools with high student growth, strong programs, or specific characteristics. "
        "What matters most to you?",
    ),
    (
        re.compile(r"(?:schools?|places?).{0,15}(?:to\s+)?avoid", re.I),
        "I don't identify schools to 'avoid' because that framing can harm communities. I can help you "
        "understand what different schools offer and find ones that match criteria you value. "
        "What are you looking for?",
    ),
    (
        re.compile(
            r"(?:lowest?|fewest?|least|highest?|most).{0,10}(?:percent|%|percentage).{0,10}"
            r"(?:black|white|hispanic|latino|asian|african)",
            re.I,
        ),
        "I can't filter schools by demographic percentages as that can enable discriminatory school "
        "selection. I can help you explore schools by educational characteristics: programs, growth "
        "metrics, size, location. What aspects interest you?",
    ),
    (
        re.compile(r"worst\s+school", re.I),
        "I don't label schools as 'worst.' Schools serving high-poverty communities face systemic "
        "challenges that test scores reflect. I can help you understand what factors affect outcomes or "
        "find schools with specific characteristics. What would be helpful?",
    ),
    (
        re.compile(r"(?:failing|failed)\s+school", re.I),
        "I avoid the term 'failing schools' because it can stigmatize communities facing systemic "
        "challenges. I can help you explore schools that need support and the factors affecting their "
        "outcomes. What would you like to understand?",
    ),
    (
        re.compile(r"(?:segregat|white.*neighborhood|avoid.*area)", re.I),
        "I can't help with queries that may reinforce segregation patterns. I can help you explore schools "
        "by educational programs, student growth, and other characteristics. What matters to you in a school?",
    ),
    (
        re.compile(r"(?:good|safe)\s+(?:neighborhood|area)\s+school", re.I),
        "I focus on educational characteristics rather than neighborhood perceptions, which can reflect "
        "biased assumptions. I can help you find schools with strong student growth, family satisfaction, "
        "or specific programs. What educational qualities are you looking for?",
    ),
]

FLAG_PATTERNS: List[Tuple[re.Pattern, str]] = [
    (
        re.compile(r"best\s+school", re.I),
        "Note: 'Best' depends on what you're looking for: student growth, programs, size, or location. "
        "I'll help you explore options based on specific criteria.\n\n",
    ),
    (
        re.compile(r"prove|proof|evidence\s+that", re.I),
        "Note: This data can show patterns and correlations, but cannot prove causation. "
        "I'll share what we can observe.\n\n",
    ),
    (
        re.compile(r"why\s+(?:do|does|are)\s+(?:poor|low.income|poverty)", re.I),
        "Note: Questions about poverty and school outcomes involve systemic factors. I'll share what the "
        "data shows alongside important context.\n\n",
    ),
    (
        re.compile(r"charter.*better|better.*charter", re.I),
        "Note: Charter vs. traditional public comparisons require careful context: selection effects, "
        "different resources, and data gaps make direct comparisons difficult. I'll share what we can "
        "observe.\n\n",
    ),
]


def check_prefilter(query: str) -> PrefilterResult:
    text = query or ""
    for pattern, reframe in BLOCK_PATTERNS:
        if pattern.search(text):
            return PrefilterResult(blocked=True, reframe=reframe)
    for pattern, note in FLAG_PATTERNS:
        if pattern.search(text):
            return PrefilterResult(blocked=False, flag=note)
    return PrefilterResult(blocked=False)
