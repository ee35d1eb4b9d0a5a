"""Content safety filter applied to generated answers before delivery.

The filter is deterministic and synchronous:
- redacts personal identifiers the user did not share themselves
- drops lines that leak the assistant's instructions
- masks configured blocked terms
- converts Markdown emphasis and headings to WhatsApp formatting
"""

from __future__ import annotations

import re
from typing import Iterable, List, Pattern, Tuple

import structlog

logger = structlog.get_logger(__name__)

REDACTED = "[removido]"

PII_PATTERNS: List[Tuple[str, Pattern[str]]] = [
    ("email", re.compile(r"\b[\w.+-]+@[\w-]+\.[\w.-]+\b")),
    ("cpf", re.compile(r"\b\d{3}\.\d{3}\.\d{3}-\d{2}\b")),
    ("card", re.compile(r"\b(?:\d[ -]?){13,16}\b")),
    ("phone", re.compile(r"(?<![\w+])\+?\d{2}[\s-]?\(?\d{2}\)?[\s-]?\d{4,5}[\s-]?\d{4}\b")),
]

LEAK_PATTERNS: List[Pattern[str]] = [
    re.compile(r"(?i)\b(system prompt|my instructions|as an ai language model)\b"),
    re.compile(r"(?i)^\s*(context|contexto)\s*:\s*\[\d+\]"),
]

MARKDOWN_BOLD = re.compile(r"\*\*([^*\n]+?)\*\*")
MARKDOWN_HEADING = re.compile(r"^\s{0,3}#{1,6}\s+(.+)$", re.MULTILINE)


def _normalize(text: str) -> str:
    return re.sub(r"\D", "", text)


class GuardrailService:
    """Sanitizes an answer relative to the message that prompted it."""

    def __init__(self, blocked_terms: Iterable[str] = ()):
        self.blocked_terms = [term for term in blocked_terms if term]

    def filter(self, answer: str, original_text: str) -> str:
        """Return the answer with unsafe content removed or masked."""
        if not answer:
            return ""

        findings: List[str] = []
        filtered = self._drop_leaked_lines(answer, findings)
        filtered = self._redact_pii(filtered, original_text, findings)
        filtered = self._mask_blocked_terms(filtered, findings)
        filtered = self._to_whatsapp_format(filtered)

        if findings:
            logger.info(
                "Guardrails modified answer",
                findings=findings,
                original_length=len(answer),
                filtered_length=len(filtered),
            )
        return filtered

    @staticmethod
    def _drop_leaked_lines(text: str, findings: List[str]) -> str:
        kept = []
        for line in text.splitlines():
            if any(pattern.search(line) for pattern in LEAK_PATTERNS):
                findings.append("instruction_leak")
                continue
            kept.append(line)
        return "\n".join(kept)

    @staticmethod
    def _redact_pii(text: str, original_text: str, findings: List[str]) -> str:
        # Identifiers the user typed themselves may be echoed back
        shared = original_text or ""
        shared_digits = _normalize(shared)

        def replace(kind: str):
            def _sub(match: re.Match) -> str:
                value = match.group(0)
                if value in shared:
                    return value
                digits = _normalize(value)
                if digits and digits in shared_digits:
                    return value
                findings.append(kind)
                return REDACTED
            return _sub

        for kind, pattern in PII_PATTERNS:
            text = pattern.sub(replace(kind), text)
        return text

    def _mask_blocked_terms(self, text: str, findings: List[str]) -> str:
        for term in self.blocked_terms:
            pattern = re.compile(rf"\b{re.escape(term)}\b", re.IGNORECASE)
            text, count = pattern.subn("*" * len(term), text)
            if count:
                findings.append("blocked_term")
        return text

    @staticmethod
    def _to_whatsapp_format(text: str) -> str:
        text = MARKDOWN_HEADING.sub(r"*\1*", text)
        text = MARKDOWN_BOLD.sub(r"*\1*", text)
        text = re.sub(r"\n{3,}", "\n\n", text)
        return text.strip()
