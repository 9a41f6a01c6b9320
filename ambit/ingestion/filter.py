"""Pre-ingestion content filter — strip credentials, skip chat-log dumps."""

from __future__ import annotations

import logging
import re

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"

# Chat exports captured off-screen or from the clipboard
_PRIVATE_MSG_PATTERNS = [
    # WhatsApp: [10/6/25, 5:08:37 AM] Name: message
    re.compile(r"\[\d{1,2}/\d{1,2}/\d{2,4},\s+\d{1,2}:\d{2}:\d{2}\s*[AP]M\]\s+\w+"),
    re.compile(r"(?:iMessage|SMS)\s+\d{1,2}/\d{1,2}/\d{2,4}"),
    # Telegram export
    re.compile(r"\d{2}\.\d{2}\.\d{4}\s+\d{2}:\d{2}\s+-\s+\w+"),
]

_CREDENTIAL_PATTERNS = [
    re.compile(r"sk-ant-api\d+-[A-Za-z0-9_-]{20,}"),  # Anthropic keys
    re.compile(r"sk-[A-Za-z0-9]{20,}"),  # OpenAI keys
    re.compile(r"nk_[A-Za-z0-9]{20,}"),  # Nia keys
    re.compile(r"gh[pous]_[A-Za-z0-9]{36,}"),  # GitHub tokens
    re.compile(r"xox[abp]-[A-Za-z0-9-]+"),  # Slack tokens
    re.compile(r"Bearer\s+[A-Za-z0-9._-]{20,}"),
    re.compile(r"password\s*[=:]\s*[\"']?[^\s\"']{8,}", re.IGNORECASE),
    re.compile(r"AKIA[0-9A-Z]{16}"),  # AWS access keys
    re.compile(r"-----BEGIN\s[\w\s]*PRIVATE KEY-----"),
    re.compile(r"\w+://\w+:[^@\s]{3,}@[\w.-]+"),  # connection strings with passwords
]


class ContentFilter:
    """Decides what to keep, sanitize or skip before text enters the feed.

    Policy:
    - SKIP: text dominated by pasted private chat logs
    - SANITIZE: credentials, API keys and tokens in any field
    - KEEP: everything else
    """

    def __init__(self):
        self.stats = {"kept": 0, "skipped": 0, "sanitized": 0}

    def should_skip(self, text: str) -> tuple[bool, str]:
        lines = text.split("\n")
        if len(lines) <= 5:
            return False, ""
        msg_lines = sum(1 for line in lines if any(p.search(line) for p in _PRIVATE_MSG_PATTERNS))
        ratio = msg_lines / len(lines)
        if ratio > 0.2:
            return True, f"private messaging content ({ratio:.0%} of lines match)"
        if msg_lines > 10:
            return True, f"embedded private messages ({msg_lines} lines detected)"
        return False, ""

    def sanitize(self, text: str | None) -> str | None:
        if not text:
            return text
        sanitized = text
        for pattern in _CREDENTIAL_PATTERNS:
            sanitized = pattern.sub(REDACTED, sanitized)
        if sanitized != text:
            self.stats["sanitized"] += 1
        return sanitized

    def process(self, text: str, title: str = "") -> tuple[str | None, str]:
        """Skip check, then sanitize. None means drop the record."""
        skip, reason = self.should_skip(text)
        if skip:
            self.stats["skipped"] += 1
            logger.debug("Content filter SKIP: %s | title=%s", reason, title[:50])
            return None, reason
        self.stats["kept"] += 1
        return self.sanitize(text), "kept"
