"""Redaction pipeline for captured terminal output.

Terminal context leaves the machine over SMS or chat, so every capture goes
through the same ordered stages:

1. strip ANSI escape and control sequences
2. replace secret-shaped substrings with fixed labels
3. optionally drop non-ASCII characters (SMS only)
4. trim and truncate

Redaction runs after stripping so patterns see clean text, and before
truncation so a secret cut by the length limit is never partially visible.
"""

import re
from dataclasses import dataclass

TRUNCATION_MARKER = "..."

# CSI (including private mode like \x1b[?1049h), OSC (BEL or ST terminated),
# charset selection, and lone two-byte escapes.
ANSI_ESCAPE = re.compile(
    r"\x1b\[[0-?]*[ -/]*[@-~]"
    r"|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)"
    r"|\x1b[()][A-Za-z0-9]"
    r"|\x1b[@-Z\\-_]"
    r"|\x9b[0-?]*[ -/]*[@-~]"
)

# Remaining C0 controls except tab and newline, plus DEL
CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")

NON_ASCII = re.compile(r"[^\x00-\x7f]")


@dataclass(frozen=True)
class RedactionRule:
    """A secret pattern and the label that replaces every match."""

    name: str
    pattern: re.Pattern
    replacement: str


# Order matters: specific formats come before generic ones so the label
# reflects the most precise match.
REDACTION_RULES: list[RedactionRule] = [
    RedactionRule(
        "AWS Access Key ID",
        re.compile(r"AKIA[0-9A-Z]{16}"),
        "[REDACTED_AWS_KEY]",
    ),
    RedactionRule(
        "GitHub Fine-Grained Token",
        re.compile(r"github_pat_[a-zA-Z0-9]{20,}_[a-zA-Z0-9]{40,}"),
        "[REDACTED_GITHUB_TOKEN]",
    ),
    RedactionRule(
        "GitHub Personal Access Token",
        re.compile(r"ghp_[a-zA-Z0-9]{32,}"),
        "[REDACTED_GITHUB_TOKEN]",
    ),
    RedactionRule(
        "GitHub OAuth Token",
        re.compile(r"gho_[a-zA-Z0-9]{32,}"),
        "[REDACTED_GITHUB_TOKEN]",
    ),
    RedactionRule(
        "OpenAI API Key",
        re.compile(r"sk-[a-zA-Z0-9]{20}T3BlbkFJ[a-zA-Z0-9]{20}"),
        "[REDACTED_OPENAI_KEY]",
    ),
    RedactionRule(
        "OpenAI Project Key",
        re.compile(r"sk-proj-[a-zA-Z0-9_-]{40,}"),
        "[REDACTED_OPENAI_KEY]",
    ),
    RedactionRule(
        "JWT Token",
        re.compile(
            r"eyJ[a-zA-Z0-9_-]{10,}\.eyJ[a-zA-Z0-9_-]{10,}\.[a-zA-Z0-9_-]{10,}"
        ),
        "[REDACTED_JWT]",
    ),
    RedactionRule(
        "Private Key Block",
        re.compile(
            r"-----BEGIN (?:RSA |EC |DSA |OPENSSH )?PRIVATE KEY-----"
            r".*?"
            r"-----END (?:RSA |EC |DSA |OPENSSH )?PRIVATE KEY-----",
            re.DOTALL,
        ),
        "[REDACTED_PRIVATE_KEY]",
    ),
    RedactionRule(
        "API Key Assignment",
        re.compile(
            r"(?:api[_-]?key|apikey)\s*[:=]\s*['\"][a-zA-Z0-9]{20,}['\"]",
            re.IGNORECASE,
        ),
        "[REDACTED_API_KEY]",
    ),
    RedactionRule(
        "Secret Assignment",
        re.compile(
            r"(?:secret|secret[_-]?key)\s*[:=]\s*['\"][a-zA-Z0-9]{20,}['\"]",
            re.IGNORECASE,
        ),
        "[REDACTED_SECRET]",
    ),
    RedactionRule(
        "Password Assignment",
        re.compile(
            r"(?:password|passwd|pwd)\s*[:=]\s*['\"][^\s'\"]{8,}['\"]",
            re.IGNORECASE,
        ),
        "[REDACTED_PASSWORD]",
    ),
    RedactionRule(
        "Token Assignment",
        re.compile(
            r"(?:token|auth[_-]?token|access[_-]?token)\s*[:=]\s*"
            r"['\"][a-zA-Z0-9_-]{20,}['\"]",
            re.IGNORECASE,
        ),
        "[REDACTED_TOKEN]",
    ),
    # Catch-all for Anthropic, Stripe, etc. after the OpenAI formats
    RedactionRule(
        "Generic sk- Key",
        re.compile(r"sk-[a-zA-Z0-9]{32,}"),
        "[REDACTED_API_KEY]",
    ),
]


def strip_ansi(text: str) -> str:
    """Remove terminal escape sequences and stray control characters."""
    text = ANSI_ESCAPE.sub("", text)
    return CONTROL_CHARS.sub("", text)


def redact_secrets(
    text: str, rules: list[RedactionRule] | None = None
) -> str:
    """Replace every secret-shaped substring with its rule's label.

    Args:
        text: Text already stripped of escape sequences.
        rules: Ordered rules to apply. Defaults to REDACTION_RULES.

    Returns:
        Text with all matches of all rules replaced.
    """
    for rule in rules if rules is not None else REDACTION_RULES:
        text = rule.pattern.sub(rule.replacement, text)
    return text


def strip_non_ascii(text: str) -> str:
    """Drop characters outside ASCII (keeps SMS in the cheap encoding)."""
    return NON_ASCII.sub("", text)


def truncate(text: str, max_chars: int) -> str:
    """Cut text to max_chars and append the truncation marker if cut."""
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + TRUNCATION_MARKER


def format_for_channel(
    text: str,
    max_chars: int = 4000,
    ascii_only: bool = False,
) -> str:
    """Run the full pipeline over captured terminal output.

    Args:
        text: Raw pane capture.
        max_chars: Maximum length before the truncation marker.
        ascii_only: Strip non-ASCII characters (SMS).

    Returns:
        Message-ready text: no escape codes, no secrets, bounded length.
    """
    cleaned = strip_ansi(text)
    cleaned = redact_secrets(cleaned)
    if ascii_only:
        cleaned = strip_non_ascii(cleaned)
    cleaned = cleaned.strip()
    return truncate(cleaned, max_chars)
