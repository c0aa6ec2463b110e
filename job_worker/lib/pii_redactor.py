"""PII redaction for log output.

Email jobs carry addresses and names; they must not reach the logs in
plaintext.
"""

import re
from typing import Optional


class PIIRedactor:
    """Redact PII from text before logging."""

    PATTERNS = {
        'email': r'\b[\w.+-]+@[\w.-]+\.\w{2,}\b',
        'phone_intl': r'\+\d{1,3}\s?[\d\s/()-]{6,}\d',
        'credit_card': r'\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b',
    }

    # Query-string secrets such as unsubscribe or reset tokens
    TOKEN_PATTERN = r'([?&](?:token|password|temp_password)=)[^&\s]+'

    @classmethod
    def redact(cls, text: Optional[str]) -> str:
        """
        Redact PII from text.

        Returns:
            Text with PII replaced by [TYPE_REDACTED]
        """
        if not text:
            return ""

        result = text
        for name, pattern in cls.PATTERNS.items():
            result = re.sub(pattern, f'[{name.upper()}_REDACTED]', result, flags=re.IGNORECASE)
        result = re.sub(cls.TOKEN_PATTERN, r'\1[TOKEN_REDACTED]', result, flags=re.IGNORECASE)
        return result

    @classmethod
    def contains_pii(cls, text: Optional[str]) -> bool:
        """Check if text contains any PII patterns."""
        if not text:
            return False

        for pattern in cls.PATTERNS.values():
            if re.search(pattern, text, re.IGNORECASE):
                return True
        return False
