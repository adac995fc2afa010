"""
Domain validation and normalization module.

Configured domain names are normalized to their canonical form (lowercase,
IDNA-encoded, no trailing dot) before they are used as DNS query names,
TLS SNI values and state store keys.
"""

import re
from dataclasses import dataclass
from typing import Optional

import idna

from dns_monitor.enums import DomainValidationErrorCode
from dns_monitor.exceptions import ValidationError


# Characters that never appear in a host name, checked before IDNA encoding
FORBIDDEN_CHARS_PATTERN = re.compile(
    r'[\x00-\x1f\x7f'           # Control characters
    r'\s'                        # Whitespace
    r'!@#$%^&*()+=\[\]{}|\\:;"\'<>,?/`~]'  # Special symbols not allowed
)

LDH_LABEL_PATTERN = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$")

MAX_DOMAIN_LENGTH = 253


@dataclass
class DomainValidationError:
    """Structured error information for domain validation failures."""

    code: DomainValidationErrorCode
    message: str
    details: dict


@dataclass
class DomainValidationResult:
    """Result of domain validation operation."""

    valid: bool
    canonical_domain: Optional[str]
    error: Optional[DomainValidationError]


class DomainValidator:
    """
    Validates and normalizes monitored domain names.

    Handles:
    - Conversion to lowercase canonical form
    - IDNA encoding for international characters
    - Rejection of forbidden characters
    - Label syntax (letters, digits, hyphen; 1-63 octets; at least two labels)
    """

    def validate(self, raw_domain: str) -> DomainValidationResult:
        """
        Validate and normalize a domain string.

        Args:
            raw_domain: The raw domain string to validate

        Returns:
            DomainValidationResult with validation status and canonical form or error
        """
        if not raw_domain or not raw_domain.strip():
            return self._failure(
                DomainValidationErrorCode.EMPTY_INPUT,
                "Domain input is empty",
                {"raw_input": raw_domain},
            )

        domain = raw_domain.strip().rstrip(".")

        if FORBIDDEN_CHARS_PATTERN.search(domain):
            return self._failure(
                DomainValidationErrorCode.FORBIDDEN_CHARS,
                "Domain contains forbidden characters",
                {
                    "raw_input": raw_domain,
                    "forbidden_chars": FORBIDDEN_CHARS_PATTERN.findall(domain),
                },
            )

        try:
            canonical = self.normalize_to_canonical(domain)
        except ValidationError as e:
            return self._failure(
                DomainValidationErrorCode.IDNA_ERROR, str(e.message), e.details
            )

        labels = canonical.split(".")
        if len(labels) < 2 or len(canonical) > MAX_DOMAIN_LENGTH:
            return self._failure(
                DomainValidationErrorCode.INVALID_LABEL,
                "Domain must have at least two labels and at most 253 characters",
                {"raw_input": raw_domain, "canonical": canonical},
            )

        bad_labels = [label for label in labels if not LDH_LABEL_PATTERN.match(label)]
        if bad_labels:
            return self._failure(
                DomainValidationErrorCode.INVALID_LABEL,
                "Domain contains invalid labels",
                {"raw_input": raw_domain, "invalid_labels": bad_labels},
            )

        return DomainValidationResult(valid=True, canonical_domain=canonical, error=None)

    def canonicalize(self, raw_domain: str) -> str:
        """
        Validate a domain and return its canonical form.

        Raises:
            ValidationError: If the domain is not valid
        """
        result = self.validate(raw_domain)
        if not result.valid:
            raise ValidationError(
                code=result.error.code.value,
                message=result.error.message,
                details=result.error.details,
            )
        return result.canonical_domain

    def normalize_to_canonical(self, domain: str) -> str:
        """
        Convert domain to canonical form (lowercase, IDNA-encoded).

        Raises:
            ValidationError: If IDNA encoding fails
        """
        domain_lower = domain.lower()

        if not any(ord(c) > 127 for c in domain_lower):
            return domain_lower

        try:
            return idna.encode(domain_lower, uts46=True).decode("ascii")
        except idna.IDNAError as e:
            raise ValidationError(
                code=DomainValidationErrorCode.IDNA_ERROR.value,
                message=f"IDNA encoding failed: {e}",
                details={"domain": domain, "idna_error": str(e)},
            )

    @staticmethod
    def _failure(
        code: DomainValidationErrorCode, message: str, details: dict
    ) -> DomainValidationResult:
        return DomainValidationResult(
            valid=False,
            canonical_domain=None,
            error=DomainValidationError(code=code, message=message, details=details),
        )
