"""
Input validation for work items (domains) and credentials.

Invalid entries are reported, not fatal: the caller keeps the valid subset
and decides whether an empty result is an error.
"""

import re
from typing import List, Optional, Sequence, Tuple


# RFC 1035/1123 host name made of dot-separated labels and an alphabetic TLD
DOMAIN_PATTERN = re.compile(r"^([a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?\.)+[a-zA-Z]{2,}$")

# VirusTotal style keys: 64 hexadecimal characters
HEX64_KEY_PATTERN = r"^[a-fA-F0-9]{64}$"

MAX_DOMAIN_LENGTH = 253


class ValidationError(ValueError):
    """Raised for a single invalid domain or credential"""
    pass


def mask_credential(credential: str) -> str:
    """Show only the last four characters of a credential"""
    if len(credential) <= 4:
        return "****"
    return credential[-4:]


def validate_domain(domain: str) -> str:
    """
    Validate a domain name.

    Returns:
        The stripped domain

    Raises:
        ValidationError: If the domain is empty, too long or malformed
    """
    domain = domain.strip()
    if not domain:
        raise ValidationError("domain cannot be empty")

    if len(domain) > MAX_DOMAIN_LENGTH:
        raise ValidationError(f"domain too long (max {MAX_DOMAIN_LENGTH} characters): {domain}")

    if ".." in domain:
        raise ValidationError(f"invalid domain (consecutive dots): {domain}")

    if not DOMAIN_PATTERN.match(domain):
        raise ValidationError(f"invalid domain format: {domain}")

    return domain


def validate_credential(credential: str, pattern: Optional[str] = None) -> str:
    """
    Validate a credential.

    Args:
        credential: Raw credential string
        pattern: Optional regex the credential must fully match

    Returns:
        The stripped credential
    """
    credential = credential.strip()
    if not credential:
        raise ValidationError("API key cannot be empty")

    if any(ch.isspace() for ch in credential):
        raise ValidationError("API key must not contain whitespace")

    if pattern and not re.fullmatch(pattern, credential):
        raise ValidationError(f"invalid API key format (expected {pattern})")

    return credential


def validate_domains(domains: Sequence[str]) -> Tuple[List[str], List[str]]:
    """
    Validate many domains.

    Returns:
        (valid domains, error messages)
    """
    valid, errors = [], []
    for domain in domains:
        try:
            valid.append(validate_domain(domain))
        except ValidationError as e:
            errors.append(f"domain '{domain}': {e}")
    return valid, errors


def validate_credentials(
    credentials: Sequence[str],
    pattern: Optional[str] = None,
) -> Tuple[List[str], List[str]]:
    """
    Validate many credentials, dropping repeats but keeping first-seen order.

    Error messages never include the credential itself, only its masked tail.

    Returns:
        (valid credentials, error messages)
    """
    valid, errors = [], []
    seen = set()
    for credential in credentials:
        try:
            credential = validate_credential(credential, pattern)
        except ValidationError as e:
            errors.append(f"API key (***{mask_credential(credential.strip())}): {e}")
            continue

        if credential in seen:
            errors.append(f"API key (***{mask_credential(credential)}): duplicate")
            continue

        seen.add(credential)
        valid.append(credential)
    return valid, errors
