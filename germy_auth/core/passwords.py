"""
Password Policy

Scores and validates candidate passwords against a fixed rule set, and
hashes/verifies them with bcrypt.

Each rule contributes independently to a 0-100 strength score. Acceptance
depends only on the error list; the score is advisory.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import bcrypt


COMMON_PASSWORDS = frozenset({
    "password", "123456", "123456789", "qwerty", "abc123", "password123",
    "admin", "letmein", "welcome", "monkey", "1234567890", "password1",
    "qwerty123", "dragon", "master", "hello", "freedom", "whatever",
    "qazwsx", "trustno1", "654321", "jordan23", "harley", "shadow",
    "superman", "qwertyuiop", "michael", "football", "jesus", "ninja",
    "mustang", "123123", "adobe123", "admin123", "root", "toor", "pass",
    "test", "guest", "user", "login", "welcome123",
})

KEYBOARD_PATTERNS = (
    "qwerty", "asdf", "zxcv", "qwertyuiop", "asdfghjkl", "zxcvbnm",
    "123456789", "abcdefghij", "qwertyuiopasdfghjklzxcvbnm",
)

PERSONAL_INFO_PATTERNS = (
    re.compile(r"(19|20)\d{2}"),
    re.compile(r"(0[1-9]|1[0-2])(0[1-9]|[12]\d|3[01])"),
    re.compile(
        r"(january|february|march|april|may|june|july|august|september"
        r"|october|november|december)",
        re.IGNORECASE,
    ),
    re.compile(r"(monday|tuesday|wednesday|thursday|friday|saturday|sunday)", re.IGNORECASE),
    re.compile(r"(admin|administrator|root|user|guest|test)", re.IGNORECASE),
)

SPECIAL_CHARS = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")

MIN_LENGTH = 8
MAX_LENGTH = 128
MAX_CONSECUTIVE_CHARS = 3
MAX_REPEATED_CHARS = 2
WEAK_SCORE = 60

# (upper bound exclusive, label); the last label covers the rest
STRENGTH_LABELS: Tuple[Tuple[int, str], ...] = (
    (20, "very-weak"),
    (40, "weak"),
    (60, "fair"),
    (80, "good"),
    (95, "strong"),
    (101, "very-strong"),
)


@dataclass(frozen=True)
class PasswordValidation:
    valid: bool
    score: int
    errors: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)


class PasswordPolicyEngine:
    """Deterministic password policy. Holds no mutable state."""

    def validate(self, password: Optional[str]) -> PasswordValidation:
        """
        Validate a password against every rule.

        Args:
            password: Candidate password

        Returns:
            Validity, strength score (0-100), errors and suggestions
        """
        if not password or not isinstance(password, str):
            return PasswordValidation(
                valid=False,
                score=0,
                errors=["Password is required"],
                suggestions=["Please provide a password"],
            )

        errors: List[str] = []
        suggestions: List[str] = []
        score = 0

        if len(password) < MIN_LENGTH:
            errors.append(f"Password must be at least {MIN_LENGTH} characters long")
            suggestions.append(f"Add {MIN_LENGTH - len(password)} more characters")
        elif len(password) > MAX_LENGTH:
            errors.append(f"Password must be no more than {MAX_LENGTH} characters long")
            suggestions.append("Use a shorter password")
        else:
            score += 20

        if password.lower() in COMMON_PASSWORDS:
            errors.append("Password is too common and easily guessable")
            suggestions.append("Use a unique password that is not commonly used")
        else:
            score += 15

        if not re.search(r"[A-Z]", password):
            errors.append("Password must contain at least one uppercase letter")
            suggestions.append("Add an uppercase letter (A-Z)")
        else:
            score += 10

        if not re.search(r"[a-z]", password):
            errors.append("Password must contain at least one lowercase letter")
            suggestions.append("Add a lowercase letter (a-z)")
        else:
            score += 10

        if not re.search(r"[0-9]", password):
            errors.append("Password must contain at least one number")
            suggestions.append("Add a number (0-9)")
        else:
            score += 10

        if not SPECIAL_CHARS.search(password):
            errors.append("Password must contain at least one special character")
            suggestions.append("Add a special character (!@#$%^&*()_+-=[]{}|;:,.<>?)")
        else:
            score += 15

        if has_consecutive_characters(password):
            errors.append(
                f"Password cannot contain more than {MAX_CONSECUTIVE_CHARS} consecutive characters"
            )
            suggestions.append('Avoid sequences like "abcd" or "1234"')
        else:
            score += 10

        if has_repeated_characters(password):
            errors.append(
                f"Password cannot contain more than {MAX_REPEATED_CHARS} repeated characters"
            )
            suggestions.append('Avoid repeated characters like "aaa" or "111"')
        else:
            score += 10

        if has_keyboard_pattern(password):
            errors.append("Password contains common keyboard patterns")
            suggestions.append('Avoid patterns like "qwerty" or "asdf"')
        else:
            score += 10

        if has_personal_info_pattern(password):
            errors.append("Password appears to contain personal information")
            suggestions.append("Avoid using names, dates, or personal information")
        else:
            score += 10

        score = min(score, 100)
        if score < WEAK_SCORE:
            suggestions.append("Consider using a passphrase with multiple words")
            suggestions.append("Mix different types of characters for better security")

        return PasswordValidation(
            valid=not errors,
            score=score,
            errors=errors,
            suggestions=suggestions,
        )

    def strength(self, password: Optional[str]) -> str:
        """Human-readable strength label for the password's score."""
        score = self.validate(password).score
        for bound, label in STRENGTH_LABELS:
            if score < bound:
                return label
        return STRENGTH_LABELS[-1][1]


def has_consecutive_characters(password: str) -> bool:
    """True if any run of MAX_CONSECUTIVE_CHARS + 1 code points ascends by one."""
    run = MAX_CONSECUTIVE_CHARS + 1
    for i in range(len(password) - run + 1):
        window = password[i:i + run]
        if all(ord(window[j]) == ord(window[j - 1]) + 1 for j in range(1, run)):
            return True
    return False


def has_repeated_characters(password: str) -> bool:
    """True if a character appears more than MAX_REPEATED_CHARS times in a row."""
    count = 1
    for prev, curr in zip(password, password[1:]):
        count = count + 1 if curr == prev else 1
        if count > MAX_REPEATED_CHARS:
            return True
    return False


def has_keyboard_pattern(password: str) -> bool:
    lowered = password.lower()
    return any(pattern in lowered for pattern in KEYBOARD_PATTERNS)


def has_personal_info_pattern(password: str) -> bool:
    return any(pattern.search(password) for pattern in PERSONAL_INFO_PATTERNS)


# ============================================================
# Hashing
# ============================================================


# bcrypt only reads the first 72 bytes of its input
BCRYPT_MAX_BYTES = 72


def hash_password(password: str, rounds: int = 12) -> str:
    """Hash a password with bcrypt."""
    secret = password.encode()[:BCRYPT_MAX_BYTES]
    return bcrypt.hashpw(secret, bcrypt.gensalt(rounds=rounds)).decode()


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    """Check a password against a bcrypt hash. Malformed hashes never match."""
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode()[:BCRYPT_MAX_BYTES], password_hash.encode())
    except ValueError:
        return False
