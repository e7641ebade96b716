"""Result classification for build and flash process exits.

Toolchain diagnostic text changes independently of this package, so the
mapping from output to error category is an ordered table of
(pattern, category) rules rather than control flow. The first matching rule
wins; unmatched non-zero exits fall back to the table's generic category.
"""

import re
from dataclasses import dataclass
from typing import Iterable, Optional, Pattern

from fwflash.orchestrator.messages import ErrorType


@dataclass(frozen=True)
class ClassificationRule:
    """One (pattern, category) entry of a classification table."""

    pattern: Pattern[str]
    error_type: ErrorType

    @classmethod
    def of(cls, pattern: str, error_type: ErrorType) -> "ClassificationRule":
        return cls(re.compile(pattern, re.IGNORECASE | re.MULTILINE), error_type)


BUILD_RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule.of(
        r"toolchain (?:was )?not (?:found|installed)"
        r"|(?:pio|platformio|python3?|git): (?:command )?not found"
        r"|is not recognized as an internal or external command"
        r"|Unknown development platform"
        r"|PlatformIO Core is not installed",
        ErrorType.TOOLCHAIN_MISSING,
    ),
    ClassificationRule.of(
        r"UnknownPackageError"
        r"|Could not find a version that satisfies the requirement"
        r"|No matching distribution found"
        r"|Library Manager: .*(?:not found|could not)"
        r"|Could not (?:resolve|install) (?:package|dependenc)"
        r"|ModuleNotFoundError"
        r"|dependency resolution failed",
        ErrorType.DEPENDENCY_RESOLUTION_FAILED,
    ),
    ClassificationRule.of(
        r"\berror:"
        r"|\*\*\* \[.+\] Error \d+"
        r"|compilation terminated"
        r"|undefined reference to"
        r"|collect2: error",
        ErrorType.COMPILATION_FAILED,
    ),
)

FLASH_RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule.of(
        r"device not found"
        r"|no (?:serial )?(?:device|port)s? (?:was |were )?found"
        r"|could not open port"
        r"|could not find (?:a )?(?:serial )?(?:port|device)"
        r"|please specify .*upload_port"
        r"|No such file or directory: '/dev/",
        ErrorType.DEVICE_NOT_FOUND,
    ),
    ClassificationRule.of(
        r"permission denied|access is denied|PermissionError",
        ErrorType.FLASH_PERMISSION_DENIED,
    ),
    ClassificationRule.of(
        r"timed? ?out"
        r"|Failed to connect to"
        r"|Invalid head of packet"
        r"|stk500\w*\(\): .*not in sync"
        r"|A fatal error occurred"
        r"|protocol error",
        ErrorType.FLASH_PROTOCOL_ERROR,
    ),
)


class ResultClassifier:
    """Maps exit codes and diagnostic text to an error category."""

    def __init__(self, rules: Iterable[ClassificationRule], fallback: ErrorType):
        """Initialize classifier.

        Args:
            rules: Ordered rules, first match wins
            fallback: Category for unmatched non-zero exits
        """
        self.rules = tuple(rules)
        self.fallback = fallback

    @classmethod
    def for_build(cls, extra_rules: Iterable[ClassificationRule] = ()) -> "ResultClassifier":
        """Classifier for the build stage; extra rules take precedence."""
        return cls((*extra_rules, *BUILD_RULES), ErrorType.UNKNOWN_BUILD_ERROR)

    @classmethod
    def for_flash(cls, extra_rules: Iterable[ClassificationRule] = ()) -> "ResultClassifier":
        """Classifier for the flash stage; extra rules take precedence."""
        return cls((*extra_rules, *FLASH_RULES), ErrorType.UNKNOWN_FLASH_ERROR)

    def classify(self, exit_code: int, diagnostic_tail: str) -> Optional[ErrorType]:
        """Classify a process exit.

        Args:
            exit_code: Process exit code
            diagnostic_tail: Last lines of captured output

        Returns:
            None on success (exit code 0), otherwise an ErrorType
        """
        if exit_code == 0:
            return None
        for rule in self.rules:
            if rule.pattern.search(diagnostic_tail):
                return rule.error_type
        return self.fallback
