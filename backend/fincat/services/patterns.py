"""Pattern semantics shared by live matching and rule previews."""

import re
from dataclasses import dataclass

import structlog

logger = structlog.get_logger()


def normalise(text: str) -> str:
    """Case-insensitive, trimmed form used for exact/contains comparisons."""
    return text.strip().lower()


def compile_regex(pattern: str) -> re.Pattern:
    """Compile a regex rule pattern. Raises ``re.error`` if invalid."""
    return re.compile(pattern, re.IGNORECASE)


@dataclass(frozen=True)
class CompiledPattern:
    pattern: str
    match_type: str
    normalised: str
    regex: re.Pattern | None = None
    valid: bool = True

    @classmethod
    def build(cls, pattern: str, match_type: str, rule_id: int | None = None) -> "CompiledPattern":
        """Precompute the matching form. An invalid regex yields a pattern that never matches."""
        if match_type != "regex":
            return cls(pattern=pattern, match_type=match_type, normalised=normalise(pattern))
        try:
            regex = compile_regex(pattern)
        except re.error as e:
            logger.warning("invalid_regex_rule", rule_id=rule_id, pattern=pattern, error=str(e))
            return cls(pattern=pattern, match_type=match_type, normalised=normalise(pattern), valid=False)
        return cls(pattern=pattern, match_type=match_type, normalised=normalise(pattern), regex=regex)

    def matches(self, description: str) -> bool:
        if not self.valid:
            return False
        if self.match_type == "exact":
            return normalise(description) == self.normalised
        if self.match_type == "contains":
            return self.normalised in normalise(description)
        if self.match_type == "regex":
            return self.regex.search(description) is not None
        return False
