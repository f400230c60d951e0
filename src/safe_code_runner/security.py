"""Best-effort denylist applied to submitted source before anything is spawned.

The filter matches regular expressions against raw text. It does not parse the
program, so string concatenation, aliasing or encoding tricks bypass it
trivially. Treat it as a deterrent that catches obvious misuse early, not as a
security boundary; process isolation and limits are what actually bound a run.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Mapping

ADVISORY_NOTE = "This check is an advisory filter, not a security guarantee."


@dataclass(frozen=True, slots=True)
class SecurityRule:
    """One denylisted construct and the reason reported when it matches.

    Example:
        ```python
        rule = SecurityRule.build(r"\\bProcessBuilder\\b", "process spawning via ProcessBuilder")
        ```
    """

    pattern: re.Pattern[str]
    construct: str

    @classmethod
    def build(cls, pattern: str, construct: str, *, ignore_case: bool = False) -> "SecurityRule":
        """Compile a rule from a pattern string.

        Example:
            ```python
            rule = SecurityRule.build(r"\\beval\\s*\\(", "dynamic code evaluation via eval()")
            ```
        """
        flags = re.MULTILINE | (re.IGNORECASE if ignore_case else 0)
        return cls(re.compile(pattern, flags), construct)


@dataclass(frozen=True, slots=True)
class FilterVerdict:
    """Result of a filter check: allowed, or rejected with a reason.

    Example:
        ```python
        verdict = FilterVerdict(allowed=False, reason="...", construct="eval()")
        ```
    """

    allowed: bool
    reason: str | None = None
    construct: str | None = None


_R = SecurityRule.build

DEFAULT_RULES: Mapping[str, tuple[SecurityRule, ...]] = {
    "javascript": (
        _R(r"""require\s*\(\s*['"`](?:node:)?fs(?:/promises)?['"`]\s*\)""", "filesystem access via require('fs')", ignore_case=True),
        _R(r"""require\s*\(\s*['"`](?:node:)?child_process['"`]\s*\)""", "process spawning via require('child_process')", ignore_case=True),
        _R(r"""\bfrom\s+['"`](?:node:)?(?:fs|child_process)(?:/promises)?['"`]""", "filesystem or process access via an ES module import"),
        _R(r"\bprocess\.exit\b", "process termination via process.exit", ignore_case=True),
        _R(r"\beval\s*\(", "dynamic code evaluation via eval()", ignore_case=True),
        _R(r"\bFunction\s*\(", "dynamic code evaluation via Function()"),
    ),
    "python": (
        _R(r"\b(?:import|from)\s+os\b", "operating-system access via the 'os' module"),
        _R(r"\b(?:import|from)\s+subprocess\b", "process spawning via the 'subprocess' module"),
        _R(r"\b(?:import|from)\s+sys\b", "interpreter control via the 'sys' module"),
        _R(r"\bexec\s*\(", "dynamic code evaluation via exec()"),
        _R(r"\beval\s*\(", "dynamic code evaluation via eval()"),
        _R(r"__import__", "dynamic import via __import__"),
    ),
    "java": (
        _R(r"\bRuntime\s*\.\s*getRuntime\b", "process spawning via Runtime.getRuntime"),
        _R(r"\bProcessBuilder\b", "process spawning via ProcessBuilder"),
        _R(r"\bSystem\s*\.\s*exit\b", "process termination via System.exit"),
    ),
    "cpp": (
        _R(r"#\s*include\s*<cstdlib>", "process control via <cstdlib>"),
        _R(r"\bsystem\s*\(", "shell command execution via system()"),
        _R(r"\bexec(?:l|lp|le|v|vp|vpe|ve)?\s*\(", "process replacement via exec*()"),
        _R(r"\b(?:popen|fork)\s*\(", "process spawning via popen()/fork()"),
    ),
    "c": (
        _R(r"#\s*include\s*<stdlib\.h>", "process control via <stdlib.h>"),
        _R(r"\bsystem\s*\(", "shell command execution via system()"),
        _R(r"\bexec(?:l|lp|le|v|vp|vpe|ve)?\s*\(", "process replacement via exec*()"),
        _R(r"\b(?:popen|fork)\s*\(", "process spawning via popen()/fork()"),
    ),
    "csharp": (
        _R(r"\bProcess\s*\.\s*Start\b", "process spawning via Process.Start"),
        _R(r"\bSystem\s*\.\s*Diagnostics\s*\.\s*Process\b", "process access via System.Diagnostics.Process"),
        _R(r"\bEnvironment\s*\.\s*Exit\b", "process termination via Environment.Exit"),
    ),
    "go": (
        _R(r'"os/exec"', "process spawning via os/exec"),
        _R(r"\bsyscall\s*\.\s*(?:Exec|ForkExec)\b", "process spawning via syscall"),
        _R(r"\bos\s*\.\s*Exit\b", "process termination via os.Exit"),
    ),
    "rust": (
        _R(r"\bprocess\s*::\s*Command\b", "process spawning via std::process::Command"),
        _R(r"\bprocess\s*::\s*exit\b", "process termination via std::process::exit"),
    ),
    "php": (
        _R(r"\b(?:shell_exec|exec|system|passthru|proc_open|popen|pcntl_exec)\s*\(", "shell command execution", ignore_case=True),
        _R(r"`[^`]*`", "shell command execution via backticks"),
        _R(r"\beval\s*\(", "dynamic code evaluation via eval()", ignore_case=True),
    ),
}


class SecurityFilter:
    """Reject submissions matching a per-language denylist.

    Example:
        ```python
        verdict = SecurityFilter().check("import os", "python")
        assert not verdict.allowed
        ```
    """

    def __init__(
        self,
        rules: Mapping[str, Iterable[SecurityRule]] | None = None,
        *,
        enabled: bool = True,
    ) -> None:
        """Create a filter from ordered rule lists keyed by language id.

        Example:
            ```python
            permissive = SecurityFilter(enabled=False)
            ```
        """
        source = DEFAULT_RULES if rules is None else rules
        self._rules = {language: tuple(items) for language, items in source.items()}
        self._enabled = enabled

    def rules_for(self, language_id: str) -> tuple[SecurityRule, ...]:
        """Return the ordered rules that apply to a language.

        Example:
            ```python
            rules = SecurityFilter().rules_for("java")
            ```
        """
        return self._rules.get(language_id.strip().lower(), ())

    def check(self, source_code: str, language_id: str) -> FilterVerdict:
        """Return the first rule violation, or an allowed verdict.

        Example:
            ```python
            verdict = SecurityFilter().check("System.exit(0);", "java")
            ```
        """
        if not self._enabled:
            return FilterVerdict(allowed=True)
        for rule in self.rules_for(language_id):
            if rule.pattern.search(source_code):
                reason = (
                    f"Potentially dangerous code detected: {rule.construct}. {ADVISORY_NOTE}"
                )
                return FilterVerdict(allowed=False, reason=reason, construct=rule.construct)
        return FilterVerdict(allowed=True)
