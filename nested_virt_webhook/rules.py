"""
Namespace/name matching rules for VirtualMachine objects.

A rule set maps namespaces to ordered lists of regular expressions. A VM is
selected for mutation when some rule for its namespace has a pattern that
matches anywhere in the VM name (`re.search`, no implicit anchoring).

Two construction paths exist:
- `RuleSet.from_configmap_data` parses ConfigMap data (`ns: "re1, re2"`) and
  aborts on the first invalid pattern.
- `RuleSet.from_rule_configs` compiles structured rules from the config file
  and skips invalid patterns with a warning.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

logger = logging.getLogger(__name__)

_TRIM_CHARS = " \t"


class RuleCompileError(ValueError):
    """Raised when a configured pattern is not a valid regular expression."""


@dataclass(frozen=True)
class NamespaceRule:
    namespace: str
    patterns: Tuple[re.Pattern, ...]

    def matches(self, name: str) -> bool:
        return any(pattern.search(name) for pattern in self.patterns)


def split_patterns(raw: Union[str, Iterable[str], None]) -> List[str]:
    """Return trimmed, non-empty pattern strings.

    `raw` is either a comma-separated string or a list of strings. Spaces and
    tabs around each entry are removed; entries left empty are dropped. Any
    other type raises RuleCompileError.
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        items = raw.split(",")
    elif isinstance(raw, (list, tuple)):
        items = list(raw)
    else:
        raise RuleCompileError(f"patterns must be a string or a list, got {raw!r}")
    patterns: List[str] = []
    for item in items:
        pattern = str(item).strip(_TRIM_CHARS)
        if pattern:
            patterns.append(pattern)
    return patterns


def _compile(namespace: str, pattern: str) -> re.Pattern:
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise RuleCompileError(
            f"invalid regex pattern '{pattern}' for namespace '{namespace}': {exc}"
        ) from exc


class RuleSet:
    """Read-only, ordered collection of `NamespaceRule`."""

    def __init__(self, rules: Iterable[NamespaceRule] = ()) -> None:
        self._rules: Tuple[NamespaceRule, ...] = tuple(rules)

    @classmethod
    def from_configmap_data(cls, data: Optional[Mapping[str, str]]) -> "RuleSet":
        """Compile ConfigMap data, failing on the first invalid pattern."""
        if data is None:
            raise RuleCompileError("configmap data is missing")
        rules: List[NamespaceRule] = []
        for namespace, raw in data.items():
            compiled = tuple(_compile(namespace, p) for p in split_patterns(raw))
            if compiled:
                rules.append(NamespaceRule(namespace, compiled))
        return cls(rules)

    @classmethod
    def from_rule_configs(cls, configs: Optional[Iterable[Mapping[str, Any]]]) -> "RuleSet":
        """Compile structured rules, skipping invalid patterns with a warning.

        Each entry is `{"namespace": str, "patterns": [str, ...]}`; `patterns`
        may also be a comma-separated string.
        """
        rules: List[NamespaceRule] = []
        for entry in configs or ():
            namespace = str(entry.get("namespace") or "")
            compiled: List[re.Pattern] = []
            try:
                patterns = split_patterns(entry.get("patterns"))
            except RuleCompileError as exc:
                logger.warning("skipping rule for namespace %r: %s", namespace, exc)
                continue
            for pattern in patterns:
                try:
                    compiled.append(_compile(namespace, pattern))
                except RuleCompileError as exc:
                    logger.warning("skipping %s", exc)
            if namespace and compiled:
                rules.append(NamespaceRule(namespace, tuple(compiled)))
        return cls(rules)

    def extend(self, other: "RuleSet") -> "RuleSet":
        return RuleSet(self._rules + tuple(other))

    def matches(self, namespace: str, name: str) -> bool:
        for rule in self._rules:
            if rule.namespace == namespace and rule.matches(name):
                return True
        return False

    def __iter__(self) -> Iterator[NamespaceRule]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def __getitem__(self, index: int) -> NamespaceRule:
        return self._rules[index]

    def __repr__(self) -> str:
        return f"RuleSet({list(self._rules)!r})"


def matches(rules: Optional[RuleSet], namespace: str, name: str) -> bool:
    """Match helper that treats a missing rule set as matching nothing."""
    if rules is None:
        return False
    return rules.matches(namespace, name)
