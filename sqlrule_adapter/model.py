"""A small in-memory policy model that adapters load into and save from."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field


@dataclass
class Assertion:
    """The policy lines stored under one policy type."""

    key: str
    policy: list[list[str]] = field(default_factory=list)


class Model(dict):
    """Sections ("p", "g", ...) mapping each policy type to its Assertion."""

    def add_def(self, sec: str, ptype: str) -> Assertion:
        """Declare a policy type in a section and return its assertion."""
        return self.setdefault(sec, {}).setdefault(ptype, Assertion(ptype))

    def add_policy(self, sec: str, ptype: str, rule: Sequence[str]) -> None:
        """Append a rule to a declared policy type."""
        try:
            assertion = self[sec][ptype]
        except KeyError:
            raise KeyError(f"policy type {ptype!r} is not defined in section {sec!r}") from None
        assertion.policy.append(list(rule))

    def get_policy(self, sec: str, ptype: str) -> list[list[str]]:
        """A copy of the rules under a policy type; empty if it is not declared."""
        assertion = self.get(sec, {}).get(ptype)
        if assertion is None:
            return []
        return [list(rule) for rule in assertion.policy]

    def clear_policy(self) -> None:
        """Remove every rule while keeping the declared policy types."""
        for assertions in self.values():
            for assertion in assertions.values():
                assertion.policy.clear()


def load_policy_array(line: Sequence[str], model: Model) -> None:
    """Add a stored line (ptype first) to the model, skipping rules already present."""
    if not line or not line[0]:
        raise ValueError("policy line has no policy type")
    key = line[0]
    sec = key[0]
    rule = list(line[1:])
    if rule in model.get_policy(sec, key):
        return
    model.add_policy(sec, key, rule)