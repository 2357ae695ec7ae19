"""Pipeline configuration passed by value into every phase."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from types import MappingProxyType
from typing import Any


class Direction(str, Enum):
    """Conversion direction."""

    FORWARD = "forward"  # LaTeX -> Markdown
    REVERSE = "reverse"  # Markdown -> LaTeX


class ReferenceMode(str, Enum):
    """How reference commands are handled."""

    IGNORE = "ignore"
    PLACEHOLDER = "placeholder"
    RESOLVE = "resolve"


DEFAULT_CITATION_TEMPLATES: dict[str, str] = {
    "cite": "[cite: $key]",
    "citep": "[cite: $key]",
    "citet": "[citet: $key]",
    "citeauthor": "[author: $key]",
    "citeyear": "[year: $key]",
    "citetitle": "[title: $key]",
    "fullcite": "[fullcite: $key]",
}

DEFAULT_REFERENCE_TEMPLATES: dict[str, str] = {
    "ref": "$number",
    "eqref": "($number)",
    "pageref": "page $page",
    "nameref": "$name",
    "autoref": "$type $number",
    "vref": "$type $number on page $page",
}


@dataclass(frozen=True)
class PipelineConfig:
    """Explicit, immutable conversion options."""

    convert_environments: bool = True
    extra_environments: frozenset[str] = frozenset()
    convert_legacy_array_env: bool = True
    remove_labels: bool = False
    reference_mode: ReferenceMode = ReferenceMode.RESOLVE
    expand_macros: bool = True
    convert_citations: bool = True
    strip_sizing_commands: bool = True
    unify_prose_command: bool = True
    number_equations: bool = False
    label_counter_base: int = 1
    citation_templates: Mapping[str, str] = field(
        default_factory=lambda: dict(DEFAULT_CITATION_TEMPLATES), hash=False,
    )
    reference_templates: Mapping[str, str] = field(
        default_factory=lambda: dict(DEFAULT_REFERENCE_TEMPLATES), hash=False,
    )

    def __post_init__(self) -> None:
        # read-only views so the frozen config cannot change in place
        for name in ("citation_templates", "reference_templates"):
            object.__setattr__(self, name, MappingProxyType(dict(getattr(self, name))))

    def with_changes(self, **changes: Any) -> PipelineConfig:
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PipelineConfig:
        """Build a config from a JSON-like mapping.

        Raises ValueError on unknown keys or values of the wrong type.
        Template mappings are merged over the defaults.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown config field(s): {', '.join(unknown)}")

        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            if key == "extra_environments":
                if isinstance(value, str) or not isinstance(value, (list, tuple, set, frozenset)):
                    raise ValueError("extra_environments must be a list of names")
                kwargs[key] = frozenset(str(v) for v in value)
            elif key == "reference_mode":
                try:
                    kwargs[key] = ReferenceMode(value)
                except ValueError:
                    raise ValueError(
                        f"reference_mode must be one of: "
                        f"{', '.join(m.value for m in ReferenceMode)}"
                    ) from None
            elif key == "label_counter_base":
                if isinstance(value, bool) or not isinstance(value, int):
                    raise ValueError("label_counter_base must be an integer")
                kwargs[key] = value
            elif key in ("citation_templates", "reference_templates"):
                if not isinstance(value, dict):
                    raise ValueError(f"{key} must be an object")
                defaults = (
                    DEFAULT_CITATION_TEMPLATES
                    if key == "citation_templates"
                    else DEFAULT_REFERENCE_TEMPLATES
                )
                merged = dict(defaults)
                merged.update({str(k): str(v) for k, v in value.items()})
                kwargs[key] = merged
            else:
                if not isinstance(value, bool):
                    raise ValueError(f"{key} must be a boolean")
                kwargs[key] = value
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        """Plain JSON-serializable view of the config."""
        return {
            "convert_environments": self.convert_environments,
            "extra_environments": sorted(self.extra_environments),
            "convert_legacy_array_env": self.convert_legacy_array_env,
            "remove_labels": self.remove_labels,
            "reference_mode": self.reference_mode.value,
            "expand_macros": self.expand_macros,
            "convert_citations": self.convert_citations,
            "strip_sizing_commands": self.strip_sizing_commands,
            "unify_prose_command": self.unify_prose_command,
            "number_equations": self.number_equations,
            "label_counter_base": self.label_counter_base,
            "citation_templates": dict(self.citation_templates),
            "reference_templates": dict(self.reference_templates),
        }
