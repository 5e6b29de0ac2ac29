"""
Validation helpers shared by the application construct builders.

Every invalid or ambiguous configuration is reported with a ConfigurationError
before the offending declaration is created.
"""

from typing import Any, Dict, Iterable, Optional


class ConfigurationError(ValueError):
	"""Raised when a builder receives a configuration it cannot honour."""


def reject_controlled_fields(config_name: str, fields: Dict[str, Any], controlled: Iterable[str]) -> None:
	"""
	Reject passthrough properties that the builder sets itself.

	Args:
	    config_name: Name of the config class, used in the error message
	    fields: The passthrough properties supplied by the caller
	    controlled: Property names owned by the builder

	Raises:
	    ConfigurationError: If any controlled property was supplied
	"""
	overlap = sorted(set(fields).intersection(controlled))
	if overlap:
		raise ConfigurationError(f'{config_name} does not accept {", ".join(overlap)}; these are set by the construct')


def require_exactly_one(description: str, **candidates: Optional[Any]) -> str:
	"""
	Ensure exactly one of the named candidates is set and return its name.

	Raises:
	    ConfigurationError: If none or more than one candidate is set
	"""
	chosen = [name for name, value in candidates.items() if value is not None]
	if len(chosen) != 1:
		raise ConfigurationError(description)
	return chosen[0]


def require_key(section: Dict[str, Any], key: str, section_name: str) -> Any:
	if key not in section or section[key] is None:
		raise ConfigurationError(f"Missing required key '{key}' in {section_name}")
	return section[key]
