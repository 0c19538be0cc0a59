# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Generator configuration.

Configuration is a frozen dataclass passed explicitly into every stage; there
is no global settings object. The CLI loads it from a JSON file:

	{
	  "infer_accessors": true,
	  "auto_text_signature": true,
	  "runtime_prefix": "cpyb",
	  "type_aliases": {"coord_t": "double"},
	  "module_name_override": null
	}

Unknown keys are rejected so typos do not silently fall back to defaults.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping

from .errors import ConfigError
from .fragment import is_c_ident

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeneratorConfig:
	# Treat unannotated `get_x(self)` / `set_x(self, v)` members as accessors.
	infer_accessors: bool = False
	# Derive `__text_signature__` docs from signatures when not given explicitly.
	auto_text_signature: bool = True
	# Prefix for the shared C runtime helpers (`<prefix>_bind_args`, ...).
	runtime_prefix: str = "cpyb"
	# Extra native type spellings mapped onto builtin ones.
	type_aliases: Mapping[str, str] = field(default_factory=dict)
	module_name_override: str | None = None

	@classmethod
	def from_mapping(cls, data: Mapping[str, Any]) -> "GeneratorConfig":
		known = {f.name for f in fields(cls)}
		unknown = sorted(set(data) - known)
		if unknown:
			raise ConfigError(f"unknown configuration key(s): {', '.join(unknown)}")
		for key in ("infer_accessors", "auto_text_signature"):
			if key in data and not isinstance(data[key], bool):
				raise ConfigError(f"'{key}' must be a boolean")
		prefix = data.get("runtime_prefix", "cpyb")
		if not isinstance(prefix, str) or not is_c_ident(prefix):
			raise ConfigError(f"'runtime_prefix' must be a C identifier, got {prefix!r}")
		aliases = data.get("type_aliases", {})
		if not isinstance(aliases, Mapping) or not all(
			isinstance(k, str) and isinstance(v, str) for k, v in aliases.items()
		):
			raise ConfigError("'type_aliases' must map type spellings to type spellings")
		override = data.get("module_name_override")
		if override is not None and (not isinstance(override, str) or not is_c_ident(override)):
			raise ConfigError(f"'module_name_override' must be a C identifier, got {override!r}")
		return cls(
			infer_accessors=data.get("infer_accessors", False),
			auto_text_signature=data.get("auto_text_signature", True),
			runtime_prefix=prefix,
			type_aliases=dict(aliases),
			module_name_override=override,
		)


def load_config(path: Path) -> GeneratorConfig:
	"""Load a GeneratorConfig from a JSON file."""
	try:
		data = json.loads(path.read_text())
	except FileNotFoundError as err:
		raise ConfigError(f"config file not found: {path}") from err
	except json.JSONDecodeError as err:
		raise ConfigError(f"invalid JSON in {path}: {err}") from err
	if not isinstance(data, dict):
		raise ConfigError(f"config root must be an object: {path}")
	config = GeneratorConfig.from_mapping(data)
	logger.debug("loaded config from %s: %s", path, config)
	return config


__all__ = ["GeneratorConfig", "load_config"]
