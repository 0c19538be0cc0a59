# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Declaration-file front end.

Parses `.bind` files into the declaration IR (`cpybind.decl`). Several files
may make up one module: they must all declare the same module name, and their
items are combined in file order. The generator core never imports this
package.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from lark.exceptions import UnexpectedInput

from cpybind.core.diagnostics import Diagnostic
from cpybind.core.span import Span
from cpybind.decl import ModuleDecl

from . import parser as _parser

logger = logging.getLogger(__name__)


def _syntax_diagnostic(path: Path, err: UnexpectedInput) -> Diagnostic:
	span = Span(
		file=str(path),
		line=getattr(err, "line", None),
		column=getattr(err, "column", None),
		raw=err,
	)
	return Diagnostic(message=str(err).strip(), phase="parser", severity="error", span=span)


def parse_bind_file(path: Path) -> Tuple[Optional[ModuleDecl], List[Diagnostic]]:
	"""Parse one file; returns (module or None, diagnostics)."""
	try:
		data = path.read_bytes()
	except OSError as err:
		return None, [Diagnostic(message=f"cannot read {path}: {err.strerror}", phase="parser", span=Span(file=str(path)))]
	try:
		source = data.decode("utf-8")
	except UnicodeDecodeError as err:
		line = data.count(b"\n", 0, err.start) + 1
		column = err.start - (data.rfind(b"\n", 0, err.start) + 1) + 1
		return None, [
			Diagnostic(
				message=f"{path} is not valid UTF-8: {err.reason} (byte 0x{data[err.start]:02x})",
				phase="parser",
				span=Span(file=str(path), line=line, column=column),
			)
		]
	try:
		module = _parser.parse_source(source, file=str(path))
	except _parser.DeclSyntaxError as err:
		return None, [Diagnostic(message=str(err), phase="parser", severity="error", span=err.span)]
	except UnexpectedInput as err:
		return None, [_syntax_diagnostic(path, err)]
	logger.debug("parsed %s: module %s, %d item(s)", path, module.name, len(module.items))
	return module, []


def parse_bind_files(paths: Sequence[Path]) -> Tuple[Optional[ModuleDecl], List[Diagnostic]]:
	"""
	Parse and merge the files of one module.

	Every file is parsed even after a failure so all syntax errors are
	reported together. Returns None when any file failed or the module names
	disagree.
	"""
	diagnostics: List[Diagnostic] = []
	if not paths:
		return None, [Diagnostic(message="no input files", phase="parser", severity="error")]

	modules: List[ModuleDecl] = []
	for path in paths:
		module, diags = parse_bind_file(path)
		diagnostics.extend(diags)
		if module is not None:
			modules.append(module)
	if diagnostics:
		return None, diagnostics

	first = modules[0]
	for other in modules[1:]:
		if other.name != first.name:
			diagnostics.append(
				Diagnostic(
					message=f"module name mismatch: expected '{first.name}', found '{other.name}'",
					phase="parser",
					severity="error",
					span=other.span,
					notes=[f"module first declared at {first.span}"],
					related=[first.span],
				)
			)
	if diagnostics:
		return None, diagnostics
	return merge_modules(modules), []


def merge_modules(modules: Sequence[ModuleDecl]) -> ModuleDecl:
	"""Combine same-named modules; the first module's span names the result."""
	first = modules[0]
	items = tuple(item for m in modules for item in m.items)
	options = tuple(opt for m in modules for opt in m.options)
	return ModuleDecl(name=first.name, items=items, options=options, span=first.span)


__all__ = ["parse_bind_file", "parse_bind_files", "merge_modules"]
