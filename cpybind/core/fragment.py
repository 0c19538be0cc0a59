# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Textual C emitter.

`CWriter` builds one definition (a function body or an initialized table)
line by line; `CodeFragment` collects finished pieces into the three sections
every generated unit contributes to: includes, forward declarations, and
definitions. Fragments are merged by the module registrator and rendered
exactly once.

Generated C uses tab indentation and K&R function layout (return type on its
own line), matching the CPython sources the adapters are modeled on.
"""

from __future__ import annotations

import re
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, List

_C_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def is_c_ident(name: str) -> bool:
	return bool(_C_IDENT_RE.match(name))


def c_ident(name: str) -> str:
	"""Coerce an arbitrary name into a valid C identifier."""
	safe = "".join(ch if (ch.isalnum() or ch == "_") else "_" for ch in name)
	if not safe or safe[0].isdigit():
		safe = "_" + safe
	return safe


def c_decl(spelling: str, name: str) -> str:
	"""`int x`, but `PyObject *x` for pointer spellings."""
	if spelling.endswith("*"):
		return f"{spelling}{name}"
	return f"{spelling} {name}"


def c_string_literal(text: str) -> str:
	"""
	Render `text` as a C string literal.

	Non-ASCII characters are emitted as octal UTF-8 byte escapes so the literal
	is valid regardless of the compiler's source charset.
	"""
	out: List[str] = ['"']
	for byte in text.encode("utf-8"):
		ch = chr(byte)
		if ch == "\\":
			out.append("\\\\")
		elif ch == '"':
			out.append('\\"')
		elif ch == "\n":
			out.append("\\n")
		elif ch == "\t":
			out.append("\\t")
		elif 0x20 <= byte < 0x7F:
			out.append(ch)
		else:
			out.append(f"\\{byte:03o}")
	out.append('"')
	return "".join(out)


class CWriter:
	"""Line-oriented C writer with tab indentation."""

	def __init__(self) -> None:
		self._lines: List[str] = []
		self._depth = 0
		self._jumps: set[str] = set()

	def line(self, text: str = "") -> None:
		if not text:
			self._lines.append("")
			return
		self._lines.append("\t" * self._depth + text)

	def goto(self, label: str) -> None:
		self.line(f"goto {label};")
		self._jumps.add(label)

	def jumps_to(self, label: str) -> bool:
		return label in self._jumps

	def label(self, name: str) -> bool:
		"""Emit `name:` if anything jumps to it; returns whether it was emitted."""
		if name not in self._jumps:
			return False
		# Labels sit one level out from the statements they precede.
		self._lines.append("\t" * max(self._depth - 1, 0) + f"{name}:")
		return True

	@contextmanager
	def block(self, header: str = "", *, trailer: str = "") -> Iterator[None]:
		"""Emit `header {`, an indented body, then `}` + trailer."""
		self.line(f"{header} {{" if header else "{")
		self._depth += 1
		try:
			yield
		finally:
			self._depth -= 1
			self.line("}" + trailer)

	@contextmanager
	def indented(self) -> Iterator[None]:
		self._depth += 1
		try:
			yield
		finally:
			self._depth -= 1

	def render(self) -> str:
		return "\n".join(self._lines) + "\n"


@dataclass
class CodeFragment:
	"""A unit of generated C: includes, forward declarations and definitions."""

	# Lines that must precede every include (e.g. PY_SSIZE_T_CLEAN).
	preamble: List[str] = field(default_factory=list)
	includes: List[str] = field(default_factory=list)
	decls: List[str] = field(default_factory=list)
	defs: List[str] = field(default_factory=list)

	def include(self, header: str) -> None:
		if header not in self.includes:
			self.includes.append(header)

	def declare(self, text: str) -> None:
		self.decls.append(text.rstrip("\n"))

	def define(self, text: str) -> None:
		self.defs.append(text.rstrip("\n"))

	def extend(self, other: "CodeFragment") -> None:
		for text in other.preamble:
			if text not in self.preamble:
				self.preamble.append(text)
		for header in other.includes:
			self.include(header)
		self.decls.extend(other.decls)
		self.defs.extend(other.defs)

	def render(self) -> str:
		parts: List[str] = []
		if self.preamble:
			parts.append("\n".join(self.preamble))
		if self.includes:
			parts.append("\n".join(_render_include(h) for h in self.includes))
		if self.decls:
			parts.append("\n".join(self.decls))
		parts.extend(self.defs)
		return "\n\n".join(parts) + "\n"


def _render_include(header: str) -> str:
	if header.startswith("<") and header.endswith(">"):
		return f"#include {header}"
	return f'#include "{header}"'


__all__ = ["CWriter", "CodeFragment", "c_decl", "c_ident", "c_string_literal", "is_c_ident"]
