# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
`.bind` declaration-file parser: lark parse tree -> declaration IR.

Marker options (`class`, `function`, `methods`, `proto`) may carry nested
arguments, which are flattened next to the marker:

	#[class(subclass, name = "Pt")]  ->  class, subclass, name="Pt"

`args(...)` keeps its nested form; the signature model reads it as a unit.
"""

from __future__ import annotations

import codecs
import re
from pathlib import Path
from typing import List, Optional, Tuple

from lark import Lark, Token, Tree

from cpybind.core.span import Span
from cpybind.decl import (
	ClassDecl,
	FieldDecl,
	FunctionDecl,
	ImplDecl,
	Item,
	ModuleDecl,
	Option,
	ParamDecl,
	ParamMarker,
	Receiver,
	TypeRef,
	VOID,
)

_GRAMMAR_PATH = Path(__file__).with_name("grammar.lark")
_GRAMMAR_SRC = _GRAMMAR_PATH.read_text()

MARKER_OPTIONS = frozenset({"class", "function", "methods", "proto"})

_PARSER = Lark(
	_GRAMMAR_SRC,
	parser="lalr",
	lexer="basic",
	start="start",
	propagate_positions=True,
	maybe_placeholders=False,
)


class DeclSyntaxError(ValueError):
	"""
	Well-formed per the grammar but not a valid declaration (a receiver that
	is not the first parameter, for instance).

	The front end turns this into a parser-phase diagnostic, like a lark error.
	"""

	def __init__(self, message: str, *, span: Span) -> None:
		super().__init__(message)
		self.span = span


_ESCAPE_RE = re.compile(r"\\(?:x[0-9a-fA-F]{2}|u[0-9a-fA-F]{4}|U[0-9a-fA-F]{8}|[0-7]{1,3}|N\{[^}]*\}|.)", re.DOTALL)


def _decode_string_token(tok: Token) -> str:
	"""
	Strip the quotes of a STRING token and interpret its escapes.

	Only the escape sequences are decoded; other characters are kept as
	written. Raises UnicodeDecodeError for a malformed escape.
	"""
	content = tok.value[1:-1]
	return _ESCAPE_RE.sub(lambda m: codecs.decode(m.group(0), "unicode_escape"), content)


def _name(node: Tree | Token) -> str:
	if isinstance(node, Tree):
		data = node.data
		if isinstance(data, Token):
			return data.value
		return data
	return node.type


def _subtrees(tree: Tree, kind: Optional[str] = None) -> List[Tree]:
	return [c for c in tree.children if isinstance(c, Tree) and (kind is None or _name(c) == kind)]


def _first_token(tree: Tree, kind: str) -> Token:
	return next(c for c in tree.children if isinstance(c, Token) and c.type == kind)


class _Builder:
	"""Walks one file's parse tree; `file` ends up in every span."""

	def __init__(self, file: Optional[str]) -> None:
		self.file = file

	def span(self, node: Tree | Token, fallback: Optional[Span] = None) -> Span:
		if isinstance(node, Token):
			return Span(
				file=self.file,
				line=node.line,
				column=node.column,
				end_line=node.end_line,
				end_column=node.end_column,
			)
		meta = node.meta
		if getattr(meta, "empty", True):
			return fallback if fallback is not None else Span(file=self.file)
		return Span.from_loc(meta, file=self.file)

	# Module ------------------------------------------------------------------

	def build_module(self, tree: Tree) -> ModuleDecl:
		module_node = _subtrees(tree, "module_decl")[0]
		name = ".".join(tok.value for tok in module_node.children if isinstance(tok, Token) and tok.type == "NAME")
		options: List[Option] = []
		items: List[Item] = []
		for child in _subtrees(tree):
			kind = _name(child)
			if kind == "inner_attr":
				options.extend(self.build_option_list(_subtrees(child, "option_list")[0]))
			elif kind == "item":
				items.append(self.build_item(child))
		return ModuleDecl(name=name, items=tuple(items), options=tuple(options), span=self.span(module_node))

	def build_item(self, tree: Tree) -> Item:
		attrs = self.build_attributes(_subtrees(tree, "attributes")[0]) if _subtrees(tree, "attributes") else ()
		decl_node = next(c for c in _subtrees(tree) if _name(c) != "attributes")
		kind = _name(decl_node)
		if kind == "struct_decl":
			return self.build_struct(decl_node, attrs, self.span(tree))
		if kind == "impl_decl":
			return self.build_impl(decl_node, attrs, self.span(tree))
		if kind == "fn_decl":
			return self.build_function(decl_node, attrs, self.span(tree))
		raise AssertionError(f"unhandled item {kind}")

	# Attributes --------------------------------------------------------------

	def build_attributes(self, tree: Tree) -> Tuple[Option, ...]:
		options: List[Option] = []
		for attr in _subtrees(tree, "attr"):
			options.extend(self.build_option_list(_subtrees(attr, "option_list")[0]))
		return tuple(options)

	def build_option_list(self, tree: Tree, *, flatten: bool = True) -> List[Option]:
		out: List[Option] = []
		for node in _subtrees(tree):
			kind = _name(node)
			key_tok = _first_token(node, "NAME")
			span = self.span(node)
			if kind == "flag_option":
				out.append(Option(key_tok.value, span=span))
			elif kind == "value_option":
				value_node = node.children[-1]
				out.append(Option(key_tok.value, value=self.build_option_value(value_node), span=span))
			elif kind == "nested_option":
				nested_list = _subtrees(node, "option_list")
				nested = self.build_option_list(nested_list[0], flatten=False) if nested_list else []
				if flatten and key_tok.value in MARKER_OPTIONS:
					out.append(Option(key_tok.value, span=span))
					out.extend(nested)
				else:
					out.append(Option(key_tok.value, args=tuple(nested), span=span))
			else:
				raise AssertionError(f"unhandled option node {kind}")
		return out

	def build_option_value(self, node: Tree | Token) -> str:
		if isinstance(node, Token):
			if node.type == "STRING":
				try:
					return _decode_string_token(node)
				except UnicodeDecodeError as err:
					raise DeclSyntaxError(f"invalid escape in string {node.value}: {err.reason}", span=self.span(node)) from err
			return node.value
		return self.build_number(node)

	def build_number(self, tree: Tree) -> str:
		text = _first_token(tree, "NUMBER").value
		if _name(tree) == "negative_number":
			return f"-{text}"
		return text

	# Declarations ------------------------------------------------------------

	def build_type(self, tree: Tree) -> TypeRef:
		return TypeRef.of(" ".join(tok.value for tok in tree.children if isinstance(tok, Token)))

	def build_struct(self, tree: Tree, options: Tuple[Option, ...], span: Span) -> ClassDecl:
		name = _first_token(tree, "NAME").value
		fields: List[FieldDecl] = []
		for node in _subtrees(tree, "field"):
			attrs = _subtrees(node, "attributes")
			fields.append(
				FieldDecl(
					name=_first_token(node, "NAME").value,
					type=self.build_type(_subtrees(node, "type")[0]),
					options=self.build_attributes(attrs[0]) if attrs else (),
					span=self.span(node),
				)
			)
		return ClassDecl(name=name, fields=tuple(fields), options=options, span=span)

	def build_impl(self, tree: Tree, options: Tuple[Option, ...], span: Span) -> ImplDecl:
		target = _first_token(tree, "NAME").value
		members: List[FunctionDecl] = []
		for node in _subtrees(tree, "member"):
			attrs = _subtrees(node, "attributes")
			members.append(
				self.build_function(
					_subtrees(node, "fn_decl")[0],
					self.build_attributes(attrs[0]) if attrs else (),
					self.span(node),
				)
			)
		return ImplDecl(target=target, members=tuple(members), options=options, span=span)

	def build_function(self, tree: Tree, options: Tuple[Option, ...], span: Span) -> FunctionDecl:
		name = _first_token(tree, "NAME").value
		receiver = Receiver.NONE
		params: List[ParamDecl] = []
		params_nodes = _subtrees(tree, "params")
		for index, node in enumerate(_subtrees(params_nodes[0]) if params_nodes else []):
			kind = _name(node)
			pspan = self.span(node, span)
			if kind in ("self_param", "cls_param"):
				if index != 0:
					raise DeclSyntaxError(f"'{name}': receiver must be the first parameter", span=pspan)
				receiver = Receiver.SELF if kind == "self_param" else Receiver.CLS
				continue
			params.append(self.build_param(node, pspan))
		types = _subtrees(tree, "type")
		return FunctionDecl(
			name=name,
			params=tuple(params),
			return_type=self.build_type(types[0]) if types else VOID,
			receiver=receiver,
			options=options,
			span=span,
		)

	def build_param(self, tree: Tree, span: Span) -> ParamDecl:
		kind = _name(tree)
		types = _subtrees(tree, "type")
		ty = self.build_type(types[0]) if types else None
		if kind == "bare_star":
			return ParamDecl(name=None, marker=ParamMarker.STAR, span=span)
		name = _first_token(tree, "NAME").value
		if kind == "star_param":
			return ParamDecl(name=name, type=ty, marker=ParamMarker.STAR, span=span)
		if kind == "kwstar_param":
			return ParamDecl(name=name, type=ty, marker=ParamMarker.DOUBLE_STAR, span=span)
		if kind == "named_param":
			return ParamDecl(name=name, type=ty, default=self.build_default(tree), span=span)
		raise AssertionError(f"unhandled parameter node {kind}")

	def build_default(self, tree: Tree) -> Optional[str]:
		# named_param children: NAME, type, [default]
		if len(tree.children) < 3:
			return None
		node = tree.children[-1]
		if isinstance(node, Token):
			# String defaults stay C literals, quotes included.
			return node.value
		return self.build_number(node)


def parse_source(text: str, *, file: Optional[str] = None) -> ModuleDecl:
	"""
	Parse one declaration file.

	Raises lark's `UnexpectedInput` on syntax errors and `DeclSyntaxError` on
	well-formed but invalid declarations.
	"""
	tree = _PARSER.parse(text)
	return _Builder(file).build_module(tree)


__all__ = ["DeclSyntaxError", "MARKER_OPTIONS", "parse_source"]
