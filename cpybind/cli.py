# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
cpybind command line.

	cpybind SOURCE... [-o OUT.c] [--config CFG.json] [--json] [-v]

Parses the declaration files (one module), generates the C translation unit
and writes it to OUT.c (stdout when -o is absent and --json is not given).
Diagnostics go to stderr as `file:line:col: error[Kind]: message`, or to
stdout as one JSON object with --json. Any error makes the exit code 1.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from cpybind.core.config import GeneratorConfig, load_config
from cpybind.core.diagnostics import Diagnostic, has_errors
from cpybind.core.errors import ConfigError
from cpybind.core.span import Span
from cpybind.frontend import parse_bind_files
from cpybind.gen.driver import generate_module

logger = logging.getLogger(__name__)


def _configure_logging(verbosity: int) -> None:
	level = logging.WARNING
	if verbosity == 1:
		level = logging.INFO
	elif verbosity >= 2:
		level = logging.DEBUG
	logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr)


def _report(diagnostics: List[Diagnostic], *, as_json: bool, exit_code: int, default_file: str, extra: Optional[dict] = None) -> None:
	if as_json:
		payload = {
			"exit_code": exit_code,
			"diagnostics": [d.to_json(default_file) for d in diagnostics],
		}
		if extra:
			payload.update(extra)
		print(json.dumps(payload))
		return
	for diag in diagnostics:
		print(diag.render(), file=sys.stderr)
		for note in diag.notes:
			print(f"  note: {note}", file=sys.stderr)


def main(argv: list[str] | None = None) -> int:
	"""
	Run the generator over the given declaration files.

	Returns the process exit code (0 on success, 1 if any diagnostic is an
	error) instead of exiting, so tests can call it directly.
	"""
	parser = argparse.ArgumentParser(prog="cpybind", description="Generate CPython extension glue from .bind declarations")
	parser.add_argument("sources", type=Path, nargs="+", help="Declaration file(s) making up one module")
	parser.add_argument("-o", "--output", type=Path, help="Path of the generated C file")
	parser.add_argument("--config", type=Path, help="Generator configuration (JSON)")
	parser.add_argument(
		"--json",
		action="store_true",
		help="Emit diagnostics as JSON (phase/code/message/severity/file/line/column/notes)",
	)
	parser.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-v info, -vv debug)")
	args = parser.parse_args(argv)
	_configure_logging(args.verbose)

	default_file = str(args.sources[0])
	config = GeneratorConfig()
	if args.config is not None:
		try:
			config = load_config(args.config)
		except ConfigError as err:
			diag = Diagnostic(message=str(err), phase="config", severity="error", span=Span(file=str(args.config)))
			_report([diag], as_json=args.json, exit_code=1, default_file=default_file)
			return 1

	module, diagnostics = parse_bind_files(args.sources)
	if module is None:
		_report(diagnostics, as_json=args.json, exit_code=1, default_file=default_file)
		return 1

	result = generate_module(module, config)
	diagnostics.extend(result.diagnostics)
	exit_code = 1 if has_errors(diagnostics) or result.module is None else 0

	if result.module is not None:
		if args.output is not None:
			args.output.write_text(result.text)
			logger.info("wrote %s", args.output)
		elif not args.json:
			sys.stdout.write(result.text)

	extra = None
	if result.module is not None:
		extra = {"module": result.module.name, "exports": result.module.exports}
	_report(diagnostics, as_json=args.json, exit_code=exit_code, default_file=default_file, extra=extra)
	return exit_code


if __name__ == "__main__":
	raise SystemExit(main())
