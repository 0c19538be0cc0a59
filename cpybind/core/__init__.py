"""
cpybind.core: shared span/diagnostic/error types, the C emitter and config.

Modules:
  - span: source locations
  - diagnostics: Diagnostic records surfaced to the caller
  - errors: ErrorKind taxonomy and GenerationError
  - fragment: CWriter / CodeFragment text emitters
  - config: GeneratorConfig
"""

__all__ = [
	"span",
	"diagnostics",
	"errors",
	"fragment",
	"config",
]
