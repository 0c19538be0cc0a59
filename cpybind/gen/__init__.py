"""
cpybind.gen: the generator core, leaves first.

Modules:
  - names: C identifier conventions for generated symbols
  - signature: parameter-list validation (Signature model)
  - convert: native type resolution and value conversion snippets
  - binder: argument binding glue per calling convention
  - classify: member role classification
  - slot_defs: the catalogue of supported protocol slots
  - textsig: `__text_signature__` docs
  - methods: method, accessor and constructor wrappers
  - slots: slot adapters (SlotTable)
  - typedesc: per-class PyTypeObject descriptors
  - module: module registration (PyModuleDef, PyInit_*)
  - driver: per-declaration isolated batch generation
"""

__all__ = [
	"names",
	"signature",
	"convert",
	"binder",
	"classify",
	"slot_defs",
	"textsig",
	"methods",
	"slots",
	"typedesc",
	"module",
	"driver",
]
