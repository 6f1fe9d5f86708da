"""
Low-level APIs for fine-grained machine and service management.

Each public function in this module should:

- perform a single action, idempotently if possible
- raise an exception on any failures
- accept paths, names and records as arguments rather than looking them up itself

Each function also falls into one of two groups:

- getters (prefixed with `get_`, or predicates like `exists`): return a value directly, do not
  modify state
- actions: return a `Result` object, may modify state
"""
