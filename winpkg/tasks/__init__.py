"""
Higher-level methods to manage installed components.

Each public function in this module should:

- perform a complete task, as needed by a script or user action
- validate all of its inputs before making any changes
- avoid non-idempotent calls unless required by a prior state change
"""
