"""Incremental semantic graph of functions, calls and side effects.

The package keeps a function-level graph of a source tree up to date:

- Fingerprints files and functions (manifest layer)
- Detects added/modified/deleted/renamed units
- Splices fresh analysis into the persisted graph
- Answers impact and cycle queries over call dependencies
"""

__version__ = "0.1.0"
