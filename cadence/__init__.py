"""
Cadence - adaptive review scheduler for spaced-repetition learning.

Subpackages:
- study: memory model, session composition, review submission, due queue
- db: SQLAlchemy models, card store and gap/mastery oracles
- cli: Typer command line
"""

__version__ = "1.0.0"
