"""
EntryPoint — bundle execution with post-execution validation.

Operations in a bundle execute against a shared ledger; any operation whose
signature asks for it is then validated against the bundle's final state
before the relayer is compensated.
"""

__version__ = "0.1.0"
