"""orbstack-provider - OrbStack machine lifecycle provider

Philosophy:
- Ruthless simplicity
- Brick architecture (self-contained modules)
- The orb CLI is the only source of truth for machine state
- Fail fast on mutations, degrade gracefully on queries

Manages a single OrbStack Linux machine per project directory: creates it
with a collision-free generated name, starts and stops it, reports its state,
and hands out SSH connection details.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
