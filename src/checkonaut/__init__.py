"""checkonaut - run Lua checks against JSON, YAML and TOML data.

Check scripts define a ``Check`` function that is called for every object in
every data file; test scripts define ``Test*`` functions exercising those
checks.
"""

__version__ = "0.1.0"
__description__ = "Run Lua checks and their tests against structured data files"

from checkonaut.config import CheckonautConfig

__all__ = [
    "__version__",
    "__description__",
    "CheckonautConfig",
]
