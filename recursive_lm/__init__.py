# ABOUTME: Public entrypoint for recursive language model completions over long contexts.
# ABOUTME: Exposes the runtime API so callers can import from the top-level package.

from recursive_lm.runtime import *  # noqa: F401,F403
from recursive_lm.runtime import __all__  # noqa: F401
