"""advisorydb — RustSec advisory database toolkit.

This package loads a RustSec-style advisory database, audits
``Cargo.lock`` files against it, and renders the advisory website.
"""

__version__ = "0.1.0"
