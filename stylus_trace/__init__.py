"""
stylus_trace — gas / hostio profiling and regression gating for
Arbitrum Stylus transactions.

Profiles are captured from a node's ``stylusTracer``, persisted as JSON
artifacts, and compared against a baseline to produce a pass/fail
verdict for CI.
"""

__version__ = "0.1.0"
TOOL_VERSION = "v0"
PACKAGE_NAME = "stylus_trace"
SCHEMA_VERSION = "1.0"
