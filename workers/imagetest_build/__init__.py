"""
imagetest_build — build matrix for the image test harness.

Compiles the wrapper/manager helper binaries and every selected test suite
for the fixed platform matrix, extracts each suite's test manifest, and
lays all artifacts out flat in a single output directory.
"""

__version__ = "0.1.0"
PACKAGE_NAME = "imagetest_build"
SCHEMA_VERSION = "0.1"
PROFILE_ID = "go-cit-linux-windows"
