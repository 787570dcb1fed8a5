"""
Data backing the mock registry.

This package is responsible for:
* Holding published package tarballs in memory.
* Building gzip tarballs from manifests and resource files.
* Producing npm-style metadata documents for each package.
"""
