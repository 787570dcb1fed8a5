"""
Domain layer: models, identifiers, errors and the shallow JSON scanner.

Nothing in this package performs network or file I/O.
"""
