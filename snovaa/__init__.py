"""
Snovaa client runtime.

Only the authentication core lives here; pages and presentation are hosted elsewhere.
"""
