"""
Shared helpers: normalization, access control, audit log, email
"""
