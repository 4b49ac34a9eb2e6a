"""
DocVault Security — identity resolution, access policy and rate limiting.

Import from the submodules directly:
    from docvault.security.identity import IdentityResolver
    from docvault.security.policy import AccessPolicy
"""
