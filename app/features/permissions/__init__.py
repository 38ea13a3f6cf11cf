"""
Access-control feature module.

Permission catalog, roles and role grants, and the resolution engine that
combines role grants with subscription entitlements.
"""
