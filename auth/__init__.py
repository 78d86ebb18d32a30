"""auth/ -- Authentication and authorization package for Warden.

Layer rule: auth/ imports core/, cache/ (through the KeyValueCache protocol),
and third-party libraries. It does NOT import from api/ or rbac/; the
permission graph reaches the gate and the service as a PermissionChecker.
api/ imports from auth/, not the other way around.
"""
