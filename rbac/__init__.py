"""rbac/ -- Role/permission graph for Warden.

Layer rule: rbac/ imports only core/ plus third-party libraries.
auth/ and api/ import from rbac/ (through the PermissionChecker protocol),
never the other way around.
"""
