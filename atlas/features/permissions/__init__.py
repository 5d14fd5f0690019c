"""
Permission management feature module.

Implements role-based access control for the inventory backend: a static
permission catalog, roles with many-to-many permission assignment, a cached
resolver for a role's effective permission keys, and the decision point every
protected route passes through.
"""
