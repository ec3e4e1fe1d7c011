"""auth/ -- Authentication and authorization package for expertsman.

Layer rule: auth/ imports stdlib, third-party libraries and core/.
It does NOT import from api/. workspace/ is referenced for type hints only.
api/ imports from auth/, not the other way around.
"""
