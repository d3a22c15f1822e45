"""auth/ -- Authentication and authorization package for the Angola geo API.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/, geo/, or cache/.
api/ imports from auth/, not the other way around.
"""
