"""auth/ -- Identity and authentication package for Cypress.

Layer rule: auth/ imports stdlib, third-party libraries, and core/ only.
It does NOT import from api/ or cache/ -- stores are injected.
api/ imports from auth/, not the other way around.
"""
