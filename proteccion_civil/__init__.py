"""
Protección Civil API package.

A FastAPI service exposing news, brigades, courses, documents, contact
messages and emergency reports stored in a relational database.
"""
