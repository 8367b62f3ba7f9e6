"""
directory — Role-based contact directory.

Sub-modules:
    models     — Role, Contact, BatchOp and role parsing
    store      — store port + in-process implementation
    sql_store  — PostgreSQL implementation (SQLAlchemy async)
    contacts   — ContactDirectory: lifecycle and duplicate-phone policy
"""
