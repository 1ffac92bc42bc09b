"""
bizbase - business-object data-access engine.

Maps list/load/save/delete requests for registered business objects onto
parameterized SQL for T-SQL and MySQL, with soft delete, tenant scoping and
relation expansion.
"""

__version__ = "1.0.0"
