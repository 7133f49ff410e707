"""
Feature modules for Roster Sync.

Each module is self-contained with its own:
- interfaces.py: Protocol definitions for the module's public API
- models.py: Pydantic models for data transfer
- service.py: Business logic implementation
- exceptions.py: Module-specific exceptions (where it has any)

Modules communicate through interfaces, not concrete implementations.
"""
