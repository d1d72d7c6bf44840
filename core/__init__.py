"""Core module for the ledger sync service.

Submodules are imported directly (``from core.store import ...``); this
package stays empty so that collectors can depend on ``core.exceptions``
without pulling in the controller.
"""
