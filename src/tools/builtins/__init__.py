from __future__ import annotations

from src.tools.builtins.create_invoice import CreateInvoiceTool
from src.tools.builtins.create_lead import CreateLeadTool
from src.tools.builtins.draft_email import DraftEmailTool
from src.tools.builtins.list_clients import ListClientsTool
from src.tools.builtins.list_invoices import ListInvoicesTool
from src.tools.builtins.list_leads import ListLeadsTool
from src.tools.builtins.list_sessions import ListSessionsTool
from src.tools.builtins.update_client import UpdateClientTool
from src.tools.builtins.update_memory import UpdateMemoryTool
from src.tools.registry import ToolRegistry


def register_builtins(registry: ToolRegistry, *, freeze: bool = True) -> None:
    """Register all built-in CRM tools, then freeze the registry.

    Called once at process start-up; the tool surface is fixed afterwards.
    """
    registry.register(ListClientsTool())
    registry.register(ListLeadsTool())
    registry.register(ListInvoicesTool())
    registry.register(ListSessionsTool())
    registry.register(DraftEmailTool())
    registry.register(CreateLeadTool())
    registry.register(UpdateClientTool())
    registry.register(CreateInvoiceTool())
    registry.register(UpdateMemoryTool())

    if freeze:
        registry.freeze()
