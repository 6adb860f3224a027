"""Database models and utilities."""

from .models import (
    SupportTicketAssigneeTable,
    SupportTicketAttachmentTable,
    SupportTicketFeedTable,
    SupportTicketMessageTable,
    SupportTicketTable,
)

__all__ = [
    "SupportTicketAssigneeTable",
    "SupportTicketAttachmentTable",
    "SupportTicketFeedTable",
    "SupportTicketMessageTable",
    "SupportTicketTable",
]
