"""
Conversation memory for Converso.

Provides:
- Conversation store (user and bot messages per sender in Redis)
"""

from libs.memory.conversation_store import ConversationStore, mask_sender

__all__ = ["ConversationStore", "mask_sender"]
