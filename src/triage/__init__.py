"""
Triage Module
=============

Bounded Context for AI-assisted conversational triage.

Responsibilities:
- Run the two-phase chat: clarifying questions first, then troubleshooting steps
- Track what the user has told us (device, OS, symptom, context)
- Keep every assistant reply inside the reply contract, whatever the LLM returns
- Persist conversations, their phase and their message log

Functional Requirements Implemented:
- POST /triage/copilot/chat, POST /triage/tickets/{id}/chat
- Conversation management endpoints
- Knowledge base excerpts in copilot prompts
"""

__version__ = "1.0.0"
